"""
Prometheus metrics for scheduled payout runs, pushed to a Pushgateway.
"""

import asyncio
import functools
import time
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, push_to_gateway


logger = structlog.get_logger(__name__)


class PayoutMetrics:
    """Run counters and liveness gauges for the payout scheduler."""

    def __init__(self, pushgateway: str, job_name: str = "katpool_payments"):
        self.pushgateway = pushgateway
        self.job_name = job_name
        self.registry = CollectorRegistry()
        self.logger = logger.bind(component="metrics")

        self.runs = Counter(
            "payout_runs",
            "Scheduled balance transfer runs by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.last_run = Gauge(
            "payout_last_run_timestamp_seconds",
            "Unix time of the last scheduled balance transfer",
            registry=self.registry,
        )
        self.next_run_minutes = Gauge(
            "payout_next_run_minutes",
            "Minutes until the next scheduled balance transfer",
            registry=self.registry,
        )
        self.rpc_ready = Gauge(
            "rpc_ready",
            "1 when the node connection is established and verified",
            registry=self.registry,
        )

    def record_run(self, outcome: str, timestamp: Optional[float] = None) -> None:
        self.runs.labels(outcome=outcome).inc()
        if outcome != "skipped":
            self.last_run.set(timestamp if timestamp is not None else time.time())

    def set_next_run_minutes(self, minutes: int) -> None:
        self.next_run_minutes.set(minutes)

    def set_rpc_ready(self, ready: bool) -> None:
        self.rpc_ready.set(1 if ready else 0)

    async def push(self) -> bool:
        """Push the registry. Failures are logged, never raised."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                functools.partial(
                    push_to_gateway,
                    self.pushgateway,
                    job=self.job_name,
                    registry=self.registry,
                ),
            )
            return True
        except Exception as e:
            self.logger.warning("Failed to push metrics", pushgateway=self.pushgateway, error=str(e))
            return False
