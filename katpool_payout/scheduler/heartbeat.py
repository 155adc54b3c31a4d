"""
Heartbeat reporter: periodic countdown to the next balance transfer.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from katpool_payout.services.metrics import PayoutMetrics
from .payout_scheduler import utc_now
from .schedule import minutes_until_next_transfer


logger = structlog.get_logger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 10 * 60


class HeartbeatReporter:
    """Logs the minutes left until the next transfer. Never touches scheduling."""

    def __init__(
        self,
        payment_interval: int,
        interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
        metrics: Optional[PayoutMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.payment_interval = payment_interval
        self.interval_seconds = interval_seconds
        self.metrics = metrics
        self.logger = logger.bind(component="heartbeat")

        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.running = False

    def report(self) -> int:
        """Compute, log and return the minutes until the next transfer."""
        remaining = minutes_until_next_transfer(self._clock(), self.payment_interval)
        self.logger.info(
            f"{remaining} minutes until the next balance transfer",
            remaining_minutes=remaining
        )
        if self.metrics is not None:
            self.metrics.set_next_run_minutes(remaining)
        return remaining

    async def start(self):
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._heartbeat_loop(), name="payout_heartbeat")

    async def stop(self):
        self.running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _heartbeat_loop(self):
        while self.running:
            try:
                await self._sleep(self.interval_seconds)
                if not self.running:
                    break
                self.report()
                if self.metrics is not None:
                    await self.metrics.push()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Heartbeat error", error=str(e))
