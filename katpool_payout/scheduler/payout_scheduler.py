"""
Balance transfer scheduler.

This service provides:
- Transfers at the top of every hour that is a multiple of the payment interval
- A readiness check on every firing, before the transaction manager is touched
- Failure isolation: a failed run is logged and the cadence carries on
- A skip-if-running guard so transfers never overlap
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from katpool_payout.services.metrics import PayoutMetrics
from katpool_payout.services.readiness import ReadinessGate
from katpool_payout.services.transaction_manager import TransactionManager
from .schedule import cron_expression, next_run_time


logger = structlog.get_logger(__name__)

# Upper bound on one sleep, so wall-clock jumps are noticed
MAX_SLEEP_SECONDS = 60.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerStatus(Enum):
    """Status of the payout scheduler."""
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    uptime_start: Optional[datetime] = None


class PayoutScheduler:
    """
    Fires ``transfer_balances()`` on a fixed wall-clock cadence.

    Each firing runs as its own task. The loop computes the next firing from
    the previous target, never from when a run finished.
    """

    def __init__(
        self,
        gate: ReadinessGate,
        transaction_manager: Optional[TransactionManager],
        payment_interval: int,
        metrics: Optional[PayoutMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.gate = gate
        self.transaction_manager = transaction_manager
        self.payment_interval = payment_interval
        self.metrics = metrics
        self.logger = logger.bind(component="scheduler")

        self._clock = clock
        self._sleep = sleep

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=clock())
        self._should_stop = False
        self._in_flight = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._run_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Register the schedule."""
        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self._should_stop = False
        self.status = SchedulerStatus.WAITING
        self.stats.next_run = next_run_time(self._clock(), self.payment_interval)
        self._scheduler_task = asyncio.create_task(self._scheduler_loop(), name="payout_scheduler")

        self.logger.info(
            "Payout scheduler started",
            cron=cron_expression(self.payment_interval),
            next_run=self.stats.next_run.isoformat()
        )

    async def stop(self):
        """Cancel the schedule and any transfer still running."""
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping payout scheduler")
        self._should_stop = True

        tasks = list(self._run_tasks)
        if self._scheduler_task and not self._scheduler_task.done():
            tasks.append(self._scheduler_task)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Payout scheduler stopped")

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        target = next_run_time(self._clock(), self.payment_interval)

        while not self._should_stop:
            try:
                self.stats.next_run = target
                await self._sleep_until(target)
                if self._should_stop:
                    break

                task = asyncio.create_task(self.fire(scheduled_for=target), name=f"payout_run_{target.isoformat()}")
                self._run_tasks.add(task)
                task.add_done_callback(self._run_tasks.discard)

                # Slots missed while the host was suspended are dropped, not replayed
                now = self._clock()
                if next_run_time(target, self.payment_interval) <= now:
                    self.logger.warning(
                        "Wall clock jumped past scheduled transfers, resuming from now",
                        last_target=target.isoformat(),
                        now=now.isoformat()
                    )
                target = next_run_time(max(target, now), self.payment_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in scheduler loop", error=str(e), exc_info=True)
                await self._sleep(MAX_SLEEP_SECONDS)
                target = next_run_time(self._clock(), self.payment_interval)

    async def _sleep_until(self, target: datetime):
        while not self._should_stop:
            delay = (target - self._clock()).total_seconds()
            if delay <= 0:
                return
            await self._sleep(min(delay, MAX_SLEEP_SECONDS))

    async def fire(self, scheduled_for: Optional[datetime] = None) -> bool:
        """
        Run one scheduled balance transfer.

        Returns:
            True if ``transfer_balances()`` was invoked
        """
        if not self.gate.is_ready or self.transaction_manager is None:
            self.logger.error("RPC connection is not established before balance transfer")
            await self._record("skipped")
            return False

        if self._in_flight:
            self.logger.warning(
                "Previous balance transfer still running, skipping this run",
                scheduled_for=scheduled_for.isoformat() if scheduled_for else None
            )
            await self._record("skipped")
            return False

        self._in_flight = True
        previous_status = self.status
        self.status = SchedulerStatus.PROCESSING
        self.stats.total_runs += 1
        self.logger.info(
            "Running scheduled balance transfer",
            scheduled_for=scheduled_for.isoformat() if scheduled_for else None
        )

        outcome = "failure"
        try:
            await self.transaction_manager.transfer_balances()
            outcome = "success"
            self.stats.successful_runs += 1
            self.logger.info("Scheduled balance transfer completed")
        except Exception as e:
            self.stats.failed_runs += 1
            self.logger.error(
                f"Transaction manager error: {e}",
                error=str(e),
                failed_runs=self.stats.failed_runs,
                exc_info=True
            )
        finally:
            self._in_flight = False
            self.stats.last_run = self._clock()
            self.status = previous_status

        await self._record(outcome)
        return True

    async def _record(self, outcome: str):
        if outcome == "skipped":
            self.stats.skipped_runs += 1
        if self.metrics is None:
            return
        self.metrics.record_run(outcome)
        await self.metrics.push()

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        return {
            "status": self.status.value,
            "payment_interval_hours": self.payment_interval,
            "in_flight": self._in_flight,
            "stats": asdict(self.stats),
            "next_run": self.stats.next_run.isoformat() if self.stats.next_run else None
        }
