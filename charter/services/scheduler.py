"""Scheduler for background tasks (settlement polling, installment activation)."""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from charter.logging import get_logger
from charter.services.installment_scheduler import InstallmentActivationScheduler
from charter.services.runtime_scope import RuntimeScope
from charter.services.settlement_poller import SettlementPoller

logger = get_logger(__name__)


def seconds_until_next_run(now: datetime, hour: int, minute: int) -> float:
    """Seconds from ``now`` until the next ``hour:minute`` (tomorrow if already past)."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class SchedulerService:
    """Background task scheduler for the reservation payment lifecycle."""

    def __init__(
        self,
        poller: SettlementPoller,
        activation: InstallmentActivationScheduler,
        scope: RuntimeScope,
        poll_interval_seconds: int,
        daily_hour: int = 9,
        daily_minute: int = 0,
        cleanup_interval_seconds: int = 3600,
        local_clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize scheduler service.

        Args:
            poller: Settlement poller run every ``poll_interval_seconds``
            activation: Installment scheduler run at startup, then daily
            scope: Runtime scope whose caches are cleared periodically
            poll_interval_seconds: Settlement poll period
            daily_hour: Local hour of the daily activation run
            daily_minute: Local minute of the daily activation run
            cleanup_interval_seconds: Cache cleanup period
            local_clock: Returns server-local time for the daily schedule
        """
        self.poller = poller
        self.activation = activation
        self.scope = scope
        self.poll_interval_seconds = poll_interval_seconds
        self.daily_hour = daily_hour
        self.daily_minute = daily_minute
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.local_clock = local_clock or datetime.now
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the poll, daily activation and cache cleanup loops."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="settlement-poller"),
            asyncio.create_task(self._daily_loop(), name="installment-scheduler"),
            asyncio.create_task(self._cleanup_loop(), name="cache-cleanup"),
        ]
        logger.info(
            "scheduler_started",
            poll_interval_seconds=self.poll_interval_seconds,
            daily_at=f"{self.daily_hour:02d}:{self.daily_minute:02d}",
        )

    async def stop(self) -> None:
        """Stop all loops; in-flight calls are abandoned."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler_stopped")

    async def _run_safely(self, name: str, job: Callable[[], Awaitable[dict[str, int]]]) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("scheduler_job_error", job=name, error=str(e), exc_info=True)

    async def _poll_loop(self) -> None:
        while self._running:
            await self._run_safely("settlement_poller", self.poller.tick)
            await asyncio.sleep(self.poll_interval_seconds)

    async def _daily_loop(self) -> None:
        await self._run_safely("installment_scheduler", self.activation.run)
        while self._running:
            delay = seconds_until_next_run(self.local_clock(), self.daily_hour, self.daily_minute)
            logger.info("installment_scheduler_next_run", seconds=round(delay))
            await asyncio.sleep(delay)
            await self._run_safely("installment_scheduler", self.activation.run)

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.cleanup_interval_seconds)
            self.scope.clear_caches()
            logger.info("runtime_caches_cleared")
