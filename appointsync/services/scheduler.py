"""Background triggers for the full sync: a periodic timer and a delayed startup run."""

import asyncio
import logging
from typing import List, Optional

from .sync_service import CalendarSyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Runs ``run_full_sync`` every ``interval_seconds`` and once after
    ``startup_delay_seconds``. Overlap between the two is resolved by the
    sync service's coordinator, not here.
    """

    def __init__(
        self,
        sync_service: CalendarSyncService,
        interval_seconds: float = 30 * 60,
        startup_delay_seconds: Optional[float] = 60,
    ):
        self.sync_service = sync_service
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _run(self, trigger: str) -> None:
        logger.info(f"{trigger} sync triggered, coordinator: {self.sync_service.coordinator.status().model_dump()}")
        try:
            report = await self.sync_service.run_full_sync(trigger=trigger)
        except Exception as e:
            # Keep the timer alive; the next tick retries.
            logger.exception(f"{trigger} sync crashed: {e}")
            return
        if report.skipped:
            logger.info(f"{trigger} sync skipped (recent or running sync)")

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self._run("periodic")

    async def _startup(self) -> None:
        await asyncio.sleep(self.startup_delay_seconds)
        await self._run("startup")

    def start(self) -> None:
        """Launch the background tasks on the running event loop."""
        if self.is_running:
            return
        self._tasks = [asyncio.create_task(self._periodic(), name="periodic-sync")]
        if self.startup_delay_seconds is not None:
            self._tasks.append(asyncio.create_task(self._startup(), name="startup-sync"))
        logger.info(
            f"Automated sync configured: every {self.interval_seconds / 60:g} minutes, "
            f"initial run in {self.startup_delay_seconds}s"
        )

    async def stop(self) -> None:
        """Cancel background tasks and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info(f"Cleared {len(self._tasks)} background sync tasks")
        self._tasks = []
