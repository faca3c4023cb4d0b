import logging
from typing import Awaitable, Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Periodic drain of the retry queue on the running event loop"""

    JOB_ID = "sync_drain_job"

    def __init__(self, tick: Callable[[], Awaitable[object]], interval_seconds: Optional[float] = None):
        self.tick = tick
        self.interval_seconds = interval_seconds or settings.SYNC_INTERVAL_SECONDS
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_tick(self):
        """Job body; a failed tick is logged and the next one runs on schedule"""
        try:
            await self.tick()
        except Exception as e:
            logger.error(f"Scheduler: sync tick failed - {e}")

    def start(self):
        """Start a fresh scheduler with the single drain job"""
        if self._running:
            return
        # AsyncIOScheduler.shutdown() completes on a later loop iteration, so a
        # stopped instance is never restarted
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Sync scheduler started (every {self.interval_seconds}s)")

    def stop(self):
        if not self._running:
            return
        self._running = False
        scheduler, self.scheduler = self.scheduler, None
        scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")
