# tasks/scheduler.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "expiration_sweep"
DEFAULT_SWEEP_INTERVAL = 600.0


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(event_loop=asyncio.get_running_loop())


class ExpirationSweeper:
    """
    Runs ``sweep`` every ``interval`` seconds on an AsyncIOScheduler.

    Stopping shuts the scheduler down; a sweep pass already running is
    shielded from that cancellation and awaited by stop().
    """

    def __init__(self, sweep: Callable[[], Awaitable[int]], interval: float = DEFAULT_SWEEP_INTERVAL):
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self.sweep = sweep
        self.interval = interval
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._current: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        """Start ticking; requires a running event loop."""
        if self.scheduler is not None:
            return
        self.scheduler = create_scheduler()
        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=self.interval),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Expiration sweeper started (interval={self.interval}s)")

    async def _tick(self) -> None:
        self._current = asyncio.ensure_future(self.sweep())
        try:
            removed = await asyncio.shield(self._current)
            if removed:
                logger.info(f"Expiration sweep removed {removed} entries")
        except asyncio.CancelledError:
            # scheduler shutdown; stop() waits for the shielded pass
            logger.debug("Expiration sweep tick cancelled")
        except Exception as e:
            logger.error(f"Expiration sweep failed: {e}")

    async def stop(self) -> None:
        if self.scheduler is None:
            return
        scheduler, self.scheduler = self.scheduler, None
        if scheduler.running:
            scheduler.shutdown(wait=False)

        current, self._current = self._current, None
        if current is not None and not current.done():
            try:
                await current
            except Exception as e:
                logger.error(f"Expiration sweep failed during shutdown: {e}")
        logger.info("Expiration sweeper stopped")
