"""
Advancement engine — background task that keeps the stream moving.

Every ``check_interval`` seconds it asks the scheduler to start playback when
idle or to replace a song whose run time has elapsed. The same advancement is
also triggered from the request path, so the loop only guarantees liveness
when nobody is listening.
"""
import asyncio
import logging
from typing import Optional

from rotation.core.exceptions import NoEligibleContent
from rotation.services.rotation_scheduler import RotationScheduler

logger = logging.getLogger(__name__)


class AdvancementEngine:
    def __init__(self, scheduler: RotationScheduler, check_interval: float = 1.0):
        self.scheduler = scheduler
        self.check_interval = check_interval  # seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the advancement loop."""
        if self.running:
            logger.warning("Advancement engine already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Advancement engine started (every %.1fs)", self.check_interval)

    async def stop(self):
        """Stop the advancement loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Advancement engine stopped")

    async def tick(self):
        """One pass of the loop; exposed so tests can drive it without sleeping."""
        try:
            await self.scheduler.advance_if_due()
        except NoEligibleContent as e:
            logger.debug("Nothing to advance to: %s", e.message)

    async def _run_loop(self):
        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("Advancement error: %s", e, exc_info=True)

            await asyncio.sleep(self.check_interval)
