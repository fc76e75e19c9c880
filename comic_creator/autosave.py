"""
Autosave — periodic safety-net checkpoint of the current comic.

Uses APScheduler's AsyncIOScheduler with an interval trigger. Each fire
saves whatever the pipeline holds at that moment; there is nothing to
save until a project has an id and panels.
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from comic_creator import config

logger = logging.getLogger(__name__)

JOB_ID = "comic_autosave"


class AutosaveScheduler:
    """Checkpoints the pipeline every interval_seconds."""

    def __init__(self, pipeline, interval_seconds: Optional[int] = None):
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds or config.AUTOSAVE_INTERVAL_SECONDS
        self.scheduler = AsyncIOScheduler()
        self.saves = 0

    async def start(self):
        """Start the scheduler. Call from inside the running event loop."""
        self.scheduler.add_job(
            self._autosave,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Autosave started (every {self.interval_seconds}s)")

    async def stop(self):
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Autosave stopped")

    async def _autosave(self):
        if await asyncio.to_thread(self.pipeline.autosave):
            self.saves += 1
            logger.info("Autosave: project checkpointed")
        else:
            logger.debug("Autosave: nothing to save")
