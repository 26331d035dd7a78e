# content_sync/scheduler/reaper.py
"""
Reaper - removes terminal tasks past the retention window

Pending and running tasks are never removed, whatever their age.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from content_sync.models.task import SyncTask, utcnow
from .events import EventBus, SyncEvent
from .queue import TaskQueue

logger = logging.getLogger("content_sync.scheduler.reaper")


class Reaper:

    def __init__(
        self,
        queue: TaskQueue,
        events: EventBus,
        retention_hours: float = 24,
        interval_seconds: float = 3600
    ):
        self.queue = queue
        self.events = events
        self.retention_hours = retention_hours
        self.interval_seconds = interval_seconds
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self.removed_total: int = 0

    def cleanup(self, retention_hours: Optional[float] = None, now: Optional[datetime] = None) -> List[SyncTask]:
        """Remove terminal tasks whose ended_at is older than the retention window"""
        hours = self.retention_hours if retention_hours is None else retention_hours
        cutoff = (now or utcnow()) - timedelta(hours=hours)

        expired = [
            task for task in self.queue
            if task.is_terminal and task.ended_at is not None and task.ended_at < cutoff
        ]
        for task in expired:
            self.queue.remove(task.id)
            self.events.emit(SyncEvent.TASK_CLEANED, task)

        self.removed_total += len(expired)
        if expired:
            logger.info(f"Cleanup removed {len(expired)} tasks | retention_hours={hours} | remaining={len(self.queue)}")
        else:
            logger.debug(f"Cleanup complete | no tasks older than {hours}h")
        return expired

    async def start(self):
        if self._running or self.interval_seconds <= 0:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._cleanup_loop())
        logger.info(f"Cleanup loop started | interval={self.interval_seconds}s | retention_hours={self.retention_hours}")

    async def stop(self):
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Cleanup loop stopped")

    async def _cleanup_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cleanup loop error: {e}")
                await asyncio.sleep(60)
