# content_sync/scheduler/limiter.py
"""
Concurrency Limiter - caps the number of running sync tasks process-wide

The running set is only touched under the limiter's condition lock, so
concurrent completions and admissions cannot over-admit. Batch chunks wait
on the same condition for a free slot instead of bypassing the cap.
"""

import asyncio
import logging
from typing import Callable, List, Set

from content_sync.models.task import SyncTask

logger = logging.getLogger("content_sync.scheduler.limiter")


class ConcurrencyLimiter:

    def __init__(self, max_concurrent_tasks: int):
        self.max_concurrent_tasks = max(1, int(max_concurrent_tasks))
        self._running: Set[str] = set()
        self._slots = asyncio.Condition()
        self.peak_running: int = 0

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def available(self) -> int:
        return self.max_concurrent_tasks - len(self._running)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def running_ids(self) -> Set[str]:
        return set(self._running)

    async def admit(self, select: Callable[[int], List[SyncTask]]) -> List[SyncTask]:
        """
        Admit up to the number of free slots.

        ``select`` receives the free slot count and returns the tasks to admit.
        Returns an empty list without calling ``select`` when saturated.
        """
        async with self._slots:
            available = self.max_concurrent_tasks - len(self._running)
            if available <= 0:
                return []

            admitted = [t for t in select(available)[:available] if t.id not in self._running]
            for task in admitted:
                self._running.add(task.id)
            self._track_peak()
            return admitted

    async def try_acquire(self, task_id: str) -> bool:
        async with self._slots:
            if task_id in self._running or len(self._running) >= self.max_concurrent_tasks:
                return False
            self._running.add(task_id)
            self._track_peak()
            return True

    async def acquire(self, task_id: str) -> bool:
        """
        Wait for a free slot and take it for ``task_id``.

        Returns False if the id already holds a slot; the caller then owns
        nothing and must not release it.
        """
        async with self._slots:
            await self._slots.wait_for(
                lambda: task_id in self._running or len(self._running) < self.max_concurrent_tasks
            )
            if task_id in self._running:
                return False
            self._running.add(task_id)
            self._track_peak()
            return True

    async def release(self, task_id: str):
        async with self._slots:
            if task_id not in self._running:
                return
            self._running.discard(task_id)
            self._slots.notify_all()

    def _track_peak(self):
        if len(self._running) > self.peak_running:
            self.peak_running = len(self._running)

    def get_status(self):
        return {
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "running": len(self._running),
            "available": max(0, self.available),
            "peak_running": self.peak_running
        }
