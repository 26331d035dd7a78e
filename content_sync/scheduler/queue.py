# content_sync/scheduler/queue.py
"""
Task Queue - holds every sync task until the reaper removes it

Pure container: it never changes a task's status. Retrieval is a stable
priority order: priority (high first), then creation time, then insertion
order.
"""

import itertools
import logging
from typing import Callable, Dict, Iterator, List, Optional

from content_sync.errors import DuplicateTaskError
from content_sync.models.task import SyncTask

logger = logging.getLogger("content_sync.scheduler.queue")

TaskPredicate = Callable[[SyncTask], bool]


class TaskQueue:

    def __init__(self):
        self._tasks: Dict[str, SyncTask] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[SyncTask]:
        return iter(list(self._tasks.values()))

    def enqueue(self, task: SyncTask):
        """
        Add a task.

        Raises:
            DuplicateTaskError: If a task with the same id is already queued
        """
        if task.id in self._tasks:
            raise DuplicateTaskError(task.id)
        self._tasks[task.id] = task
        self._sequence[task.id] = next(self._counter)
        logger.debug(f"Enqueued task {task.id} | priority={task.schedule.priority.value} | size={len(self._tasks)}")

    def _order_key(self, task: SyncTask):
        return (-task.schedule.priority.rank, task.created_at, self._sequence[task.id])

    def select(self, predicate: Optional[TaskPredicate] = None) -> List[SyncTask]:
        """All tasks matching ``predicate`` in admission order"""
        matches = [t for t in self._tasks.values() if predicate is None or predicate(t)]
        return sorted(matches, key=self._order_key)

    def next_batch(self, n: int, predicate: Optional[TaskPredicate] = None) -> List[SyncTask]:
        """Up to ``n`` tasks matching ``predicate`` in admission order"""
        if n <= 0:
            return []
        return self.select(predicate)[:n]

    def find(self, task_id: str) -> Optional[SyncTask]:
        return self._tasks.get(task_id)

    def remove(self, task_id: str) -> Optional[SyncTask]:
        self._sequence.pop(task_id, None)
        return self._tasks.pop(task_id, None)
