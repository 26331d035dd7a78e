# content_sync/scheduler/batch.py
"""
Batch Scheduler - drains deferred (batch strategy) tasks for one owner

Pending batch tasks are ordered like the main queue, split into chunks of
``batch_size`` and executed chunk after chunk. Tasks inside a chunk run
concurrently, each holding a limiter slot, so batch and immediate tasks
share one process-wide cap.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from content_sync.models.task import SyncStrategy, SyncTask, TaskStatus
from .limiter import ConcurrencyLimiter
from .queue import TaskQueue
from .retry import RetryController

logger = logging.getLogger("content_sync.scheduler.batch")


@dataclass
class BatchSyncReport:
    owner_id: str
    chunks: List[int] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    retrying: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return sum(self.chunks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "processed": self.processed,
            "chunks": list(self.chunks),
            "completed": self.completed,
            "failed": self.failed,
            "retrying": self.retrying,
            "skipped": self.skipped
        }


class BatchScheduler:

    def __init__(
        self,
        queue: TaskQueue,
        limiter: ConcurrencyLimiter,
        retry_controller: RetryController,
        claim: Callable[[SyncTask], bool],
        launch: Callable[[SyncTask], "asyncio.Task[None]"],
        batch_size: int = 5,
        interval_seconds: float = 0
    ):
        self.queue = queue
        self.limiter = limiter
        self.retry_controller = retry_controller
        self.claim = claim
        self.launch = launch
        self.batch_size = max(1, int(batch_size))
        self.interval_seconds = interval_seconds
        self._owner_locks: Dict[str, asyncio.Lock] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    def pending_for(self, owner_id: Optional[str] = None) -> List[SyncTask]:
        return self.queue.select(lambda t: self._runnable(t, owner_id))

    def _runnable(self, task: SyncTask, owner_id: Optional[str] = None) -> bool:
        return (
            task.status == TaskStatus.PENDING
            and task.schedule.strategy == SyncStrategy.BATCH
            and (owner_id is None or task.owner_id == owner_id)
            and not self.retry_controller.in_backoff(task.id)
        )

    async def batch_sync(self, owner_id: str) -> BatchSyncReport:
        """
        Run every pending batch task of ``owner_id`` in sequential chunks.

        Calls for the same owner are serialized. Each task waits for a limiter
        slot, so a chunk never pushes the running count past the cap.
        """
        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        async with lock:
            return await self._drain(owner_id)

    async def _drain(self, owner_id: str) -> BatchSyncReport:
        report = BatchSyncReport(owner_id=owner_id)
        pending = self.pending_for(owner_id)
        if not pending:
            return report

        chunks = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        logger.info(f"Batch sync started | owner_id={owner_id} | tasks={len(pending)} | chunks={len(chunks)}")

        for chunk in chunks:
            started = await self._start_chunk(chunk, report)
            if not started:
                continue
            report.chunks.append(len(started))
            # Attempts outlive a cancelled drain; stop() waits for them
            await asyncio.wait([runner for _, runner in started])

            for task, _ in started:
                if task.status == TaskStatus.COMPLETED:
                    report.completed += 1
                elif task.status == TaskStatus.FAILED:
                    report.failed += 1
                else:
                    report.retrying += 1

        logger.info(
            f"Batch sync finished | owner_id={owner_id} | processed={report.processed} | "
            f"completed={report.completed} | failed={report.failed} | retrying={report.retrying}"
        )
        return report

    async def _start_chunk(self, chunk: List[SyncTask], report: BatchSyncReport):
        started = []
        for task in chunk:
            # State may have changed since selection
            if not self._runnable(task):
                report.skipped += 1
                continue
            if not await self.limiter.acquire(task.id):
                report.skipped += 1
                continue
            # No suspension between the check and the claim
            if not self._runnable(task) or not self.claim(task):
                await self.limiter.release(task.id)
                report.skipped += 1
                continue
            started.append((task, self.launch(task)))
        return started

    async def flush_all(self) -> List[BatchSyncReport]:
        """Drain pending batch tasks of every owner"""
        owners = []
        for task in self.pending_for():
            if task.owner_id not in owners:
                owners.append(task.owner_id)
        return [await self.batch_sync(owner_id) for owner_id in owners]

    async def start(self):
        if self._running or self.interval_seconds <= 0:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._batch_loop())
        logger.info(f"Batch loop started | interval={self.interval_seconds}s | batch_size={self.batch_size}")

    async def stop(self):
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def _batch_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.flush_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Batch loop error: {e}")
