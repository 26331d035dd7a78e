# content_sync/scheduler/manager.py
"""
Content Sync Scheduler - public facade over queue, limiter, executor, retry,
batch and reaper components.

Usage:
    scheduler = ContentSyncScheduler(SyncConfig(), record_store)
    await scheduler.start()

    task = await scheduler.create_sync_task(
        content_id="session-42-summary",
        owner_id="user-1",
        change=ContentChange(ChangeKind.UPDATE, "ai_summary", before, after),
    )
    await scheduler.wait_for_task(task.id, timeout=30)

    await scheduler.stop()

Immediate tasks are admitted as soon as a slot is free; batch tasks wait for
batch_sync(owner_id); manual tasks wait for sync_now(task_id).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Union

from content_sync.config import SyncConfig
from content_sync.errors import ConfigurationError, TaskNotFoundError
from content_sync.middleware.correlation import bind_task_context
from content_sync.models.task import (
    ContentChange,
    SyncPriority,
    SyncStrategy,
    SyncTask,
    TaskSchedule,
    TaskStatus,
    utcnow,
)
from content_sync.stores.base import RecordStore, StoreTargetSyncer
from .batch import BatchScheduler, BatchSyncReport
from .events import EventBus, Listener, SyncEvent
from .executor import TargetSyncer, TaskExecutor
from .limiter import ConcurrencyLimiter
from .queue import TaskQueue
from .reaper import Reaper
from .resolver import AffectedTargetResolver
from .retry import RetryController

logger = logging.getLogger("content_sync.scheduler")


class ContentSyncScheduler:
    """
    Schedules propagation of content changes to every derived artifact.

    Not a singleton: each instance owns its queue, running set and timers.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        record_store: Optional[RecordStore] = None,
        syncer: Optional[TargetSyncer] = None,
        resolver: Optional[AffectedTargetResolver] = None,
        event_bus: Optional[EventBus] = None
    ):
        self.config = config or SyncConfig()
        if record_store is None and (syncer is None or resolver is None):
            raise ConfigurationError("record_store", None, "required unless both syncer and resolver are given")

        self.record_store = record_store
        self.resolver = resolver or AffectedTargetResolver(record_store)
        self.events = event_bus or EventBus()
        self.queue = TaskQueue()
        self.limiter = ConcurrencyLimiter(self.config.max_concurrent_tasks)
        self.executor = TaskExecutor(
            syncer or StoreTargetSyncer(record_store),
            target_timeout=self.config.target_timeout
        )
        self.retry_controller = RetryController(
            self.events,
            retry_delay=self.config.retry_delay,
            retry_permanent_errors=self.config.retry_permanent_errors,
            on_ready=self._on_backoff_elapsed
        )
        self.batch = BatchScheduler(
            self.queue,
            self.limiter,
            self.retry_controller,
            claim=self._start,
            launch=self._launch_batch_task,
            batch_size=self.config.batch_size,
            interval_seconds=self.config.batch_interval_seconds
        )
        self.reaper = Reaper(
            self.queue,
            self.events,
            retention_hours=self.config.retention_hours,
            interval_seconds=self.config.cleanup_interval_seconds
        )

        self._inflight: Set[asyncio.Task] = set()
        self._closed = False

        logger.info(
            f"ContentSyncScheduler initialized | max_concurrent={self.config.max_concurrent_tasks} | "
            f"retry_attempts={self.config.retry_attempts} | retry_delay={self.config.retry_delay}s | "
            f"batch_size={self.config.batch_size}"
        )

    # =========================================================================
    # Task Creation & Lookup
    # =========================================================================

    async def create_sync_task(
        self,
        content_id: str,
        owner_id: str,
        change: ContentChange,
        session_id: Optional[str] = None,
        strategy: Union[SyncStrategy, str] = SyncStrategy.IMMEDIATE,
        priority: Union[SyncPriority, str] = SyncPriority.MEDIUM,
        max_retries: Optional[int] = None
    ) -> SyncTask:
        """
        Discover affected targets and queue a sync task for them.

        A task with no affected targets completes immediately. Immediate
        tasks are handed to the scheduling loop before this returns.

        Raises:
            DiscoveryError: If the record store could not be queried
        """
        strategy = SyncStrategy(strategy)
        priority = SyncPriority(priority)
        if max_retries is None:
            max_retries = self.config.retry_attempts
        if max_retries < 0:
            raise ConfigurationError("max_retries", max_retries, "must be >= 0")

        targets = await self.resolver.resolve(content_id, owner_id, session_id)

        task = SyncTask(
            content_id=content_id,
            owner_id=owner_id,
            change=change,
            affected_targets=tuple(targets),
            session_id=session_id,
            schedule=TaskSchedule(strategy=strategy, priority=priority, max_retries=max_retries)
        )
        self.queue.enqueue(task)
        logger.info(f"Sync task created | task_id={task.id} | content_id={content_id} | owner_id={owner_id} | "
                    f"targets={task.total_targets} | strategy={strategy.value} | priority={priority.value}")
        self.events.emit(SyncEvent.TASK_CREATED, task)

        if not targets:
            task.started_at = utcnow()
            task.progress = 100
            task.transition_to(TaskStatus.COMPLETED, "no affected targets")
            self.events.emit(SyncEvent.TASK_COMPLETED, task)
            return task

        if strategy == SyncStrategy.IMMEDIATE:
            await self.process_queue()
        return task

    def get_task_status(self, task_id: str) -> Optional[SyncTask]:
        return self.queue.find(task_id)

    def get_active_tasks(self, owner_id: Optional[str] = None) -> List[SyncTask]:
        """Pending and running tasks, optionally limited to one owner"""
        return self.queue.select(
            lambda t: t.status in (TaskStatus.PENDING, TaskStatus.RUNNING)
            and (owner_id is None or t.owner_id == owner_id)
        )

    def _require(self, task_id: str) -> SyncTask:
        task = self.queue.find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_task(self, task_id: str) -> bool:
        """
        Cancel a task that has not started executing.

        Returns False if the task is running or already finished.

        Raises:
            TaskNotFoundError: If the task id is unknown
        """
        task = self._require(task_id)
        if task.status != TaskStatus.PENDING:
            logger.info(f"Cancel refused | task_id={task_id} | status={task.status.value}")
            return False

        self.retry_controller.cancel_backoff(task_id)
        task.retry_after = None
        task.transition_to(TaskStatus.CANCELLED)
        logger.info(f"Task {task_id} cancelled")
        self.events.emit(SyncEvent.TASK_CANCELLED, task)
        return True

    # =========================================================================
    # Scheduling Loop
    # =========================================================================

    def _immediate_ready(self, task: SyncTask) -> bool:
        return (
            task.status == TaskStatus.PENDING
            and task.schedule.strategy == SyncStrategy.IMMEDIATE
            and not self.retry_controller.in_backoff(task.id)
        )

    async def process_queue(self) -> List[SyncTask]:
        """Admit pending immediate tasks up to free capacity and start them"""
        if self._closed:
            return []

        admitted = await self.limiter.admit(lambda n: self.queue.next_batch(n, self._immediate_ready))
        started = []
        for task in admitted:
            if not self._start(task):
                await self.limiter.release(task.id)
                continue
            self._spawn(self._execute(task))
            started.append(task)

        if started:
            logger.debug(f"Admitted {len(started)} tasks | running={self.limiter.running_count}")
        return started

    async def sync_now(self, task_id: str) -> bool:
        """
        Start one pending task regardless of its strategy if a slot is free.

        Raises:
            TaskNotFoundError: If the task id is unknown
        """
        task = self._require(task_id)
        if task.status != TaskStatus.PENDING or self.retry_controller.in_backoff(task_id):
            return False
        if not await self.limiter.try_acquire(task_id):
            logger.info(f"sync_now deferred | task_id={task_id} | no free slot")
            return False
        if not self._start(task):
            await self.limiter.release(task_id)
            return False

        self._spawn(self._execute(task))
        return True

    def _start(self, task: SyncTask) -> bool:
        # Cancellation may win between selection and start
        if task.status != TaskStatus.PENDING:
            return False
        task.transition_to(TaskStatus.RUNNING)
        self.events.emit(SyncEvent.TASK_STARTED, task)
        return True

    def _spawn(self, coro) -> asyncio.Task:
        runner = asyncio.create_task(coro)
        self._inflight.add(runner)
        runner.add_done_callback(self._on_inflight_done)
        return runner

    def _on_inflight_done(self, runner: asyncio.Task):
        self._inflight.discard(runner)
        if runner.cancelled():
            return
        error = runner.exception()
        if error is not None:
            logger.error(f"Background scheduling step failed: {error}", exc_info=error)

    def _on_backoff_elapsed(self, task_id: str):
        if self._closed:
            return
        self._spawn(self.process_queue())

    async def _execute(self, task: SyncTask):
        """Run one attempt of a task already marked running, then settle it"""
        try:
            with bind_task_context(task.id):
                try:
                    outcome = await self.executor.run(task)
                except Exception as e:
                    logger.exception(f"Unexpected error executing task {task.id}: {e}")
                    outcome = self.executor.fail_attempt(task, e)
                self.retry_controller.settle(task, outcome)
        finally:
            await self.limiter.release(task.id)

        if not self._closed:
            await self.process_queue()

    def _launch_batch_task(self, task: SyncTask) -> asyncio.Task:
        return self._spawn(self._execute(task))

    # =========================================================================
    # Batch, Cleanup & Waiting
    # =========================================================================

    async def batch_sync(self, owner_id: str) -> BatchSyncReport:
        return await self.batch.batch_sync(owner_id)

    def cleanup(self, retention_hours: Optional[float] = None) -> List[SyncTask]:
        return self.reaper.cleanup(retention_hours)

    async def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> SyncTask:
        """
        Wait until a task reaches a terminal status.

        Raises:
            TaskNotFoundError: If the task id is unknown
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        task = self._require(task_id)
        await asyncio.wait_for(task.wait_finished(), timeout=timeout)
        return task

    def on(self, event_name: Union[SyncEvent, str], listener: Listener):
        return self.events.on(event_name, listener)

    # =========================================================================
    # Lifecycle & Stats
    # =========================================================================

    async def start(self):
        self._closed = False
        # Backoff timers cancelled by a previous stop() resume where they left off
        rearmed = [task.id for task in self.queue if self.retry_controller.rearm(task)]
        if rearmed:
            logger.info(f"Backoff timers restored | tasks={len(rearmed)}")
        await self.reaper.start()
        await self.batch.start()
        logger.info("ContentSyncScheduler started")

    async def stop(self):
        """Stop periodic loops and retry timers, then wait for running attempts"""
        self._closed = True
        await self.batch.stop()
        await self.reaper.stop()
        self.retry_controller.shutdown()

        if self._inflight:
            logger.info(f"Waiting for {len(self._inflight)} in-flight sync steps")
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self.events.drain()
        logger.info("ContentSyncScheduler stopped")

    def get_stats(self) -> Dict[str, Any]:
        by_status = {status.value: 0 for status in TaskStatus}
        for task in self.queue:
            by_status[task.status.value] += 1

        return {
            "total_tasks": len(self.queue),
            "by_status": by_status,
            "limiter": self.limiter.get_status(),
            "in_backoff": self.retry_controller.backoff_count(),
            "events_published": self.events.published,
            "listener_errors": self.events.listener_errors,
            "reaped_tasks": self.reaper.removed_total
        }
