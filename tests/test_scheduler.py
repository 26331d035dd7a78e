# tests/test_scheduler.py
"""
Test suite for ContentSyncScheduler end-to-end behavior

Tests:
1. Full success and empty discovery
2. Concurrency bound and priority ordering
3. Cancellation boundary
4. Retries: exhaustion, backoff delay, permanent errors
5. Manual strategy, batch grouping and reaping
"""

import asyncio
from datetime import timedelta

import pytest

from content_sync.config import SyncConfig
from content_sync.errors import (
    ConfigurationError,
    DiscoveryError,
    RecordNotFoundError,
    TaskNotFoundError,
    TransientStoreError,
)
from content_sync.models.task import ResultStatus, SyncStrategy, TaskStatus, utcnow
from content_sync.scheduler.events import SyncEvent
from content_sync.scheduler.manager import ContentSyncScheduler
from content_sync.stores.memory import InMemoryRecordStore

from conftest import OTHER_OWNER, OWNER, make_change, seed_pages


async def settle_loop(rounds: int = 5):
    """Let spawned attempts reach their first suspension point"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_all(scheduler, tasks, timeout: float = 5):
    for task in tasks:
        await scheduler.wait_for_task(task.id, timeout=timeout)


# =============================================================================
# Test: Task Creation
# =============================================================================

class TestTaskCreation:
    """Tests for discovery and immediate execution"""

    @pytest.mark.asyncio
    async def test_full_success(self, scheduler, store, syncer, recorded_events):
        """Every target synced: completed, progress 100, no retries"""
        seed_pages(store, "content-1", 3)

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.schedule.retry_count == 0
        assert len(task.results) == task.total_targets == 3
        assert all(r.status == ResultStatus.SUCCESS for r in task.results)
        assert task.started_at is not None and task.ended_at is not None
        assert recorded_events == ["taskCreated", "taskStarted", "taskCompleted"]

    @pytest.mark.asyncio
    async def test_empty_discovery_completes_immediately(self, scheduler, syncer, recorded_events):
        task = await scheduler.create_sync_task("content-unused", OWNER, make_change())

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.results == []
        assert syncer.calls == []
        assert recorded_events == ["taskCreated", "taskCompleted"]

    @pytest.mark.asyncio
    async def test_discovery_failure_creates_no_task(self, sync_config, syncer):
        class UnavailableStore(InMemoryRecordStore):
            async def query_by_owner(self, owner_id):
                raise TransientStoreError("connection refused")

        scheduler = ContentSyncScheduler(sync_config, UnavailableStore(), syncer=syncer)

        with pytest.raises(DiscoveryError):
            await scheduler.create_sync_task("content-1", OWNER, make_change())
        assert len(scheduler.queue) == 0

    @pytest.mark.asyncio
    async def test_string_strategy_and_priority(self, scheduler, store):
        seed_pages(store, "content-1", 1)

        task = await scheduler.create_sync_task("content-1", OWNER, make_change(),
                                                strategy="batch", priority="high", max_retries=1)

        assert task.schedule.strategy == SyncStrategy.BATCH
        assert task.schedule.max_retries == 1
        assert task.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_negative_max_retries_rejected(self, scheduler, store):
        seed_pages(store, "content-1", 1)
        with pytest.raises(ConfigurationError):
            await scheduler.create_sync_task("content-1", OWNER, make_change(), max_retries=-1)

    @pytest.mark.asyncio
    async def test_get_active_tasks_filters_owner(self, scheduler, store):
        seed_pages(store, "content-1", 1)
        seed_pages(store, "content-1", 1, owner_id=OTHER_OWNER, prefix="other")

        mine = await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="batch")
        await scheduler.create_sync_task("content-1", OTHER_OWNER, make_change(), strategy="batch")

        assert [t.id for t in scheduler.get_active_tasks(OWNER)] == [mine.id]
        assert len(scheduler.get_active_tasks()) == 2
        assert scheduler.get_task_status(mine.id) is mine
        assert scheduler.get_task_status("sync-0-missing") is None

    def test_requires_store_or_collaborators(self, sync_config):
        with pytest.raises(ConfigurationError):
            ContentSyncScheduler(sync_config)


# =============================================================================
# Test: Admission
# =============================================================================

class TestAdmission:
    """Tests for concurrency bound and priority ordering"""

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, scheduler, store, syncer):
        """Never more than max_concurrent_tasks running at once"""
        syncer.gate = asyncio.Event()
        tasks = []
        for i in range(5):
            seed_pages(store, f"content-{i}", 1)
            tasks.append(await scheduler.create_sync_task(f"content-{i}", OWNER, make_change()))
        await settle_loop()

        statuses = [t.status for t in tasks]
        assert statuses.count(TaskStatus.RUNNING) == 3
        assert statuses.count(TaskStatus.PENDING) == 2
        assert scheduler.limiter.running_count == 3

        syncer.gate.set()
        await wait_all(scheduler, tasks)

        assert all(t.status == TaskStatus.COMPLETED for t in tasks)
        assert scheduler.limiter.peak_running == 3
        assert syncer.peak <= 3

    @pytest.mark.asyncio
    async def test_priority_order(self, store, syncer, sync_config):
        """With one slot, higher priority tasks start first"""
        sync_config.max_concurrent_tasks = 1
        scheduler = ContentSyncScheduler(sync_config, store, syncer=syncer)
        started = []
        scheduler.on(SyncEvent.TASK_STARTED, lambda e: started.append(e.task.content_id))
        syncer.gate = asyncio.Event()

        for content_id in ("c-blocker", "c-low", "c-medium", "c-high"):
            seed_pages(store, content_id, 1)

        blocker = await scheduler.create_sync_task("c-blocker", OWNER, make_change())
        low = await scheduler.create_sync_task("c-low", OWNER, make_change(), priority="low")
        medium = await scheduler.create_sync_task("c-medium", OWNER, make_change(), priority="medium")
        high = await scheduler.create_sync_task("c-high", OWNER, make_change(), priority="high")

        syncer.gate.set()
        await wait_all(scheduler, [blocker, low, medium, high])
        await scheduler.stop()

        assert started == ["c-blocker", "c-high", "c-medium", "c-low"]

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_disturb_scheduling(self, scheduler, store):
        def broken(event):
            raise RuntimeError("listener bug")

        scheduler.on(SyncEvent.TASK_STARTED, broken)
        seed_pages(store, "content-1", 2)

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.COMPLETED
        assert scheduler.get_stats()["listener_errors"] == 1


# =============================================================================
# Test: Cancellation
# =============================================================================

class TestCancellation:
    """Tests for the cancellation boundary"""

    @pytest.mark.asyncio
    async def test_cancel_pending_task(self, scheduler, store, syncer, recorded_events):
        seed_pages(store, "content-1", 2)
        task = await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="batch")

        assert scheduler.cancel_task(task.id) is True
        report = await scheduler.batch_sync(OWNER)

        assert task.status == TaskStatus.CANCELLED
        assert task.ended_at is not None
        assert report.processed == 0
        assert syncer.calls == []
        assert recorded_events[-1] == "taskCancelled"

    @pytest.mark.asyncio
    async def test_cannot_cancel_running_task(self, scheduler, store, syncer):
        syncer.gate = asyncio.Event()
        seed_pages(store, "content-1", 1)
        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await settle_loop()

        assert task.status == TaskStatus.RUNNING
        assert scheduler.cancel_task(task.id) is False

        syncer.gate.set()
        await scheduler.wait_for_task(task.id, timeout=5)
        assert task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cannot_cancel_finished_task(self, scheduler):
        task = await scheduler.create_sync_task("content-unused", OWNER, make_change())
        assert scheduler.cancel_task(task.id) is False
        assert task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_unknown_task(self, scheduler):
        with pytest.raises(TaskNotFoundError):
            scheduler.cancel_task("sync-0-missing")

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, store, syncer, sync_config):
        """A task waiting out its retry delay is still pending and cancellable"""
        sync_config.retry_delay = 5
        scheduler = ContentSyncScheduler(sync_config, store, syncer=syncer)
        retry_scheduled = asyncio.Event()
        scheduler.on(SyncEvent.TASK_RETRY_SCHEDULED, lambda e: retry_scheduled.set())
        ids = seed_pages(store, "content-1", 1)
        syncer.failures[ids[0]] = TransientStoreError("connection reset")

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await asyncio.wait_for(retry_scheduled.wait(), timeout=5)

        assert scheduler.cancel_task(task.id) is True
        assert task.status == TaskStatus.CANCELLED
        assert not scheduler.retry_controller.in_backoff(task.id)
        await scheduler.stop()


# =============================================================================
# Test: Retries
# =============================================================================

class TestRetries:
    """Tests for retry bound and backoff"""

    @pytest.mark.asyncio
    async def test_partial_failure_exhausts_retries(self, scheduler, store, syncer, recorded_events):
        """One always-failing target out of three with max_retries=2"""
        ids = seed_pages(store, "content-1", 3)
        syncer.failures[ids[0]] = TransientStoreError("connection reset")

        task = await scheduler.create_sync_task("content-1", OWNER, make_change(), max_retries=2)
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.FAILED
        assert task.schedule.retry_count == 2
        assert syncer.calls_for(ids[0]) == 3
        assert len(task.attempts) == 3
        assert task.progress == 67
        assert task.error_count == 1
        assert recorded_events.count("taskRetryScheduled") == 2
        assert recorded_events.count("taskFailed") == 1
        assert recorded_events.count("taskCompleted") == 0

    @pytest.mark.asyncio
    async def test_retry_succeeds(self, scheduler, store, syncer):
        ids = seed_pages(store, "content-1", 2)
        syncer.failures[ids[1]] = [TransientStoreError("connection reset")]

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.COMPLETED
        assert task.schedule.retry_count == 1
        assert task.attempts[0].error_count == 1
        assert task.attempts[1].error_count == 0
        assert task.progress == 100

    @pytest.mark.asyncio
    async def test_retry_not_admitted_before_delay(self, store, syncer, sync_config):
        sync_config.retry_delay = 0.2
        scheduler = ContentSyncScheduler(sync_config, store, syncer=syncer)
        retry_scheduled = asyncio.Event()
        scheduler.on(SyncEvent.TASK_RETRY_SCHEDULED, lambda e: retry_scheduled.set())
        ids = seed_pages(store, "content-1", 1)
        syncer.failures[ids[0]] = [TransientStoreError("connection reset")]

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await asyncio.wait_for(retry_scheduled.wait(), timeout=5)

        assert task.status == TaskStatus.PENDING
        assert task.retry_after is not None
        assert await scheduler.process_queue() == []
        assert await scheduler.sync_now(task.id) is False

        await scheduler.wait_for_task(task.id, timeout=5)

        gap = task.attempts[1].started_at - task.attempts[0].ended_at
        assert gap >= timedelta(seconds=0.15)
        assert task.status == TaskStatus.COMPLETED
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_permanent_error_fails_without_retry(self, scheduler, store, syncer):
        ids = seed_pages(store, "content-1", 2)
        syncer.failures[ids[0]] = RecordNotFoundError(ids[0], OWNER)

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.FAILED
        assert task.schedule.retry_count == 0
        assert len(task.attempts) == 1

    @pytest.mark.asyncio
    async def test_permanent_error_retried_when_configured(self, store, syncer, sync_config):
        sync_config.retry_permanent_errors = True
        scheduler = ContentSyncScheduler(sync_config, store, syncer=syncer)
        ids = seed_pages(store, "content-1", 1)
        syncer.failures[ids[0]] = RecordNotFoundError(ids[0], OWNER)

        task = await scheduler.create_sync_task("content-1", OWNER, make_change(), max_retries=1)
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.FAILED
        assert task.schedule.retry_count == 1
        assert syncer.calls_for(ids[0]) == 2

    @pytest.mark.asyncio
    async def test_unexpected_executor_error_is_an_error_attempt(self, scheduler, store, syncer):
        """A crash outside per-target syncs fails every target for that attempt"""
        seed_pages(store, "content-1", 2)
        real_run = scheduler.executor.run
        crashes = []

        async def crashing_run(task):
            if not crashes:
                crashes.append(task.id)
                task.begin_attempt()
                raise RuntimeError("executor crashed")
            return await real_run(task)

        scheduler.executor.run = crashing_run

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await scheduler.wait_for_task(task.id, timeout=5)

        assert task.status == TaskStatus.COMPLETED
        assert task.attempts[0].error_count == 2
        assert task.schedule.retry_count == 1


# =============================================================================
# Test: Manual & Batch Strategies
# =============================================================================

class TestStrategies:

    @pytest.mark.asyncio
    async def test_manual_task_waits_for_sync_now(self, scheduler, store, syncer):
        seed_pages(store, "content-1", 1)
        task = await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="manual")

        assert await scheduler.process_queue() == []
        assert task.status == TaskStatus.PENDING

        assert await scheduler.sync_now(task.id) is True
        await scheduler.wait_for_task(task.id, timeout=5)
        assert task.status == TaskStatus.COMPLETED
        assert await scheduler.sync_now(task.id) is False

    @pytest.mark.asyncio
    async def test_batch_groups_seven_into_five_and_two(self, scheduler, store, syncer):
        syncer.delay = 0.01
        tasks = []
        for i in range(7):
            seed_pages(store, f"content-{i}", 1)
            tasks.append(await scheduler.create_sync_task(f"content-{i}", OWNER, make_change(), strategy="batch"))

        report = await scheduler.batch_sync(OWNER)

        assert report.chunks == [5, 2]
        assert report.completed == 7
        assert report.failed == 0
        assert syncer.peak == 3
        assert scheduler.limiter.peak_running == 3
        assert all(t.status == TaskStatus.COMPLETED for t in tasks)

    @pytest.mark.asyncio
    async def test_batch_only_runs_that_owner(self, scheduler, store):
        seed_pages(store, "content-1", 1)
        seed_pages(store, "content-1", 1, owner_id=OTHER_OWNER, prefix="other")
        mine = await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="batch")
        theirs = await scheduler.create_sync_task("content-1", OTHER_OWNER, make_change(), strategy="batch")

        await scheduler.batch_sync(OWNER)

        assert mine.status == TaskStatus.COMPLETED
        assert theirs.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_batch_and_immediate_share_the_cap(self, scheduler, store, syncer):
        """A running chunk holds slots; immediate tasks wait for them"""
        syncer.gate = asyncio.Event()
        batch_tasks = []
        for i in range(5):
            seed_pages(store, f"content-b{i}", 1)
            batch_tasks.append(await scheduler.create_sync_task(f"content-b{i}", OWNER, make_change(),
                                                                strategy="batch"))
        drain = asyncio.create_task(scheduler.batch_sync(OWNER))
        await settle_loop()

        immediate = []
        for i in range(2):
            seed_pages(store, f"content-i{i}", 1)
            immediate.append(await scheduler.create_sync_task(f"content-i{i}", OWNER, make_change()))
        await settle_loop()

        running = [t for t in batch_tasks + immediate if t.status == TaskStatus.RUNNING]
        assert len(running) == 3
        assert scheduler.limiter.running_count == 3
        assert all(t.status == TaskStatus.PENDING for t in immediate)

        syncer.gate.set()
        report = await asyncio.wait_for(drain, timeout=5)
        await wait_all(scheduler, immediate)

        assert report.completed == 5
        assert all(t.status == TaskStatus.COMPLETED for t in batch_tasks + immediate)
        assert scheduler.limiter.peak_running == 3
        assert syncer.peak <= 3
        assert scheduler.limiter.running_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_batch_sync_runs_each_task_once(self, scheduler, store, syncer):
        """Two drains of one owner never run a task twice or lose a slot"""
        syncer.gate = asyncio.Event()
        targets = []
        batch_tasks = []
        for i in range(4):
            targets += seed_pages(store, f"content-b{i}", 1)
            batch_tasks.append(await scheduler.create_sync_task(f"content-b{i}", OWNER, make_change(),
                                                                strategy="batch"))
        first = asyncio.create_task(scheduler.batch_sync(OWNER))
        second = asyncio.create_task(scheduler.batch_sync(OWNER))
        await settle_loop()

        immediate = []
        for i in range(3):
            seed_pages(store, f"content-i{i}", 1)
            immediate.append(await scheduler.create_sync_task(f"content-i{i}", OWNER, make_change()))
        await settle_loop()

        running = [t for t in batch_tasks + immediate if t.status == TaskStatus.RUNNING]
        assert len(running) == scheduler.limiter.running_count == 3
        assert scheduler.limiter.running_ids() == {t.id for t in running}

        syncer.gate.set()
        reports = await asyncio.wait_for(asyncio.gather(first, second), timeout=5)
        await wait_all(scheduler, immediate)

        assert sum(r.processed for r in reports) == 4
        assert all(syncer.calls_for(target_id) == 1 for target_id in targets)
        assert all(t.status == TaskStatus.COMPLETED for t in batch_tasks + immediate)
        assert scheduler.limiter.peak_running == 3
        assert scheduler.limiter.running_count == 0

    @pytest.mark.asyncio
    async def test_flush_all(self, scheduler, store):
        seed_pages(store, "content-1", 1)
        seed_pages(store, "content-1", 1, owner_id=OTHER_OWNER, prefix="other")
        await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="batch")
        await scheduler.create_sync_task("content-1", OTHER_OWNER, make_change(), strategy="batch")

        reports = await scheduler.batch.flush_all()

        assert sorted(r.owner_id for r in reports) == [OWNER, OTHER_OWNER]
        assert scheduler.get_active_tasks() == []


# =============================================================================
# Test: Reaping & Stats
# =============================================================================

class TestReaping:

    @pytest.mark.asyncio
    async def test_cleanup_respects_retention(self, scheduler, store, recorded_events):
        old = await scheduler.create_sync_task("content-a", OWNER, make_change())
        recent = await scheduler.create_sync_task("content-b", OWNER, make_change())
        seed_pages(store, "content-c", 1)
        pending = await scheduler.create_sync_task("content-c", OWNER, make_change(), strategy="batch")

        old.ended_at = utcnow() - timedelta(hours=48)
        recent.ended_at = utcnow() - timedelta(hours=1)
        pending.created_at = utcnow() - timedelta(hours=72)

        removed = scheduler.cleanup(24)

        assert [t.id for t in removed] == [old.id]
        assert scheduler.get_task_status(old.id) is None
        assert scheduler.get_task_status(recent.id) is recent
        assert scheduler.get_task_status(pending.id) is pending
        assert recorded_events[-1] == "taskCleaned"

    @pytest.mark.asyncio
    async def test_stats(self, scheduler, store):
        seed_pages(store, "content-1", 1)
        await scheduler.create_sync_task("content-1", OWNER, make_change(), strategy="batch")
        await scheduler.create_sync_task("content-unused", OWNER, make_change())

        stats = scheduler.get_stats()

        assert stats["total_tasks"] == 2
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["completed"] == 1
        assert stats["limiter"]["max_concurrent_tasks"] == 3

    @pytest.mark.asyncio
    async def test_wait_for_unknown_task(self, scheduler):
        with pytest.raises(TaskNotFoundError):
            await scheduler.wait_for_task("sync-0-missing")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, syncer):
        config = SyncConfig(cleanup_interval_seconds=60, batch_interval_seconds=60, retry_delay=0.01)
        scheduler = ContentSyncScheduler(config, store, syncer=syncer)

        await scheduler.start()
        assert scheduler.reaper._loop_task is not None
        assert scheduler.batch._loop_task is not None

        await scheduler.stop()
        assert scheduler.reaper._loop_task is None
        assert scheduler.batch._loop_task is None

    @pytest.mark.asyncio
    async def test_restart_restores_backoff_timers(self, store, syncer, sync_config):
        """A retry interrupted by stop() waits out the rest of its delay after start()"""
        sync_config.retry_delay = 0.3
        scheduler = ContentSyncScheduler(sync_config, store, syncer=syncer)
        retry_scheduled = asyncio.Event()
        scheduler.on(SyncEvent.TASK_RETRY_SCHEDULED, lambda e: retry_scheduled.set())
        ids = seed_pages(store, "content-1", 1)
        syncer.failures[ids[0]] = [TransientStoreError("connection reset")]

        task = await scheduler.create_sync_task("content-1", OWNER, make_change())
        await asyncio.wait_for(retry_scheduled.wait(), timeout=5)
        await scheduler.stop()
        assert not scheduler.retry_controller.in_backoff(task.id)

        await scheduler.start()
        assert scheduler.retry_controller.in_backoff(task.id)
        assert await scheduler.process_queue() == []

        await scheduler.wait_for_task(task.id, timeout=5)

        gap = task.attempts[1].started_at - task.attempts[0].ended_at
        assert gap >= timedelta(seconds=0.2)
        assert task.status == TaskStatus.COMPLETED
        await scheduler.stop()
