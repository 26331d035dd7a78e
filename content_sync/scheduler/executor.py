# content_sync/scheduler/executor.py
"""
Task Executor - runs one attempt of a sync task

Every target sync is dispatched before any is awaited, and all of them are
allowed to settle: a failing target never cancels its siblings. Results are
recorded as each target finishes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from content_sync.errors import RecordStoreError, SkipTargetSync
from content_sync.models.task import (
    AffectedTarget,
    ContentChange,
    ResultStatus,
    SyncTask,
    TargetResult,
    TaskStatus,
)

logger = logging.getLogger("content_sync.scheduler.executor")

TargetSyncer = Callable[[AffectedTarget, ContentChange, str], Awaitable[Optional[str]]]


@dataclass
class AttemptOutcome:
    """Aggregate result of one attempt, handed to the retry controller"""
    status: TaskStatus
    total: int
    success_count: int
    error_count: int
    retryable: bool

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, RecordStoreError):
        return error.retryable
    return bool(getattr(error, "retryable", True))


def describe_error(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class TaskExecutor:

    def __init__(self, syncer: TargetSyncer, target_timeout: Optional[float] = None):
        self.syncer = syncer
        self.target_timeout = target_timeout

    async def run(self, task: SyncTask) -> AttemptOutcome:
        """Execute every target of ``task`` once and aggregate the outcome"""
        task.begin_attempt()
        total = task.total_targets

        if total == 0:
            task.progress = 100
            return AttemptOutcome(TaskStatus.COMPLETED, 0, 0, 0, retryable=False)

        logger.info(f"Syncing task {task.id} | targets={total} | attempt={len(task.attempts) + 1}")

        # Fan out first, then wait for every target to settle
        await asyncio.gather(*[self._sync_target(task, target) for target in task.affected_targets])

        return self.outcome_for(task)

    def outcome_for(self, task: SyncTask) -> AttemptOutcome:
        total = task.total_targets
        success_count = task.success_count
        errors = [r for r in task.results if r.status == ResultStatus.ERROR]
        if total:
            task.progress = round(100 * success_count / total)
        else:
            task.progress = 100

        status = TaskStatus.COMPLETED if not errors else TaskStatus.FAILED
        return AttemptOutcome(
            status=status,
            total=total,
            success_count=success_count,
            error_count=len(errors),
            retryable=any(r.retryable for r in errors)
        )

    def fail_attempt(self, task: SyncTask, error: BaseException) -> AttemptOutcome:
        """Mark every unsettled target as errored after an unexpected failure"""
        settled = {r.target_id for r in task.results}
        for target in task.affected_targets:
            if target.id not in settled:
                task.record_result(TargetResult(
                    target_id=target.id,
                    status=ResultStatus.ERROR,
                    error=describe_error(error),
                    retryable=True
                ))
        return self.outcome_for(task)

    async def _sync_target(self, task: SyncTask, target: AffectedTarget):
        started = time.perf_counter()
        try:
            call = self.syncer(target, task.change, task.owner_id)
            if self.target_timeout is not None:
                detail = await asyncio.wait_for(call, timeout=self.target_timeout)
            else:
                detail = await call
            result = TargetResult(
                target_id=target.id,
                status=ResultStatus.SUCCESS,
                detail=detail if detail is None else str(detail)
            )
        except SkipTargetSync as skip:
            result = TargetResult(target_id=target.id, status=ResultStatus.SKIPPED, detail=skip.reason)
        except asyncio.TimeoutError:
            result = TargetResult(
                target_id=target.id,
                status=ResultStatus.ERROR,
                error=f"Target sync timed out after {self.target_timeout}s",
                retryable=True
            )
        except Exception as e:
            result = TargetResult(
                target_id=target.id,
                status=ResultStatus.ERROR,
                error=f"Target {target.id} sync failed: {describe_error(e)}",
                retryable=is_retryable(e)
            )

        result.duration_ms = round((time.perf_counter() - started) * 1000, 3)
        task.record_result(result)

        if result.status == ResultStatus.ERROR:
            logger.warning(f"Target sync failed | task_id={task.id} | target={target.id} | "
                           f"kind={target.kind.value} | retryable={result.retryable} | error={result.error}")
        else:
            logger.debug(f"Target synced | task_id={task.id} | target={target.id} | "
                         f"status={result.status.value} | duration_ms={result.duration_ms}")
