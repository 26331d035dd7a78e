# content_sync/scheduler/retry.py
"""
Retry Controller - decides a task's next state after each attempt

    completed                                → COMPLETED, taskCompleted
    failed, retry_count < max_retries        → PENDING after retry_delay * retry_count
    failed, retries exhausted                → FAILED, taskFailed
    failed, only permanent errors (default)  → FAILED without spending retries

A task waiting out its backoff stays PENDING but is held back from admission
until its timer fires.
"""

import asyncio
import logging
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from content_sync.models.task import SyncTask, TaskStatus, utcnow
from .events import EventBus, SyncEvent
from .executor import AttemptOutcome

logger = logging.getLogger("content_sync.scheduler.retry")


class RetryDecision(str, Enum):
    COMPLETE = "complete"
    RETRY = "retry"
    FAIL = "fail"


def calculate_backoff_seconds(retry_count: int, retry_delay: float) -> float:
    """
    Linear backoff scaled by attempt number.
    backoff_seconds = retry_delay * retry_count
    """
    return max(0.0, retry_delay * retry_count)


class RetryController:

    def __init__(
        self,
        events: EventBus,
        retry_delay: float = 1.0,
        retry_permanent_errors: bool = False,
        on_ready: Optional[Callable[[str], None]] = None
    ):
        self.events = events
        self.retry_delay = retry_delay
        self.retry_permanent_errors = retry_permanent_errors
        self.on_ready = on_ready
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def evaluate(self, task: SyncTask, outcome: AttemptOutcome) -> RetryDecision:
        if outcome.succeeded:
            return RetryDecision.COMPLETE
        if task.schedule.retry_count >= task.schedule.max_retries:
            return RetryDecision.FAIL
        if not outcome.retryable and not self.retry_permanent_errors:
            return RetryDecision.FAIL
        return RetryDecision.RETRY

    def settle(self, task: SyncTask, outcome: AttemptOutcome) -> RetryDecision:
        """Apply the decision for the attempt that just finished"""
        task.summarize_attempt()
        decision = self.evaluate(task, outcome)

        if decision == RetryDecision.COMPLETE:
            task.transition_to(TaskStatus.COMPLETED)
            logger.info(f"Task {task.id} completed | targets={outcome.total} | progress={task.progress}")
            self.events.emit(SyncEvent.TASK_COMPLETED, task)

        elif decision == RetryDecision.RETRY:
            task.schedule.retry_count += 1
            delay = calculate_backoff_seconds(task.schedule.retry_count, self.retry_delay)
            task.transition_to(TaskStatus.PENDING, "retry scheduled")
            task.retry_after = utcnow() + timedelta(seconds=delay)
            self._arm(task.id, delay)
            logger.info(
                f"Task {task.id} failed - retry scheduled | "
                f"retry={task.schedule.retry_count}/{task.schedule.max_retries} | "
                f"failed_targets={outcome.error_count}/{outcome.total} | backoff={delay}s"
            )
            self.events.emit(SyncEvent.TASK_RETRY_SCHEDULED, task)

        else:
            task.transition_to(TaskStatus.FAILED)
            reason = "max_retries_exhausted" if outcome.retryable or self.retry_permanent_errors else "permanent_error"
            logger.warning(
                f"Task {task.id} failed | reason={reason} | "
                f"retries={task.schedule.retry_count}/{task.schedule.max_retries} | "
                f"failed_targets={outcome.error_count}/{outcome.total}"
            )
            self.events.emit(SyncEvent.TASK_FAILED, task)

        return decision

    def in_backoff(self, task_id: str) -> bool:
        return task_id in self._timers

    def backoff_count(self) -> int:
        return len(self._timers)

    def cancel_backoff(self, task_id: str) -> bool:
        handle = self._timers.pop(task_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def rearm(self, task: SyncTask) -> bool:
        """Re-arm the timer of a pending retry for whatever remains of its delay"""
        if task.status != TaskStatus.PENDING or task.retry_after is None or self.in_backoff(task.id):
            return False
        remaining = (task.retry_after - utcnow()).total_seconds()
        self._arm(task.id, max(0.0, remaining))
        return True

    def shutdown(self):
        """Cancel every pending backoff timer"""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _arm(self, task_id: str, delay: float):
        self.cancel_backoff(task_id)
        loop = asyncio.get_running_loop()
        self._timers[task_id] = loop.call_later(delay, self._release, task_id)

    def _release(self, task_id: str):
        if self._timers.pop(task_id, None) is None:
            return
        logger.debug(f"Backoff elapsed for task {task_id}")
        if self.on_ready is not None:
            self.on_ready(task_id)
