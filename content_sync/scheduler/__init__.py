# content_sync/scheduler/__init__.py
"""Sync scheduling components and the ContentSyncScheduler facade"""

from .batch import BatchScheduler, BatchSyncReport
from .events import EventBus, LoggingSubscriber, Publisher, SyncEvent, TaskEvent
from .executor import AttemptOutcome, TaskExecutor
from .limiter import ConcurrencyLimiter
from .manager import ContentSyncScheduler
from .queue import TaskQueue
from .reaper import Reaper
from .resolver import AffectedTargetResolver, contains_reference
from .retry import RetryController, RetryDecision, calculate_backoff_seconds

__all__ = [
    "ContentSyncScheduler",
    "AffectedTargetResolver",
    "contains_reference",
    "TaskQueue",
    "ConcurrencyLimiter",
    "TaskExecutor",
    "AttemptOutcome",
    "RetryController",
    "RetryDecision",
    "calculate_backoff_seconds",
    "EventBus",
    "LoggingSubscriber",
    "Publisher",
    "SyncEvent",
    "TaskEvent",
    "BatchScheduler",
    "BatchSyncReport",
    "Reaper",
]
