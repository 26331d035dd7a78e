# content_sync/models/task.py
"""
Sync Task Model - the unit of scheduled work

A SyncTask propagates one content change to every affected target. Identity,
targets and change payload are fixed at creation; status, progress, results
and retry_count move through the lifecycle:

    PENDING → RUNNING → COMPLETED | FAILED
    RUNNING → PENDING            (retry scheduled)
    PENDING → CANCELLED
    PENDING → COMPLETED          (no targets discovered)
"""

import asyncio
import time
import uuid
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Set, Tuple
from dataclasses import dataclass, field

from content_sync.errors import InvalidTransitionError

logger = logging.getLogger("content_sync.models.task")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    """Generate a new sync task id: sync-<epoch-ms>-<random>"""
    return f"sync-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class TaskStatus(str, Enum):
    """Sync task lifecycle states"""
    PENDING = "pending"        # Queued, waiting for admission
    RUNNING = "running"        # Targets being synced
    COMPLETED = "completed"    # Every target synced or skipped
    FAILED = "failed"          # Retries exhausted or permanent failure
    CANCELLED = "cancelled"    # Cancelled before execution


TERMINAL_STATUSES: Set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
}

VALID_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.CANCELLED, TaskStatus.COMPLETED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PENDING},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}


class SyncStrategy(str, Enum):
    IMMEDIATE = "immediate"    # Admitted as soon as capacity allows
    BATCH = "batch"            # Deferred until batch_sync(owner_id)
    MANUAL = "manual"          # Runs only on an explicit sync_now(task_id)


class SyncPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {SyncPriority.HIGH: 3, SyncPriority.MEDIUM: 2, SyncPriority.LOW: 1}


class TargetKind(str, Enum):
    DERIVED_PAGE = "derived_page"
    USER_PAGE = "user_page"
    TEMPLATE = "template"


class ChangeKind(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    CREATE = "create"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AffectedTarget:
    """A derived artifact that embeds the changed content"""
    id: str
    display_name: str
    kind: TargetKind

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "kind": self.kind.value}


@dataclass(frozen=True)
class ContentChange:
    """
    The edit being propagated. ``before`` and ``after`` are opaque to the
    scheduler; only the record store (or its renderer) interprets them.
    """
    kind: ChangeKind
    content_kind: str
    before: Any = None
    after: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "content_kind": self.content_kind,
            "before": self.before,
            "after": self.after
        }


@dataclass
class TargetResult:
    """Outcome of one per-target sync call"""
    target_id: str
    status: ResultStatus
    detail: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    retryable: Optional[bool] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (ResultStatus.SUCCESS, ResultStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "detail": self.detail,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "retryable": self.retryable
        }


@dataclass
class TaskSchedule:
    strategy: SyncStrategy = SyncStrategy.IMMEDIATE
    priority: SyncPriority = SyncPriority.MEDIUM
    retry_count: int = 0
    max_retries: int = 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries
        }


@dataclass
class AttemptSummary:
    """Historical record of one finished execution attempt"""
    attempt: int
    started_at: Optional[datetime]
    ended_at: datetime
    success_count: int
    error_count: int
    skipped_count: int
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat(),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "errors": dict(self.errors)
        }


@dataclass
class SyncTask:
    """Unit of scheduled work propagating one content change"""
    content_id: str
    owner_id: str
    change: ContentChange
    affected_targets: Tuple[AffectedTarget, ...] = field(default_factory=tuple)
    session_id: Optional[str] = None
    schedule: TaskSchedule = field(default_factory=TaskSchedule)
    id: str = field(default_factory=generate_task_id)

    status: TaskStatus = field(default=TaskStatus.PENDING)
    progress: int = field(default=0)
    results: List[TargetResult] = field(default_factory=list)
    attempts: List[AttemptSummary] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = field(default=None)
    ended_at: Optional[datetime] = field(default=None)
    retry_after: Optional[datetime] = field(default=None)

    # Set once the task reaches a terminal status
    _finished: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def __post_init__(self):
        self.affected_targets = tuple(self.affected_targets)

    @property
    def total_targets(self) -> int:
        return len(self.affected_targets)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.status == ResultStatus.ERROR)

    @property
    def success_rate(self) -> int:
        if not self.results:
            return 0
        return round(100 * self.success_count / len(self.results))

    @property
    def execution_ms(self) -> Optional[float]:
        """Wall-clock time of the current (or last) attempt"""
        if self.started_at is None:
            return None
        end = self.ended_at or utcnow()
        return round((end - self.started_at).total_seconds() * 1000, 3)

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: TaskStatus, reason: Optional[str] = None):
        """
        Move to a new status.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(self.id, self.status.value, new_status.value)

        previous = self.status
        self.status = new_status
        if new_status in TERMINAL_STATUSES:
            self.ended_at = utcnow()
            self._finished.set()

        logger.debug(f"Task {self.id}: {previous.value} → {new_status.value}"
                     + (f" ({reason})" if reason else ""))

    def begin_attempt(self):
        """Reset per-attempt state; previous results live on in ``attempts``"""
        self.results = []
        self.progress = 0
        self.retry_after = None
        self.started_at = utcnow()

    def record_result(self, result: TargetResult):
        if len(self.results) >= self.total_targets:
            raise ValueError(f"Task {self.id} already has a result for every target")
        self.results.append(result)
        if self.total_targets:
            self.progress = max(self.progress, round(100 * self.success_count / self.total_targets))

    def summarize_attempt(self) -> AttemptSummary:
        summary = AttemptSummary(
            attempt=len(self.attempts) + 1,
            started_at=self.started_at,
            ended_at=utcnow(),
            success_count=sum(1 for r in self.results if r.status == ResultStatus.SUCCESS),
            error_count=self.error_count,
            skipped_count=sum(1 for r in self.results if r.status == ResultStatus.SKIPPED),
            errors={r.target_id: r.error or "" for r in self.results if r.status == ResultStatus.ERROR}
        )
        self.attempts.append(summary)
        return summary

    async def wait_finished(self):
        await self._finished.wait()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content_id": self.content_id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "status": self.status.value,
            "progress": self.progress,
            "affected_targets": [t.to_dict() for t in self.affected_targets],
            "change": self.change.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "attempts": [a.to_dict() for a in self.attempts],
            "schedule": self.schedule.to_dict(),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "retry_after": self.retry_after.isoformat() if self.retry_after else None,
            "execution_ms": self.execution_ms,
            "success_rate": self.success_rate
        }
