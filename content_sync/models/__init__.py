# Content Sync Models Package
from .database import Base, build_engine, build_session_factory
from .records import PageRecord, UserPageRecord, TemplateRecord
from .task import (
    SyncTask,
    TaskStatus,
    TaskSchedule,
    SyncStrategy,
    SyncPriority,
    TargetKind,
    ChangeKind,
    ResultStatus,
    AffectedTarget,
    ContentChange,
    TargetResult,
    AttemptSummary,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    generate_task_id,
    utcnow,
)

__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "PageRecord",
    "UserPageRecord",
    "TemplateRecord",
    "SyncTask",
    "TaskStatus",
    "TaskSchedule",
    "SyncStrategy",
    "SyncPriority",
    "TargetKind",
    "ChangeKind",
    "ResultStatus",
    "AffectedTarget",
    "ContentChange",
    "TargetResult",
    "AttemptSummary",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
    "generate_task_id",
    "utcnow",
]
