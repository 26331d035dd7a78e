# content_sync/middleware/__init__.py
"""Content Sync Middleware Package"""

from .correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    bind_task_context,
    get_correlation_id,
    correlation_id_var,
    sync_task_id_var,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationIdFilter",
    "bind_task_context",
    "get_correlation_id",
    "correlation_id_var",
    "sync_task_id_var",
]
