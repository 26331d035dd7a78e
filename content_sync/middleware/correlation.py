# content_sync/middleware/correlation.py
"""
Correlation Context - request correlation ids and sync task ids for log records

Every HTTP request gets a correlation id (taken from X-Correlation-ID or
generated). Every execution attempt binds its sync task id. Both are carried in
context variables, so log records emitted by concurrently running attempts stay
attributed to the right task.
"""

import uuid
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variables (safe across asyncio tasks)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-corr-id')
sync_task_id_var: ContextVar[str] = ContextVar('sync_task_id', default='-')


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return f"corr-{uuid.uuid4().hex[:12]}"


@contextmanager
def bind_task_context(task_id: str) -> Iterator[str]:
    """Attribute log records to ``task_id`` for the duration of the block"""
    token = sync_task_id_var.set(task_id)
    try:
        yield task_id
    finally:
        sync_task_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation and task ids into log records"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        record.sync_task_id = sync_task_id_var.get()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Ensures every request/response pair carries a correlation ID"""

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(self.HEADER_NAME)
        if not corr_id:
            corr_id = generate_correlation_id()

        token = correlation_id_var.set(corr_id)

        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)
