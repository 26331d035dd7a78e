# content_sync/errors.py
"""
Content Sync Errors

Standardized error envelope shared by the scheduler, the record stores and the
HTTP layer. Expected runtime conditions (a target failing, retries running out)
are recorded on the task as data; only programming errors and discovery
failures are raised to callers.
"""

from typing import Optional, Dict, Any


class ContentSyncError(Exception):
    """Base error carrying a stable error code and context for API responses"""

    def __init__(
        self,
        message: str,
        error_code: str = "CONTENT_SYNC_ERROR",
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error dict for API responses"""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context
        }


class ConfigurationError(ContentSyncError):
    """Scheduler configuration value out of range"""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {field}={value!r}: {reason}",
            error_code="INVALID_CONFIGURATION",
            context={"field": field, "value": value}
        )


class DuplicateTaskError(ContentSyncError):
    """A task with the same id is already queued"""

    def __init__(self, task_id: str):
        super().__init__(
            message=f"Sync task {task_id} is already queued",
            error_code="DUPLICATE_TASK",
            context={"task_id": task_id}
        )


class TaskNotFoundError(ContentSyncError):
    """No task with the given id is known to the scheduler"""

    def __init__(self, task_id: str):
        super().__init__(
            message=f"Sync task {task_id} not found",
            error_code="TASK_NOT_FOUND",
            context={"task_id": task_id}
        )


class InvalidTransitionError(ContentSyncError):
    """Raised when a task status transition is not allowed"""

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message=f"Invalid transition for {task_id}: {from_status} → {to_status}",
            error_code="INVALID_TRANSITION",
            context={"task_id": task_id, "from": from_status, "to": to_status}
        )


class DiscoveryError(ContentSyncError):
    """Affected target discovery failed; the caller may retry task creation"""

    retryable = True

    def __init__(self, content_id: str, owner_id: str, reason: str):
        super().__init__(
            message=f"Target discovery failed for content {content_id}: {reason}",
            error_code="DISCOVERY_FAILED",
            context={"content_id": content_id, "owner_id": owner_id}
        )


# =============================================================================
# Record Store Errors
# =============================================================================

class RecordStoreError(ContentSyncError):
    """Failure reported by a record store adapter"""

    retryable = True

    def __init__(self, message: str, error_code: str = "RECORD_STORE_ERROR",
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, error_code=error_code, context=context)


class TransientStoreError(RecordStoreError):
    """Temporary store failure (connection dropped, lock timeout)"""

    retryable = True

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="STORE_UNAVAILABLE", context=context)


class PermanentStoreError(RecordStoreError):
    """Store failure that will not go away by retrying"""

    retryable = False


class RecordNotFoundError(PermanentStoreError):

    def __init__(self, target_id: str, owner_id: str):
        super().__init__(
            f"Record {target_id} not found",
            error_code="RECORD_NOT_FOUND",
            context={"target_id": target_id, "owner_id": owner_id}
        )


class PermissionDeniedError(PermanentStoreError):

    def __init__(self, target_id: str, owner_id: str):
        super().__init__(
            f"Owner {owner_id} may not update record {target_id}",
            error_code="PERMISSION_DENIED",
            context={"target_id": target_id, "owner_id": owner_id}
        )


class SkipTargetSync(Exception):
    """Raised by a target syncer when a target needs no update"""

    def __init__(self, reason: str = "nothing to update"):
        self.reason = reason
        super().__init__(reason)
