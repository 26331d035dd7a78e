# content_sync/api.py
"""
Content Sync HTTP API

Routes:
    POST   /content/sync              create a sync task for a content change
    GET    /content/sync/active       caller's pending and running tasks
    POST   /content/sync/batch        run the caller's deferred batch tasks
    POST   /content/sync/cleanup      remove finished tasks older than ?hours=
    GET    /content/sync/{task_id}    task detail
    DELETE /content/sync/{task_id}    cancel a pending task
    GET    /health

The caller is identified by the X-Owner-Id header. Authenticating that header
is left to the gateway in front of this service.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from content_sync import __version__
from content_sync.config import Settings, configure_logging, get_settings
from content_sync.errors import ContentSyncError
from content_sync.middleware.correlation import CorrelationIdMiddleware, get_correlation_id
from content_sync.models.database import Base, build_engine, build_session_factory
from content_sync.models.task import ChangeKind, ContentChange, SyncPriority, SyncStrategy, SyncTask
from content_sync.scheduler.events import LoggingSubscriber
from content_sync.scheduler.manager import ContentSyncScheduler
from content_sync.stores.base import RecordStore
from content_sync.stores.sql import SqlRecordStore

logger = logging.getLogger("content_sync.api")

# Rough per-target estimate reported back to clients
SECONDS_PER_TARGET = 2

ERROR_STATUS_CODES = {
    "TASK_NOT_FOUND": 404,
    "INVALID_CONFIGURATION": 400,
    "DISCOVERY_FAILED": 503,
}


# =============================================================================
# Request / Response Models
# =============================================================================

class ChangePayload(BaseModel):
    """The content edit being propagated"""
    model_config = ConfigDict(extra="forbid")

    type: ChangeKind = Field(..., description="update, create or delete")
    content_type: str = Field(..., min_length=1, max_length=100, description="Kind of content edited")
    before: Any = None
    after: Any = None

    def to_change(self) -> ContentChange:
        return ContentChange(kind=self.type, content_kind=self.content_type, before=self.before, after=self.after)


class SyncTaskCreate(BaseModel):
    """Validated sync task creation"""
    model_config = ConfigDict(extra="forbid")

    content_id: str = Field(..., min_length=1, max_length=500)
    change: ChangePayload
    session_id: Optional[str] = Field(default=None, max_length=500)
    sync_strategy: SyncStrategy = SyncStrategy.IMMEDIATE
    priority: SyncPriority = SyncPriority.MEDIUM
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)

    @field_validator("content_id")
    @classmethod
    def content_id_meaningful(cls, v):
        if not v.strip():
            raise ValueError("content_id must not be blank")
        return v.strip()


class SyncTaskCreated(BaseModel):
    task_id: str
    status: str
    affected_targets: int
    estimated_seconds: int
    targets: List[Dict[str, Any]]
    message: str


def task_summary(task: SyncTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "content_id": task.content_id,
        "status": task.status.value,
        "progress": task.progress,
        "affected_targets": task.total_targets,
        "schedule": task.schedule.to_dict(),
        "created_at": task.created_at.isoformat(),
        "started_at": task.started_at.isoformat() if task.started_at else None,
        "ended_at": task.ended_at.isoformat() if task.ended_at else None,
        "results": [r.to_dict() for r in task.results] or None
    }


# =============================================================================
# Router
# =============================================================================

def require_owner(x_owner_id: Optional[str]) -> str:
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def create_sync_router(scheduler: ContentSyncScheduler) -> APIRouter:
    router = APIRouter(prefix="/content/sync", tags=["content-sync"])

    def owned_task(task_id: str, owner_id: str) -> SyncTask:
        task = scheduler.get_task_status(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Sync task {task_id} not found")
        if task.owner_id != owner_id:
            raise HTTPException(status_code=403, detail=f"Sync task {task_id} belongs to another owner")
        return task

    @router.post("", status_code=201, response_model=SyncTaskCreated)
    async def create_sync_task(body: SyncTaskCreate, x_owner_id: Optional[str] = Header(default=None)):
        """Discover affected targets and queue the sync"""
        owner_id = require_owner(x_owner_id)

        task = await scheduler.create_sync_task(
            content_id=body.content_id,
            owner_id=owner_id,
            change=body.change.to_change(),
            session_id=body.session_id,
            strategy=body.sync_strategy,
            priority=body.priority,
            max_retries=body.max_retries
        )

        return SyncTaskCreated(
            task_id=task.id,
            status=task.status.value,
            affected_targets=task.total_targets,
            estimated_seconds=task.total_targets * SECONDS_PER_TARGET,
            targets=[t.to_dict() for t in task.affected_targets],
            message=f"Sync task created for {task.total_targets} targets"
        )

    @router.get("/active")
    async def list_active_tasks(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = require_owner(x_owner_id)
        tasks = scheduler.get_active_tasks(owner_id)
        return {"success": True, "data": [task_summary(t) for t in tasks], "total": len(tasks)}

    @router.post("/batch")
    async def run_batch_sync(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = require_owner(x_owner_id)
        report = await scheduler.batch_sync(owner_id)
        return {"success": True, "data": report.to_dict()}

    @router.post("/cleanup")
    async def cleanup_tasks(
        hours: float = Query(default=24, ge=0),
        x_owner_id: Optional[str] = Header(default=None)
    ):
        require_owner(x_owner_id)
        removed = scheduler.cleanup(retention_hours=hours)
        return {"success": True, "removed": len(removed), "retention_hours": hours}

    @router.get("/{task_id}")
    async def get_sync_task(task_id: str, x_owner_id: Optional[str] = Header(default=None)):
        owner_id = require_owner(x_owner_id)
        task = owned_task(task_id, owner_id)
        return {"success": True, "data": task.to_dict()}

    @router.delete("/{task_id}")
    async def cancel_sync_task(task_id: str, x_owner_id: Optional[str] = Header(default=None)):
        owner_id = require_owner(x_owner_id)
        task = owned_task(task_id, owner_id)

        if not scheduler.cancel_task(task_id):
            raise HTTPException(
                status_code=400,
                detail=f"Sync task {task_id} is {task.status.value} and can no longer be cancelled"
            )
        return {"success": True, "data": {"task_id": task_id, "status": task.status.value}}

    return router


# =============================================================================
# Application Factory
# =============================================================================

def build_default_store(settings: Settings) -> RecordStore:
    engine = build_engine(settings.DATABASE_URL, settings.DB_POOL_SIZE, settings.DB_MAX_OVERFLOW)
    Base.metadata.create_all(bind=engine)
    return SqlRecordStore(build_session_factory(engine))


def create_app(
    settings: Optional[Settings] = None,
    scheduler: Optional[ContentSyncScheduler] = None,
    record_store: Optional[RecordStore] = None
) -> FastAPI:
    settings = settings or get_settings()
    if not settings.is_testing:
        configure_logging(settings)

    if scheduler is None:
        scheduler = ContentSyncScheduler(
            settings.sync_config(),
            record_store or build_default_store(settings)
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        subscriber = LoggingSubscriber(scheduler.events)
        await scheduler.start()
        logger.info(f"Content sync service started | environment={settings.ENVIRONMENT}")
        try:
            yield
        finally:
            await scheduler.stop()
            subscriber.close()
            logger.info("Content sync service stopped")

    app = FastAPI(
        title="Content Sync Scheduler",
        description="Propagates content edits to the pages and templates that embed them",
        version=__version__,
        lifespan=lifespan
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.state.scheduler = scheduler

    @app.exception_handler(ContentSyncError)
    async def content_sync_error_handler(request: Request, exc: ContentSyncError):
        status_code = ERROR_STATUS_CODES.get(exc.error_code, 500)
        logger.error(f"{exc.error_code} | path={request.url.path} | corr_id={get_correlation_id()} | {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check():
        stats = scheduler.get_stats()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "tasks": stats["by_status"],
            "limiter": stats["limiter"],
            "in_backoff": stats["in_backoff"]
        }

    app.include_router(create_sync_router(scheduler))
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
