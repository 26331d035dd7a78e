# content_sync/stores/sql.py
"""
SQLAlchemy record store

Reads the host application's ``pages``, ``user_pages`` and ``templates``
tables. Session work is synchronous, so each call runs in a worker thread to
keep the event loop free while other targets sync.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from content_sync.errors import (
    PermissionDeniedError,
    RecordNotFoundError,
    RecordStoreError,
    TransientStoreError,
)
from content_sync.models.records import PageRecord, TemplateRecord, UserPageRecord
from content_sync.models.task import ContentChange, TargetKind, utcnow
from .base import ContentRenderer, RecordStore, StoredRecord

logger = logging.getLogger("content_sync.stores.sql")


# kind -> (model, owner column, content column)
_TABLES: Dict[TargetKind, tuple] = {
    TargetKind.DERIVED_PAGE: (PageRecord, "user_id", "content"),
    TargetKind.USER_PAGE: (UserPageRecord, "user_id", "content"),
    TargetKind.TEMPLATE: (TemplateRecord, "creator_id", "sanitized_content"),
}


def decode_content(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def encode_content(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class SqlRecordStore(RecordStore):

    def __init__(self, session_factory: sessionmaker, renderer: Optional[ContentRenderer] = None):
        self.session_factory = session_factory
        self.renderer = renderer

    async def query_by_owner(self, owner_id: str) -> List[StoredRecord]:
        return await asyncio.to_thread(self._run, self._query_by_owner, owner_id)

    async def apply_sync_update(
        self,
        target_id: str,
        owner_id: str,
        change: ContentChange,
        target_kind: Optional[TargetKind] = None
    ) -> str:
        return await asyncio.to_thread(
            self._run, self._apply_sync_update, target_id, owner_id, change, target_kind
        )

    def _run(self, operation, *args):
        db = self.session_factory()
        try:
            return operation(db, *args)
        except (OperationalError, PoolTimeoutError) as e:
            db.rollback()
            logger.warning(f"Record store unavailable: {e}")
            raise TransientStoreError(f"Record store unavailable: {e}") from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Record store error: {e}")
            raise RecordStoreError(f"Record store error: {e}") from e
        finally:
            db.close()

    def _query_by_owner(self, db: Session, owner_id: str) -> List[StoredRecord]:
        records = []
        for kind, (model, owner_column, content_column) in _TABLES.items():
            rows = db.query(model).filter(getattr(model, owner_column) == owner_id).all()
            for row in rows:
                records.append(StoredRecord(
                    id=row.id,
                    title=row.title,
                    content=decode_content(getattr(row, content_column)),
                    kind=kind,
                    owner_id=owner_id
                ))
        return records

    def _apply_sync_update(
        self,
        db: Session,
        target_id: str,
        owner_id: str,
        change: ContentChange,
        target_kind: Optional[TargetKind]
    ) -> str:
        kinds = [target_kind] if target_kind is not None else list(_TABLES)
        for kind in kinds:
            model, owner_column, content_column = _TABLES[kind]
            row = db.get(model, target_id)
            if row is None:
                continue
            if getattr(row, owner_column) != owner_id:
                raise PermissionDeniedError(target_id, owner_id)

            if self.renderer is not None:
                current = decode_content(getattr(row, content_column))
                setattr(row, content_column, encode_content(self.renderer(current, change)))
            row.updated_at = utcnow()
            db.commit()
            return f"updated {change.content_kind} content"

        raise RecordNotFoundError(target_id, owner_id)
