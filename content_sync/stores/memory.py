# content_sync/stores/memory.py
"""In-memory record store for embedding and tests"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from content_sync.errors import PermissionDeniedError, RecordNotFoundError
from content_sync.models.task import ContentChange, TargetKind, utcnow
from .base import ContentRenderer, RecordStore, StoredRecord

logger = logging.getLogger("content_sync.stores.memory")


class InMemoryRecordStore(RecordStore):

    def __init__(self, renderer: Optional[ContentRenderer] = None):
        self.renderer = renderer
        self._records: Dict[Tuple[TargetKind, str], StoredRecord] = {}
        self.updated_at: Dict[str, datetime] = {}
        self.applied: List[Tuple[str, ContentChange]] = []

    def add_record(
        self,
        record_id: str,
        owner_id: str,
        content: Any,
        kind: TargetKind = TargetKind.DERIVED_PAGE,
        title: str = ""
    ) -> StoredRecord:
        record = StoredRecord(
            id=record_id,
            title=title or record_id,
            content=content,
            kind=TargetKind(kind),
            owner_id=owner_id
        )
        self._records[(record.kind, record_id)] = record
        return record

    def get_record(self, record_id: str, kind: Optional[TargetKind] = None) -> Optional[StoredRecord]:
        for (record_kind, rid), record in self._records.items():
            if rid == record_id and (kind is None or record_kind == kind):
                return record
        return None

    async def query_by_owner(self, owner_id: str) -> List[StoredRecord]:
        return [r for r in self._records.values() if r.owner_id == owner_id]

    async def apply_sync_update(
        self,
        target_id: str,
        owner_id: str,
        change: ContentChange,
        target_kind: Optional[TargetKind] = None
    ) -> str:
        record = self.get_record(target_id, target_kind)
        if record is None:
            raise RecordNotFoundError(target_id, owner_id)
        if record.owner_id != owner_id:
            raise PermissionDeniedError(target_id, owner_id)

        if self.renderer is not None:
            record = StoredRecord(
                id=record.id,
                title=record.title,
                content=self.renderer(record.content, change),
                kind=record.kind,
                owner_id=record.owner_id
            )
            self._records[(record.kind, record.id)] = record

        self.updated_at[target_id] = utcnow()
        self.applied.append((target_id, change))
        logger.debug(f"Applied {change.kind.value} to {record.kind.value} {target_id}")
        return f"updated {change.content_kind} content"
