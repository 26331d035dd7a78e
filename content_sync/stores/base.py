# content_sync/stores/base.py
"""
Record Store contract

The scheduler never owns pages or templates. It reads them through
``query_by_owner`` during discovery and writes through ``apply_sync_update``
when a target is synced. Adapters translate their backend failures into
TransientStoreError (retryable) or PermanentStoreError subclasses.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from content_sync.models.task import AffectedTarget, ContentChange, TargetKind

# Caller-supplied pure function computing a record's new content
ContentRenderer = Callable[[Any, ContentChange], Any]


@dataclass(frozen=True)
class StoredRecord:
    """A page or template as seen by discovery"""
    id: str
    title: str
    content: Any
    kind: TargetKind
    owner_id: str


class RecordStore(ABC):

    @abstractmethod
    async def query_by_owner(self, owner_id: str) -> List[StoredRecord]:
        """Return every record owned by ``owner_id`` (empty list if none)"""

    @abstractmethod
    async def apply_sync_update(
        self,
        target_id: str,
        owner_id: str,
        change: ContentChange,
        target_kind: Optional[TargetKind] = None
    ) -> str:
        """Apply ``change`` to one record and describe what was applied"""


class StoreTargetSyncer:
    """Default target-sync collaborator: delegates each target to the store"""

    def __init__(self, store: RecordStore):
        self.store = store

    async def __call__(self, target: AffectedTarget, change: ContentChange, owner_id: str) -> str:
        return await self.store.apply_sync_update(
            target.id, owner_id, change, target_kind=target.kind
        )
