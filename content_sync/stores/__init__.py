"""Record store contract and adapters"""

from .base import ContentRenderer, RecordStore, StoredRecord, StoreTargetSyncer
from .memory import InMemoryRecordStore
from .sql import SqlRecordStore

__all__ = [
    "ContentRenderer",
    "RecordStore",
    "StoredRecord",
    "StoreTargetSyncer",
    "InMemoryRecordStore",
    "SqlRecordStore",
]
