"""
pytest configuration for the content sync test suite
"""

import asyncio
from typing import Dict, List, Optional, Union

import pytest

from content_sync.config import SyncConfig
from content_sync.models.task import AffectedTarget, ChangeKind, ContentChange, TargetKind
from content_sync.scheduler.manager import ContentSyncScheduler
from content_sync.stores.memory import InMemoryRecordStore

OWNER = "user-1"
OTHER_OWNER = "user-2"


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "asyncio: mark test as async")


# =============================================================================
# Helpers
# =============================================================================

class ScriptedSyncer:
    """
    Target syncer test double.

    ``failures`` maps a target id to an exception raised on every call, or to
    a list of exceptions consumed one per call (then the target succeeds).
    ``gate`` holds every call until it is set.
    """

    def __init__(self, delay: float = 0):
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.failures: Dict[str, Union[Exception, List[Exception]]] = {}
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0

    def calls_for(self, target_id: str) -> int:
        return self.calls.count(target_id)

    async def __call__(self, target: AffectedTarget, change: ContentChange, owner_id: str) -> str:
        self.calls.append(target.id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            elif self.delay:
                await asyncio.sleep(self.delay)

            failure = self.failures.get(target.id)
            if isinstance(failure, list):
                if failure:
                    raise failure.pop(0)
            elif failure is not None:
                raise failure
            return f"synced {target.id}"
        finally:
            self.active -= 1


def make_change(content_kind: str = "ai_summary") -> ContentChange:
    return ContentChange(ChangeKind.UPDATE, content_kind, before={"text": "old"}, after={"text": "new"})


def seed_pages(store: InMemoryRecordStore, content_id: str, count: int, owner_id: str = OWNER,
               kind: TargetKind = TargetKind.DERIVED_PAGE, prefix: Optional[str] = None) -> List[str]:
    """Add ``count`` records embedding ``content_id``; returns their ids"""
    prefix = prefix or f"page-{content_id}"
    ids = []
    for i in range(count):
        record_id = f"{prefix}-{i}"
        store.add_record(record_id, owner_id, {"blocks": [{"ref": content_id}]}, kind=kind, title=f"Page {i}")
        ids.append(record_id)
    return ids


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sync_config():
    """Fast scheduler configuration for tests"""
    return SyncConfig(
        max_concurrent_tasks=3,
        retry_attempts=3,
        retry_delay=0.01,
        batch_size=5,
        target_timeout=2.0,
        retention_hours=24,
        cleanup_interval_seconds=0,
        batch_interval_seconds=0,
        retry_permanent_errors=False
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def syncer():
    return ScriptedSyncer()


@pytest.fixture
async def scheduler(sync_config, store, syncer):
    """Scheduler wired to the in-memory store and the scripted syncer"""
    instance = ContentSyncScheduler(sync_config, store, syncer=syncer)
    yield instance
    if syncer.gate is not None:
        syncer.gate.set()
    await instance.stop()


@pytest.fixture
def recorded_events(scheduler):
    """Every event name published by the scheduler, in order"""
    names: List[str] = []
    scheduler.events.subscribe_all(lambda event: names.append(event.name.value))
    return names
