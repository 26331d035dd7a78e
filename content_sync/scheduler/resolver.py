# content_sync/scheduler/resolver.py
"""
Affected Target Resolver - finds the records that embed a piece of content

A record is affected when its serialized content mentions the content id, or
failing that, the id of the session the content came from.
"""

import json
import logging
from typing import Any, Callable, List, Optional, Set, Tuple

from content_sync.errors import DiscoveryError, RecordStoreError
from content_sync.models.task import AffectedTarget, TargetKind
from content_sync.stores.base import RecordStore

logger = logging.getLogger("content_sync.scheduler.resolver")

# (record_content, content_id, session_id) -> bool
ReferenceMatcher = Callable[[Any, str, Optional[str]], bool]


def derive_session_id(content_id: str) -> Optional[str]:
    """session-<x>-<rest> → session-<x>"""
    if "session-" not in content_id:
        return None
    return "-".join(content_id.split("-")[:2])


def serialize_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str, ensure_ascii=False)


def contains_reference(content: Any, content_id: str, session_id: Optional[str] = None) -> bool:
    if not content:
        return False

    text = serialize_content(content)
    if content_id in text:
        return True

    session = session_id or derive_session_id(content_id)
    return bool(session) and session in text


class AffectedTargetResolver:

    def __init__(self, store: RecordStore, matcher: ReferenceMatcher = contains_reference):
        self.store = store
        self.matcher = matcher

    async def resolve(
        self,
        content_id: str,
        owner_id: str,
        session_id: Optional[str] = None
    ) -> List[AffectedTarget]:
        """
        Discover every record of ``owner_id`` affected by ``content_id``.

        Raises:
            DiscoveryError: If the record store query fails
        """
        try:
            records = await self.store.query_by_owner(owner_id)
        except RecordStoreError as e:
            logger.error(f"Discovery failed | content_id={content_id} | owner_id={owner_id} | error={e}")
            raise DiscoveryError(content_id, owner_id, str(e)) from e

        targets: List[AffectedTarget] = []
        seen: Set[Tuple[TargetKind, str]] = set()
        for record in records:
            key = (record.kind, record.id)
            if key in seen:
                continue
            if self.matcher(record.content, content_id, session_id):
                seen.add(key)
                targets.append(AffectedTarget(id=record.id, display_name=record.title, kind=record.kind))

        logger.info(f"Discovered {len(targets)} affected targets | content_id={content_id} | "
                    f"owner_id={owner_id} | scanned={len(records)}")
        return targets
