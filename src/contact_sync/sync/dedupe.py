"""Echo suppression for writes this service made itself.

Every cross-system write is stamped with a fresh operation id (the sync
tag). The id is remembered in a bounded in-memory cache and in a durable
store until it expires. When a change notification arrives carrying a tag
we still remember, it is our own write coming back and is dropped.

Failure policy:
- Store write failure: logged, the memory entry still suppresses echoes
  reaching this process.
- Store read failure: the event is treated as NOT an echo. A duplicate
  sync is recoverable; a dropped real change is not.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.contact_sync.core.cache import TTLCache
from src.contact_sync.schemas import Side
from src.contact_sync.stores.base import DedupeStore
from src.contact_sync.sync.field_mapping import first_non_empty, path

logger = structlog.get_logger(__name__)

SIDE_A_SYNC_TAG_FIELD = "custom.sync_tag"
SIDE_B_SYNC_TAG_PROPERTY = "sync_tag"

SYNC_TAG_EXTRACTORS = {
    Side.A: (
        path("info", "extendedFields", "items", SIDE_A_SYNC_TAG_FIELD, "value"),
        path("info", "extendedFields", "items", SIDE_A_SYNC_TAG_FIELD),
        path("extendedFields", SIDE_A_SYNC_TAG_FIELD, "value"),
        path("extendedFields", SIDE_A_SYNC_TAG_FIELD),
    ),
    Side.B: (
        path("properties", SIDE_B_SYNC_TAG_PROPERTY),
        path(SIDE_B_SYNC_TAG_PROPERTY),
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DedupeGuard:
    """Registers outbound operation ids and recognises them when they echo back.

    Args:
        store: Durable operation id store.
        cache: Recent-operation memory cache (500 entries, same TTL by default).
        ttl_seconds: How long an operation id suppresses echoes.
        now: UTC clock, injectable for tests.
    """

    def __init__(
        self,
        store: DedupeStore,
        cache: TTLCache[bool] | None = None,
        ttl_seconds: int = 300,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._cache = cache if cache is not None else TTLCache(max_size=500, ttl_seconds=ttl_seconds)
        self._now = now

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def register_operation(
        self,
        tenant_id: str,
        target_side: Side,
        target_contact_id: str,
        operation_id: str | None = None,
    ) -> str:
        """Remember an outbound write and return its operation id.

        A new UUID4 is generated when ``operation_id`` is not supplied.
        """
        operation_id = operation_id or str(uuid.uuid4())
        self._cache.set(operation_id, True)
        try:
            await self._store.put(
                operation_id,
                tenant_id,
                target_side,
                target_contact_id,
                self._now() + self._ttl,
            )
        except Exception:
            logger.warning(
                "dedupe.register_failed",
                tenant_id=tenant_id,
                side=target_side.value,
                contact_id=target_contact_id,
                exc_info=True,
            )
        return operation_id

    async def is_echo(self, operation_id: str | None) -> bool:
        """True when ``operation_id`` is one of our own unexpired writes."""
        if not operation_id:
            return False
        if self._cache.get(operation_id):
            return True
        try:
            found = await self._store.exists(operation_id, self._now())
        except Exception:
            logger.warning("dedupe.lookup_failed", exc_info=True)
            return False
        if found:
            self._cache.set(operation_id, True)
        return found

    @staticmethod
    def extract_operation_id(raw: Mapping[str, Any] | None, side: Side) -> str | None:
        """Read the sync tag from a raw record of either side, if present."""
        if not raw:
            return None
        return first_non_empty(raw, SYNC_TAG_EXTRACTORS[side]) or None

    async def purge_expired(self) -> int:
        """Delete expired operation ids from the store and the memory cache."""
        removed = await self._store.purge_expired(self._now())
        pruned = self._cache.prune()
        logger.info("dedupe.purged", removed=removed, pruned_from_memory=pruned)
        return removed
