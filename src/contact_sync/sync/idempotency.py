"""Content-hash idempotency: skip writes whose payload was already written.

The hash covers the mapped payload after normalization (keys sorted,
values trimmed and lowercased), so key order and case changes do not
force a write. Lookups fail open: if the hash store is unavailable the
write goes ahead.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any

import structlog

from src.contact_sync.schemas import Side
from src.contact_sync.stores.base import HashStore

logger = structlog.get_logger(__name__)


def compute_hash(fields: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of a normalized field mapping."""
    canonical = "|".join(
        f"{key}={'' if fields[key] is None else str(fields[key]).strip().lower()}"
        for key in sorted(fields)
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyChecker:
    """Compares outbound payload hashes with the last one written per contact and side."""

    def __init__(self, store: HashStore) -> None:
        self._store = store

    async def should_skip_write(
        self, tenant_id: str, contact_id: str, side: Side, new_hash: str
    ) -> bool:
        """True only when the stored hash for this contact and side equals ``new_hash``."""
        try:
            stored = await self._store.get(tenant_id, contact_id, side)
        except Exception:
            logger.warning(
                "idempotency.lookup_failed",
                tenant_id=tenant_id,
                contact_id=contact_id,
                side=side.value,
                exc_info=True,
            )
            return False
        return stored is not None and stored == new_hash

    async def update_hash(
        self, tenant_id: str, contact_id: str, side: Side, new_hash: str
    ) -> None:
        try:
            await self._store.upsert(tenant_id, contact_id, side, new_hash)
        except Exception:
            logger.warning(
                "idempotency.update_failed",
                tenant_id=tenant_id,
                contact_id=contact_id,
                side=side.value,
                exc_info=True,
            )

    async def clear_hashes(self, tenant_id: str, contact_id: str) -> int:
        """Forget stored hashes for a contact on both sides."""
        try:
            return await self._store.delete_for_contact(tenant_id, contact_id)
        except Exception:
            logger.warning(
                "idempotency.clear_failed",
                tenant_id=tenant_id,
                contact_id=contact_id,
                exc_info=True,
            )
            return 0
