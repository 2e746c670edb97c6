"""Abstract store interfaces used by the sync services.

Implementations raise StoreError for persistence failures. Callers decide
whether a failure is fatal: mapping and rule failures propagate, hash and
dedupe failures are absorbed by their services.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.contact_sync.schemas import (
    ContactMapping,
    FieldMappingRule,
    Side,
    SyncEventRecord,
)


class MappingStore(ABC):
    """Side A <-> Side B contact pairings, unique per side within a tenant."""

    @abstractmethod
    async def find_by_side_a(self, tenant_id: str, contact_id: str) -> ContactMapping | None:
        ...

    @abstractmethod
    async def find_by_side_b(self, tenant_id: str, contact_id: str) -> ContactMapping | None:
        ...

    @abstractmethod
    async def upsert(self, mapping: ContactMapping) -> ContactMapping:
        """Create or update the mapping keyed by (tenant, side A id)."""
        ...

    @abstractmethod
    async def delete(
        self,
        tenant_id: str,
        side_a_contact_id: str | None = None,
        side_b_contact_id: str | None = None,
    ) -> ContactMapping | None:
        """Remove the mapping matching either id. Returns the removed mapping."""
        ...

    async def find(self, tenant_id: str, side: Side, contact_id: str) -> ContactMapping | None:
        if side is Side.A:
            return await self.find_by_side_a(tenant_id, contact_id)
        return await self.find_by_side_b(tenant_id, contact_id)


class HashStore(ABC):
    """Last-written payload hash per (tenant, contact, side)."""

    @abstractmethod
    async def get(self, tenant_id: str, contact_id: str, side: Side) -> str | None:
        ...

    @abstractmethod
    async def upsert(self, tenant_id: str, contact_id: str, side: Side, hash_value: str) -> None:
        ...

    @abstractmethod
    async def delete_for_contact(self, tenant_id: str, contact_id: str) -> int:
        ...


class DedupeStore(ABC):
    """Persisted operation ids for echo suppression."""

    @abstractmethod
    async def put(
        self,
        operation_id: str,
        tenant_id: str,
        side: Side,
        contact_id: str,
        expires_at: datetime,
    ) -> None:
        ...

    @abstractmethod
    async def exists(self, operation_id: str, now: datetime) -> bool:
        """True when the id was registered and has not expired at ``now``."""
        ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        ...


class RuleStore(ABC):
    """Tenant field mapping rules."""

    @abstractmethod
    async def list_active(self, tenant_id: str) -> list[FieldMappingRule]:
        ...

    @abstractmethod
    async def replace_custom(self, tenant_id: str, rules: list[FieldMappingRule]) -> None:
        """Delete every non-default rule and insert ``rules`` in its place."""
        ...

    @abstractmethod
    async def ensure_defaults(self, tenant_id: str, defaults: list[FieldMappingRule]) -> int:
        """Insert any default rule missing for the tenant. Returns the number inserted."""
        ...


class AuditLog(ABC):
    """Append-only sync event log."""

    @abstractmethod
    async def append(self, event: SyncEventRecord) -> None:
        ...

    @abstractmethod
    async def purge_older_than(self, cutoff: datetime) -> int:
        ...


class SyncStateStore(ABC):
    """Per-tenant sweep bookkeeping."""

    @abstractmethod
    async def get_last_full_sync(self, tenant_id: str) -> datetime | None:
        ...

    @abstractmethod
    async def set_last_full_sync(self, tenant_id: str, at: datetime) -> None:
        ...
