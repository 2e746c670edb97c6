"""SQLAlchemy implementations of the sync stores.

Each store takes the session_factory callable pattern used across the
repositories: an async generator function yielding AsyncSession
instances. Database errors are re-raised as StoreError so callers see a
single failure type regardless of driver.
"""

from __future__ import annotations

import functools
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.errors import StoreError
from src.contact_sync.models import (
    ContactHashModel,
    ContactMappingModel,
    FieldMappingRuleModel,
    SyncEventModel,
    SyncOperationModel,
    SyncStateModel,
)
from src.contact_sync.schemas import (
    ContactMapping,
    FieldMappingRule,
    FieldTransform,
    Side,
    SyncDirection,
    SyncEventRecord,
)
from src.contact_sync.stores.base import (
    AuditLog,
    DedupeStore,
    HashStore,
    MappingStore,
    RuleStore,
    SyncStateStore,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


def _store_call(operation: str):
    """Translate SQLAlchemy failures in a store method into StoreError."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs):
            try:
                return await fn(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error("store.operation_failed", operation=operation, error_type=type(exc).__name__)
                raise StoreError(f"{operation} failed: {type(exc).__name__}") from exc

        return wrapper

    return decorator


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _side_or_none(value: str | None) -> Side | None:
    try:
        return Side(value) if value else None
    except ValueError:
        return None  # "manual"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_mapping(model: ContactMappingModel) -> ContactMapping:
    return ContactMapping(
        tenant_id=model.tenant_id,
        side_a_contact_id=model.side_a_contact_id,
        side_b_contact_id=model.side_b_contact_id,
        last_synced_at=_aware(model.last_synced_at),
        last_sync_source=_side_or_none(model.last_sync_source),
        sync_operation_id=model.sync_operation_id,
        property_hash=model.property_hash,
    )


def _model_to_rule(model: FieldMappingRuleModel) -> FieldMappingRule:
    return FieldMappingRule(
        side_a_field=model.side_a_field,
        side_b_field=model.side_b_field,
        direction=SyncDirection(model.direction),
        transform=FieldTransform(model.transform),
        is_active=model.is_active,
        is_default=model.is_default,
    )


# ── Mappings ────────────────────────────────────────────────────────────────


class SqlMappingStore(MappingStore):
    """Contact mappings in the contact_mappings table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("mapping.find_by_side_a")
    async def find_by_side_a(self, tenant_id: str, contact_id: str) -> ContactMapping | None:
        async for session in self._session_factory():
            stmt = select(ContactMappingModel).where(
                ContactMappingModel.tenant_id == tenant_id,
                ContactMappingModel.side_a_contact_id == contact_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _model_to_mapping(model) if model else None

    @_store_call("mapping.find_by_side_b")
    async def find_by_side_b(self, tenant_id: str, contact_id: str) -> ContactMapping | None:
        async for session in self._session_factory():
            stmt = select(ContactMappingModel).where(
                ContactMappingModel.tenant_id == tenant_id,
                ContactMappingModel.side_b_contact_id == contact_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _model_to_mapping(model) if model else None

    @_store_call("mapping.upsert")
    async def upsert(self, mapping: ContactMapping) -> ContactMapping:
        """Insert or update by (tenant, side A id).

        A Side B id already paired with a different Side A contact violates
        the unique constraint and surfaces as StoreError.
        """
        async for session in self._session_factory():
            stmt = select(ContactMappingModel).where(
                ContactMappingModel.tenant_id == mapping.tenant_id,
                ContactMappingModel.side_a_contact_id == mapping.side_a_contact_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                model = ContactMappingModel(
                    tenant_id=mapping.tenant_id,
                    side_a_contact_id=mapping.side_a_contact_id,
                )
                session.add(model)
            model.side_b_contact_id = mapping.side_b_contact_id
            model.last_synced_at = mapping.last_synced_at
            model.last_sync_source = mapping.last_sync_source.value if mapping.last_sync_source else None
            model.sync_operation_id = mapping.sync_operation_id
            model.property_hash = mapping.property_hash
            try:
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise
            await session.refresh(model)
            return _model_to_mapping(model)

    @_store_call("mapping.delete")
    async def delete(
        self,
        tenant_id: str,
        side_a_contact_id: str | None = None,
        side_b_contact_id: str | None = None,
    ) -> ContactMapping | None:
        conditions = []
        if side_a_contact_id:
            conditions.append(ContactMappingModel.side_a_contact_id == side_a_contact_id)
        if side_b_contact_id:
            conditions.append(ContactMappingModel.side_b_contact_id == side_b_contact_id)
        if not conditions:
            return None

        async for session in self._session_factory():
            stmt = select(ContactMappingModel).where(
                ContactMappingModel.tenant_id == tenant_id,
                or_(*conditions),
            )
            model = (await session.execute(stmt)).scalars().first()
            if model is None:
                return None
            removed = _model_to_mapping(model)
            await session.delete(model)
            await session.commit()
            return removed


# ── Hashes ──────────────────────────────────────────────────────────────────


class SqlHashStore(HashStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("hash.get")
    async def get(self, tenant_id: str, contact_id: str, side: Side) -> str | None:
        async for session in self._session_factory():
            stmt = select(ContactHashModel.hash).where(
                ContactHashModel.tenant_id == tenant_id,
                ContactHashModel.contact_id == contact_id,
                ContactHashModel.side == side.value,
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    @_store_call("hash.upsert")
    async def upsert(self, tenant_id: str, contact_id: str, side: Side, hash_value: str) -> None:
        async for session in self._session_factory():
            stmt = select(ContactHashModel).where(
                ContactHashModel.tenant_id == tenant_id,
                ContactHashModel.contact_id == contact_id,
                ContactHashModel.side == side.value,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                session.add(ContactHashModel(
                    tenant_id=tenant_id,
                    contact_id=contact_id,
                    side=side.value,
                    hash=hash_value,
                ))
            else:
                model.hash = hash_value
                model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    @_store_call("hash.delete_for_contact")
    async def delete_for_contact(self, tenant_id: str, contact_id: str) -> int:
        async for session in self._session_factory():
            stmt = delete(ContactHashModel).where(
                ContactHashModel.tenant_id == tenant_id,
                ContactHashModel.contact_id == contact_id,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0


# ── Operation ids ───────────────────────────────────────────────────────────


class SqlDedupeStore(DedupeStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("dedupe.put")
    async def put(
        self,
        operation_id: str,
        tenant_id: str,
        side: Side,
        contact_id: str,
        expires_at: datetime,
    ) -> None:
        async for session in self._session_factory():
            await session.merge(SyncOperationModel(
                operation_id=operation_id,
                tenant_id=tenant_id,
                side=side.value,
                contact_id=contact_id,
                expires_at=expires_at,
            ))
            await session.commit()

    @_store_call("dedupe.exists")
    async def exists(self, operation_id: str, now: datetime) -> bool:
        async for session in self._session_factory():
            stmt = select(SyncOperationModel.operation_id).where(
                SyncOperationModel.operation_id == operation_id,
                SyncOperationModel.expires_at > now,
            )
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    @_store_call("dedupe.purge_expired")
    async def purge_expired(self, now: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncOperationModel).where(SyncOperationModel.expires_at <= now)
            )
            await session.commit()
            return result.rowcount or 0


# ── Rules ───────────────────────────────────────────────────────────────────


class SqlRuleStore(RuleStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("rules.list_active")
    async def list_active(self, tenant_id: str) -> list[FieldMappingRule]:
        async for session in self._session_factory():
            stmt = (
                select(FieldMappingRuleModel)
                .where(
                    FieldMappingRuleModel.tenant_id == tenant_id,
                    FieldMappingRuleModel.is_active.is_(True),
                )
                .order_by(FieldMappingRuleModel.is_default.desc(), FieldMappingRuleModel.created_at)
            )
            models = (await session.execute(stmt)).scalars().all()
            return [_model_to_rule(model) for model in models]

    @_store_call("rules.replace_custom")
    async def replace_custom(self, tenant_id: str, rules: list[FieldMappingRule]) -> None:
        async for session in self._session_factory():
            await session.execute(
                delete(FieldMappingRuleModel).where(
                    FieldMappingRuleModel.tenant_id == tenant_id,
                    FieldMappingRuleModel.is_default.is_(False),
                )
            )
            for rule in rules:
                session.add(FieldMappingRuleModel(
                    tenant_id=tenant_id,
                    side_a_field=rule.side_a_field,
                    side_b_field=rule.side_b_field,
                    direction=rule.direction.value,
                    transform=rule.transform.value,
                    is_active=rule.is_active,
                    is_default=False,
                ))
            await session.commit()

    @_store_call("rules.ensure_defaults")
    async def ensure_defaults(self, tenant_id: str, defaults: list[FieldMappingRule]) -> int:
        async for session in self._session_factory():
            stmt = select(FieldMappingRuleModel.side_a_field, FieldMappingRuleModel.side_b_field).where(
                FieldMappingRuleModel.tenant_id == tenant_id
            )
            existing = {tuple(row) for row in (await session.execute(stmt)).all()}
            inserted = 0
            for rule in defaults:
                if (rule.side_a_field, rule.side_b_field) in existing:
                    continue
                session.add(FieldMappingRuleModel(
                    tenant_id=tenant_id,
                    side_a_field=rule.side_a_field,
                    side_b_field=rule.side_b_field,
                    direction=rule.direction.value,
                    transform=rule.transform.value,
                    is_active=True,
                    is_default=rule.is_default,
                ))
                inserted += 1
            await session.commit()
            return inserted


# ── Audit log ───────────────────────────────────────────────────────────────


class SqlAuditLog(AuditLog):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("audit.append")
    async def append(self, event: SyncEventRecord) -> None:
        async for session in self._session_factory():
            session.add(SyncEventModel(
                tenant_id=event.tenant_id,
                source=event.source.value,
                action=event.action.value,
                status=event.status.value,
                side_a_contact_id=event.side_a_contact_id,
                side_b_contact_id=event.side_b_contact_id,
                error=event.error,
                conflict_winner=event.conflict_winner.value if event.conflict_winner else None,
                duration_ms=event.duration_ms,
                details=event.details,
                created_at=event.created_at,
            ))
            await session.commit()

    @_store_call("audit.purge_older_than")
    async def purge_older_than(self, cutoff: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncEventModel).where(SyncEventModel.created_at < cutoff)
            )
            await session.commit()
            return result.rowcount or 0

    @_store_call("audit.list_recent")
    async def list_recent(self, tenant_id: str, limit: int = 50) -> list[SyncEventRecord]:
        """Newest events first, for operator tooling."""
        async for session in self._session_factory():
            stmt = (
                select(SyncEventModel)
                .where(SyncEventModel.tenant_id == tenant_id)
                .order_by(SyncEventModel.created_at.desc())
                .limit(limit)
            )
            models = (await session.execute(stmt)).scalars().all()
            return [
                SyncEventRecord(
                    tenant_id=model.tenant_id,
                    source=model.source,
                    action=model.action,
                    status=model.status,
                    side_a_contact_id=model.side_a_contact_id,
                    side_b_contact_id=model.side_b_contact_id,
                    error=model.error,
                    conflict_winner=model.conflict_winner,
                    duration_ms=model.duration_ms,
                    details=model.details or {},
                    created_at=_aware(model.created_at),
                )
                for model in models
            ]


# ── Sweep state ─────────────────────────────────────────────────────────────


class SqlSyncStateStore(SyncStateStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_store_call("sync_state.get")
    async def get_last_full_sync(self, tenant_id: str) -> datetime | None:
        async for session in self._session_factory():
            model = await session.get(SyncStateModel, tenant_id)
            return _aware(model.last_full_sync_at) if model else None

    @_store_call("sync_state.set")
    async def set_last_full_sync(self, tenant_id: str, at: datetime) -> None:
        async for session in self._session_factory():
            await session.merge(SyncStateModel(tenant_id=tenant_id, last_full_sync_at=at))
            await session.commit()
