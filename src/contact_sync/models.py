"""Contact sync persistence models.

Six SQLAlchemy models, every row scoped by tenant_id:
- ContactMappingModel: Side A contact <-> Side B contact pairing
- ContactHashModel: Last-written payload hash per contact and side
- SyncOperationModel: Short-lived operation ids used for echo suppression
- FieldMappingRuleModel: Tenant-configured field correspondences
- SyncEventModel: Append-only audit log of sync decisions
- SyncStateModel: Per-tenant reconciliation sweep bookkeeping

Column types are dialect-neutral so the same models run on PostgreSQL
(asyncpg) and SQLite (aiosqlite) in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.contact_sync.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactMappingModel(Base):
    """Pairing of one Side A contact with one Side B contact.

    Each contact id appears in at most one mapping per tenant on its side,
    enforced by two unique constraints.
    """

    __tablename__ = "contact_mappings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "side_a_contact_id", name="uq_mapping_tenant_side_a"),
        UniqueConstraint("tenant_id", "side_b_contact_id", name="uq_mapping_tenant_side_b"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    side_a_contact_id: Mapped[str] = mapped_column(String(200), nullable=False)
    side_b_contact_id: Mapped[str] = mapped_column(String(200), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_sync_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    sync_operation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    property_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=_utcnow,
        nullable=True,
    )


class ContactHashModel(Base):
    """Hash of the last payload written to a contact on one side."""

    __tablename__ = "contact_hashes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "contact_id", "side", name="uq_hash_tenant_contact_side"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(200), nullable=False)
    side: Mapped[str] = mapped_column(String(20), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class SyncOperationModel(Base):
    """Operation id stamped on a write we made, kept until expires_at."""

    __tablename__ = "sync_operations"
    __table_args__ = (Index("ix_sync_operations_expires_at", "expires_at"),)

    operation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    side: Mapped[str] = mapped_column(String(20), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(200), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )


class FieldMappingRuleModel(Base):
    """One field correspondence rule for a tenant."""

    __tablename__ = "field_mapping_rules"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "side_a_field",
            "side_b_field",
            name="uq_rule_tenant_fields",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    side_a_field: Mapped[str] = mapped_column(String(100), nullable=False)
    side_b_field: Mapped[str] = mapped_column(String(100), nullable=False)
    direction: Mapped[str] = mapped_column(String(20), nullable=False, default="bidirectional")
    transform: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )


class SyncEventModel(Base):
    """Audit row for a single sync decision. Rows are never updated."""

    __tablename__ = "sync_events"
    __table_args__ = (Index("ix_sync_events_tenant_created", "tenant_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    side_a_contact_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    side_b_contact_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    conflict_winner: Mapped[str | None] = mapped_column(String(20), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class SyncStateModel(Base):
    """Per-tenant sweep bookkeeping."""

    __tablename__ = "sync_state"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_full_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=_utcnow,
        nullable=True,
    )
