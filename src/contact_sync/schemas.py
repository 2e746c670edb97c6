"""Pydantic schemas for contact synchronization.

Defines all structured types shared by the sync services:
- Enums: Side, SyncDirection, FieldTransform, TieBreak, SyncSource,
  SyncAction, SyncStatus, SkipReason, EventType
- Field mapping: FieldMappingRule, RuleValidationError, SaveRulesResult, FieldOption
- Persistence records: ContactMapping, SyncEventRecord
- Provider payloads: ContactRecord, ContactPage
- Results: ConflictDecision, SyncResult, FullSyncResult, WebhookEvent, BatchResult
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class Side(str, Enum):
    """One of the two synchronized systems."""

    A = "side_a"
    B = "side_b"

    @property
    def other(self) -> Side:
        return Side.B if self is Side.A else Side.A


class SyncDirection(str, Enum):
    """Direction a field mapping rule applies in."""

    A_TO_B = "a_to_b"
    B_TO_A = "b_to_a"
    BIDIRECTIONAL = "bidirectional"

    def includes(self, direction: SyncDirection) -> bool:
        return self is SyncDirection.BIDIRECTIONAL or self is direction


class FieldTransform(str, Enum):
    """Value transform applied while mapping a field."""

    NONE = "none"
    TRIM = "trim"
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"
    PHONE_E164 = "phone_e164"


class TieBreak(str, Enum):
    """Winner when both timestamps are equal or neither is known."""

    INBOUND = "inbound"
    SIDE_A = "side_a"
    SIDE_B = "side_b"


class SyncSource(str, Enum):
    """What triggered a sync operation."""

    SIDE_A_WEBHOOK = "side_a_webhook"
    SIDE_B_WEBHOOK = "side_b_webhook"
    FULL_SYNC = "full_sync"
    MANUAL = "manual"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    DELETE = "delete"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Why a scenario decided not to write."""

    ECHO = "echo"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    ALREADY_MAPPED = "already_mapped"


class EventType(str, Enum):
    """Change notification kinds delivered by either side."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# ── Field Mapping ───────────────────────────────────────────────────────────


class FieldMappingRule(BaseModel):
    """One tenant-configured correspondence between a Side A and a Side B field."""

    side_a_field: str
    side_b_field: str
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    transform: FieldTransform = FieldTransform.NONE
    is_active: bool = True
    is_default: bool = False

    def source_field(self, direction: SyncDirection) -> str:
        return self.side_a_field if direction == SyncDirection.A_TO_B else self.side_b_field

    def target_field(self, direction: SyncDirection) -> str:
        return self.side_b_field if direction == SyncDirection.A_TO_B else self.side_a_field


class RuleValidationError(BaseModel):
    """A single problem found in a rule set. Collected, never raised."""

    field: str
    message: str


class SaveRulesResult(BaseModel):
    ok: bool
    rules: list[FieldMappingRule] = Field(default_factory=list)
    errors: list[RuleValidationError] = Field(default_factory=list)


class FieldOption(BaseModel):
    """A Side A field offered to rule editors."""

    value: str
    label: str
    type: str
    description: str


# ── Persistence Records ─────────────────────────────────────────────────────


class ContactMapping(BaseModel):
    """Durable pairing of a Side A contact with a Side B contact."""

    tenant_id: str
    side_a_contact_id: str
    side_b_contact_id: str
    last_synced_at: datetime = Field(default_factory=_utcnow)
    last_sync_source: Side | None = None
    sync_operation_id: str | None = None
    property_hash: str | None = None

    def contact_id(self, side: Side) -> str:
        return self.side_a_contact_id if side is Side.A else self.side_b_contact_id


class SyncEventRecord(BaseModel):
    """Append-only audit entry for one sync decision."""

    tenant_id: str
    source: SyncSource
    action: SyncAction
    status: SyncStatus
    side_a_contact_id: str | None = None
    side_b_contact_id: str | None = None
    error: str | None = None
    conflict_winner: Side | None = None
    duration_ms: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


# ── Provider Payloads ───────────────────────────────────────────────────────


class ContactRecord(BaseModel):
    """A contact as returned by a provider: id, raw payload and modification time."""

    id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    updated_at: str | None = None


class ContactPage(BaseModel):
    records: list[ContactRecord] = Field(default_factory=list)
    next_cursor: str | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class ConflictDecision(BaseModel):
    winner: Side
    reason: str
    side_a_timestamp: datetime | None = None
    side_b_timestamp: datetime | None = None


class SyncResult(BaseModel):
    """Outcome of one scenario run."""

    action: SyncAction
    source: SyncSource
    side_a_id: str | None = None
    side_b_id: str | None = None
    skip_reason: SkipReason | None = None


class FullSyncResult(BaseModel):
    """Counters from one reconciliation sweep."""

    synced: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    duration_ms: int = 0


class WebhookEvent(BaseModel):
    """A change notification handed to the orchestrator by the transport layer."""

    side: Side
    event_type: EventType
    contact_id: str
    record: dict[str, Any] = Field(default_factory=dict)


class BatchResult(BaseModel):
    """Settled outcome of a webhook batch."""

    succeeded: int = 0
    failed: int = 0
    results: list[SyncResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
