"""Contact sync tables: mappings, hashes, operations, rules, events, sweep state.

Revision ID: 001_contact_sync
Revises:
Create Date: 2026-10-18

Creates six tables, every row scoped by tenant_id:
- contact_mappings: Side A <-> Side B pairing, unique per side per tenant
- contact_hashes: last-written payload hash per contact and side
- sync_operations: short-lived operation ids for echo suppression
- field_mapping_rules: tenant field correspondences
- sync_events: append-only audit log
- sync_state: per-tenant sweep bookkeeping
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_contact_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── contact_mappings ────────────────────────────────────────────────

    op.create_table(
        "contact_mappings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("side_a_contact_id", sa.String(200), nullable=False),
        sa.Column("side_b_contact_id", sa.String(200), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_sync_source", sa.String(20), nullable=True),
        sa.Column("sync_operation_id", sa.String(64), nullable=True),
        sa.Column("property_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "side_a_contact_id", name="uq_mapping_tenant_side_a"),
        sa.UniqueConstraint("tenant_id", "side_b_contact_id", name="uq_mapping_tenant_side_b"),
    )

    # ── contact_hashes ──────────────────────────────────────────────────

    op.create_table(
        "contact_hashes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("contact_id", sa.String(200), nullable=False),
        sa.Column("side", sa.String(20), nullable=False),
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "contact_id", "side", name="uq_hash_tenant_contact_side"),
    )

    # ── sync_operations ─────────────────────────────────────────────────

    op.create_table(
        "sync_operations",
        sa.Column("operation_id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("side", sa.String(20), nullable=False),
        sa.Column("contact_id", sa.String(200), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sync_operations_expires_at", "sync_operations", ["expires_at"])

    # ── field_mapping_rules ─────────────────────────────────────────────

    op.create_table(
        "field_mapping_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("side_a_field", sa.String(100), nullable=False),
        sa.Column("side_b_field", sa.String(100), nullable=False),
        sa.Column("direction", sa.String(20), nullable=False, server_default="bidirectional"),
        sa.Column("transform", sa.String(20), nullable=False, server_default="none"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "side_a_field", "side_b_field", name="uq_rule_tenant_fields"),
    )

    # ── sync_events ─────────────────────────────────────────────────────

    op.create_table(
        "sync_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("side_a_contact_id", sa.String(200), nullable=True),
        sa.Column("side_b_contact_id", sa.String(200), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("conflict_winner", sa.String(20), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_events_tenant_created", "sync_events", ["tenant_id", "created_at"])

    # ── sync_state ──────────────────────────────────────────────────────

    op.create_table(
        "sync_state",
        sa.Column("tenant_id", sa.String(100), primary_key=True),
        sa.Column("last_full_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.drop_index("ix_sync_events_tenant_created", table_name="sync_events")
    op.drop_table("sync_events")
    op.drop_table("field_mapping_rules")
    op.drop_index("ix_sync_operations_expires_at", table_name="sync_operations")
    op.drop_table("sync_operations")
    op.drop_table("contact_hashes")
    op.drop_table("contact_mappings")
