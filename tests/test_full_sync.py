"""Tests for the reconciliation sweep across both sides.

Covers:
- Per-record isolation: a record without an id counts as an error
- Phase 1 creates or updates Side A contacts, phase 2 creates unmapped Side B contacts
- Mapped Side B contacts are skipped in phase 2
- Paging through multiple pages
- A listing failure ends that phase without aborting the sweep
- Last sweep time is recorded
"""

from __future__ import annotations

from unittest.mock import AsyncMock

from src.contact_sync.schemas import ContactPage, ContactRecord, SyncSource
from src.contact_sync.sync.orchestrator import SyncOrchestrator
from tests.doubles import side_a_document, side_b_document


class TestFullSync:
    async def test_missing_id_counts_as_error(self, orchestrator, side_a, side_b, tenant_id) -> None:
        side_a.list_page = AsyncMock(return_value=ContactPage(records=[
            ContactRecord(id="a-1", data=side_a_document(email="one@test.com")),
            ContactRecord(id="", data=side_a_document(email="nobody@test.com")),
            ContactRecord(id="a-3", data=side_a_document(email="three@test.com")),
        ]))
        side_b.list_page = AsyncMock(return_value=ContactPage())

        result = await orchestrator.run_full_sync(tenant_id)

        assert result.total == 3
        assert result.errors == 1
        assert result.synced + result.skipped == 2
        assert result.synced == 2

    async def test_both_phases(self, orchestrator, side_a, side_b, mapping_store, audit_log, sync_state, tenant_id) -> None:
        side_a.add("a-1", side_a_document(email="john@test.com"))
        side_b.add("b-x", side_b_document(email="jane@test.com"))

        result = await orchestrator.run_full_sync(tenant_id)

        # phase 1: a-1; phase 2: the contact just created for a-1 (skipped) and b-x
        assert result.total == 3
        assert result.synced == 2
        assert result.skipped == 1
        assert result.errors == 0
        assert len(mapping_store.mappings) == 2
        assert await mapping_store.find_by_side_b(tenant_id, "b-x") is not None
        assert all(e.source == SyncSource.FULL_SYNC for e in audit_log.events)
        assert tenant_id in sync_state.last_full_sync

    async def test_second_sweep_writes_nothing(self, orchestrator, side_a, side_b, tenant_id) -> None:
        side_a.add("a-1", side_a_document(email="john@test.com"))
        await orchestrator.run_full_sync(tenant_id)
        writes = len(side_b.writes)

        result = await orchestrator.run_full_sync(tenant_id)

        assert result.synced == 0
        assert result.skipped == 2
        assert len(side_b.writes) == writes

    async def test_pages_through_all_contacts(
        self, side_a, side_b, mapping_store, field_mapping, dedupe, idempotency, audit_log, sync_state, tenant_id
    ) -> None:
        orchestrator = SyncOrchestrator(
            side_a, side_b, mapping_store, field_mapping, dedupe, idempotency, audit_log, sync_state,
            page_size=2,
        )
        for i in range(5):
            side_a.add(f"a-{i}", side_a_document(email=f"user{i}@test.com"))
        side_b.list_page = AsyncMock(return_value=ContactPage())

        result = await orchestrator.run_full_sync(tenant_id)

        assert result.total == 5
        assert result.synced == 5
        assert len(side_b.contacts) == 5

    async def test_listing_failure_skips_phase(self, orchestrator, side_a, side_b, sync_state, tenant_id) -> None:
        side_a.list_page = AsyncMock(side_effect=ConnectionError("side a down"))
        side_b.add("b-1", side_b_document())

        result = await orchestrator.run_full_sync(tenant_id)

        assert result.total == 1
        assert result.synced == 1
        assert tenant_id in sync_state.last_full_sync

    async def test_record_failure_is_isolated(self, orchestrator, side_a, side_b, tenant_id) -> None:
        side_a.add("a-1", side_a_document(email="ok@test.com"))
        side_a.add("a-2", side_a_document(email="fails@test.com"))
        original_create = side_b.create

        async def create(tid, fields, sync_tag=None):
            if fields["email"] == "fails@test.com":
                raise ConnectionError("write failed")
            return await original_create(tid, fields, sync_tag)

        side_b.create = create
        side_b.list_page = AsyncMock(return_value=ContactPage())

        result = await orchestrator.run_full_sync(tenant_id)

        assert result.total == 2
        assert result.synced == 1
        assert result.errors == 1
        assert result.duration_ms >= 0
