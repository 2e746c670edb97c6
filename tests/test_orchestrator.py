"""Tests for SyncOrchestrator scenarios over in-memory providers and stores.

Covers:
- Side A created -> Side B contact created, mapping and hash persisted, tag stamped
- Re-delivery of the same event writes nothing (idempotent skip)
- Echo of our own write is dropped before any scenario runs
- Identity match: an existing target contact is updated, not duplicated
- Update conflict: the newer target wins and the write is skipped
- Side B -> Side A writes embed the sync tag; the echo is suppressed
- Deleted events drop the mapping and hashes, leaving the counterpart
- Failures are audited (sanitized) and re-raised with tenant/contact context
- Batch processing isolates failures; background batches are tracked
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.contact_sync.errors import PermanentExternalError, SyncScenarioError
from src.contact_sync.schemas import (
    ContactMapping,
    EventType,
    SkipReason,
    Side,
    SyncAction,
    SyncSource,
    SyncStatus,
    TieBreak,
    WebhookEvent,
)
from src.contact_sync.sync.idempotency import compute_hash
from src.contact_sync.sync.orchestrator import SyncOrchestrator
from tests.doubles import side_a_document, side_b_document


async def _sync_new_side_a_contact(orchestrator, side_a, tenant_id):
    document = side_a.add("a-1", side_a_document(email="John@Test.com"))
    return await orchestrator.handle_side_a_event(tenant_id, "a-1", document, EventType.CREATED)


class TestSideACreated:
    """A new Side A contact flows to Side B."""

    async def test_creates_contact_on_side_b(
        self, orchestrator, side_a, side_b, mapping_store, hash_store, dedupe_store, audit_log, tenant_id
    ) -> None:
        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        assert result.action == SyncAction.CREATE
        assert result.side_a_id == "a-1"
        assert result.source == SyncSource.SIDE_A_WEBHOOK
        b_id = result.side_b_id
        assert side_b.writes == [("create", b_id), ("tag", b_id)]

        properties = side_b.contacts[b_id]["properties"]
        assert properties["email"] == "john@test.com"
        assert properties["firstname"] == "John"
        assert properties["lastname"] == "Doe"

        mapping = await mapping_store.find_by_side_a(tenant_id, "a-1")
        assert mapping.side_b_contact_id == b_id
        assert mapping.last_sync_source is Side.A
        assert mapping.sync_operation_id == properties["sync_tag"]
        assert properties["sync_tag"] in dedupe_store.operations

        expected_hash = compute_hash({"email": "john@test.com", "firstname": "John", "lastname": "Doe"})
        assert hash_store.hashes[(tenant_id, b_id, Side.B)] == expected_hash

        assert len(audit_log.events) == 1
        event = audit_log.events[0]
        assert event.action == SyncAction.CREATE
        assert event.status == SyncStatus.SUCCESS
        assert event.side_a_contact_id == "a-1"
        assert event.side_b_contact_id == b_id
        assert event.details["scenario"] == "side_a_created"

    async def test_redelivery_is_idempotent(self, orchestrator, side_a, side_b, tenant_id) -> None:
        await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        writes_before = list(side_b.writes)

        result = await orchestrator.handle_side_a_event(
            tenant_id, "a-1", side_a.contacts["a-1"], EventType.CREATED
        )

        assert result.action == SyncAction.SKIP
        assert result.skip_reason == SkipReason.UNCHANGED
        assert side_b.writes == writes_before

    async def test_echo_of_our_write_is_dropped(self, orchestrator, side_a, side_b, audit_log, tenant_id) -> None:
        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        b_id = result.side_b_id
        audit_count = len(audit_log.events)

        echo = await orchestrator.handle_side_b_event(
            tenant_id, b_id, side_b.contacts[b_id], EventType.UPDATED
        )

        assert echo.action == SyncAction.SKIP
        assert echo.skip_reason == SkipReason.ECHO
        assert echo.side_b_id == b_id
        assert side_a.writes == []
        assert len(audit_log.events) == audit_count

    async def test_matches_existing_contact_by_email(
        self, orchestrator, side_a, side_b, mapping_store, tenant_id
    ) -> None:
        side_b.add("b-existing", side_b_document(firstname="Johnny", email="john@test.com"))

        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        assert result.action == SyncAction.UPDATE
        assert result.side_b_id == "b-existing"
        assert ("create", "b-existing") not in side_b.writes
        assert side_b.contacts["b-existing"]["properties"]["firstname"] == "John"
        assert (await mapping_store.find_by_side_a(tenant_id, "a-1")).side_b_contact_id == "b-existing"

    async def test_contact_without_email_is_created(self, orchestrator, side_a, side_b, tenant_id) -> None:
        document = side_a.add("a-2", side_a_document(email=""))

        result = await orchestrator.on_side_a_created(tenant_id, "a-2", document)

        assert result.action == SyncAction.CREATE
        assert side_b.writes[0][0] == "create"

    async def test_created_event_for_mapped_contact_runs_as_update(
        self, orchestrator, side_a, side_b, tenant_id
    ) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        changed = side_a_document(first="Jonathan", email="john@test.com", updated="2026-02-01T00:00:00Z")

        result = await orchestrator.on_side_a_created(tenant_id, "a-1", changed)

        assert result.action == SyncAction.UPDATE
        assert result.side_b_id == created.side_b_id
        assert side_b.contacts[created.side_b_id]["properties"]["firstname"] == "Jonathan"


class TestSideAUpdated:
    """Updates pushed to an existing Side B counterpart."""

    async def test_newer_update_is_written(self, orchestrator, side_a, side_b, tenant_id) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        changed = side_a_document(last="Smith", updated="2026-02-01T00:00:00Z")

        result = await orchestrator.handle_side_a_event(tenant_id, "a-1", changed, EventType.UPDATED)

        assert result.action == SyncAction.UPDATE
        assert side_b.writes[-2:] == [("update", created.side_b_id), ("tag", created.side_b_id)]
        assert side_b.contacts[created.side_b_id]["properties"]["lastname"] == "Smith"

    async def test_older_update_loses_conflict(
        self, orchestrator, side_a, side_b, audit_log, tenant_id
    ) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        writes_before = list(side_b.writes)
        # Side B was last written at 2026-01-01; this Side A change is older
        stale = side_a_document(last="Stale", updated="2025-12-31T23:59:59Z")

        result = await orchestrator.on_side_a_updated(tenant_id, "a-1", stale)

        assert result.action == SyncAction.SKIP
        assert result.skip_reason == SkipReason.CONFLICT
        assert side_b.writes == writes_before
        event = audit_log.events[-1]
        assert event.status == SyncStatus.SKIPPED
        assert event.conflict_winner is Side.B
        assert event.side_b_contact_id == created.side_b_id

    async def test_equal_timestamps_follow_tie_break(
        self, side_a, side_b, mapping_store, field_mapping, dedupe, idempotency, audit_log, sync_state, tenant_id
    ) -> None:
        orchestrator = SyncOrchestrator(
            side_a, side_b, mapping_store, field_mapping, dedupe, idempotency, audit_log, sync_state,
            tie_break=TieBreak.SIDE_B,
        )
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        same_instant = side_a_document(last="Tied", updated=side_b.clock())

        result = await orchestrator.on_side_a_updated(tenant_id, "a-1", same_instant)

        assert result.skip_reason == SkipReason.CONFLICT
        assert side_b.contacts[created.side_b_id]["properties"]["lastname"] == "Doe"

    async def test_update_without_mapping_creates(self, orchestrator, side_a, side_b, tenant_id) -> None:
        document = side_a.add("a-9", side_a_document(email="new@test.com"))

        result = await orchestrator.on_side_a_updated(tenant_id, "a-9", document)

        assert result.action == SyncAction.CREATE
        assert side_b.writes[0][0] == "create"


class TestSideBToSideA:
    """Side B changes flow to Side A with the tag embedded in the write."""

    async def test_created_on_side_b_embeds_tag(
        self, orchestrator, side_a, side_b, dedupe_store, hash_store, tenant_id
    ) -> None:
        document = side_b.add("b-7", side_b_document())

        result = await orchestrator.handle_side_b_event(tenant_id, "b-7", document, EventType.CREATED)

        assert result.action == SyncAction.CREATE
        a_id = result.side_a_id
        # one write, no separate tag write
        assert side_a.writes == [("create", a_id)]
        info = side_a.contacts[a_id]["info"]
        assert info["name"] == {"first": "Jane", "last": "Roe"}
        assert info["emails"]["items"][0]["email"] == "jane@test.com"
        tag = info["extendedFields"]["items"]["custom.sync_tag"]
        assert tag in dedupe_store.operations
        assert (tenant_id, a_id, Side.A) in hash_store.hashes

        echo = await orchestrator.handle_side_a_event(
            tenant_id, a_id, side_a.contacts[a_id], EventType.UPDATED
        )
        assert echo.skip_reason == SkipReason.ECHO

    async def test_side_b_update_newer_than_side_a(self, orchestrator, side_a, side_b, tenant_id) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        b_id = created.side_b_id
        side_a.contacts["a-1"]["updatedDate"] = "2026-01-05T00:00:00Z"
        changed = side_b_document(firstname="Johnathan", email="john@test.com", modified="2026-01-06T00:00:00Z")

        result = await orchestrator.on_side_b_updated(tenant_id, b_id, changed)

        assert result.action == SyncAction.UPDATE
        assert result.side_a_id == "a-1"
        assert side_a.contacts["a-1"]["info"]["name"]["first"] == "Johnathan"
        assert side_a.writes == [("update", "a-1")]


class TestDeleted:
    async def test_delete_removes_mapping_and_hashes(
        self, orchestrator, side_a, side_b, mapping_store, hash_store, audit_log, tenant_id
    ) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        result = await orchestrator.handle_side_a_event(tenant_id, "a-1", None, EventType.DELETED)

        assert result.action == SyncAction.DELETE
        assert result.side_b_id == created.side_b_id
        assert mapping_store.mappings == []
        assert hash_store.hashes == {}
        # counterpart untouched
        assert created.side_b_id in side_b.contacts
        assert audit_log.events[-1].details["mapping_removed"] is True

    async def test_delete_of_unmapped_contact(self, orchestrator, audit_log, tenant_id) -> None:
        result = await orchestrator.on_contact_deleted(tenant_id, Side.B, "b-unknown")

        assert result.action == SyncAction.DELETE
        assert result.source == SyncSource.SIDE_B_WEBHOOK
        assert audit_log.events[-1].details["mapping_removed"] is False


class TestFailures:
    """Errors are audited and re-raised with context."""

    async def test_external_error_is_audited_and_reraised(
        self, orchestrator, side_a, side_b, audit_log, tenant_id
    ) -> None:
        side_b.create = AsyncMock(
            side_effect=PermanentExternalError("rejected john@test.com", status_code=400)
        )
        document = side_a.add("a-1", side_a_document())

        with pytest.raises(PermanentExternalError) as exc_info:
            await orchestrator.on_side_a_created(tenant_id, "a-1", document)

        assert exc_info.value.tenant_id == tenant_id
        assert exc_info.value.contact_id == "a-1"
        assert exc_info.value.scenario == "side_a_created"

        event = audit_log.events[-1]
        assert event.status == SyncStatus.FAILED
        assert "[email]" in event.error
        assert "john@test.com" not in event.error

    async def test_failed_delegated_update_audits_update_with_target(
        self, orchestrator, side_a, side_b, audit_log, tenant_id
    ) -> None:
        created = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)
        side_b.update = AsyncMock(side_effect=PermanentExternalError("rejected", status_code=400))
        changed = side_a_document(first="Jonathan", email="john@test.com", updated="2026-02-01T00:00:00Z")

        with pytest.raises(PermanentExternalError):
            await orchestrator.on_side_a_created(tenant_id, "a-1", changed)

        event = audit_log.events[-1]
        assert event.status == SyncStatus.FAILED
        assert event.action == SyncAction.UPDATE
        assert event.side_a_contact_id == "a-1"
        assert event.side_b_contact_id == created.side_b_id
        assert event.details["scenario"] == "side_a_created"

    async def test_unexpected_error_is_wrapped(self, orchestrator, side_a, mapping_store, tenant_id) -> None:
        mapping_store.find_by_side_a = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(SyncScenarioError) as exc_info:
            await orchestrator.on_side_a_updated(tenant_id, "a-1", side_a_document())

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.scenario == "side_a_updated"

    async def test_target_write_without_id_fails(self, orchestrator, side_a, side_b, tenant_id) -> None:
        side_b.create = AsyncMock(return_value=side_b._record({}))

        with pytest.raises(SyncScenarioError, match="returned no contact id"):
            await orchestrator.on_side_a_created(tenant_id, "a-1", side_a_document())

    async def test_tag_write_failure_does_not_fail_sync(self, orchestrator, side_a, side_b, tenant_id) -> None:
        side_b.write_sync_tag = AsyncMock(side_effect=ConnectionError("timeout"))

        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        assert result.action == SyncAction.CREATE

    async def test_audit_failure_does_not_fail_sync(self, orchestrator, side_a, audit_log, tenant_id) -> None:
        audit_log.append = AsyncMock(side_effect=ConnectionError("db down"))

        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        assert result.action == SyncAction.CREATE

    async def test_dedupe_store_outage_still_syncs(
        self, orchestrator, side_a, side_b, dedupe_store, tenant_id
    ) -> None:
        dedupe_store.put = AsyncMock(side_effect=ConnectionError("down"))
        dedupe_store.exists = AsyncMock(side_effect=ConnectionError("down"))

        result = await _sync_new_side_a_contact(orchestrator, side_a, tenant_id)

        assert result.action == SyncAction.CREATE


class TestBatches:
    """Concurrent batch processing."""

    async def test_batch_isolates_failures(self, orchestrator, side_a, side_b, tenant_id) -> None:
        original_create = side_b.create

        async def create(tid, fields, sync_tag=None):
            if fields.get("email") == "bad@test.com":
                raise PermanentExternalError("Side B rejected contact", status_code=400)
            return await original_create(tid, fields, sync_tag)

        side_b.create = create
        events = [
            WebhookEvent(side=Side.A, event_type=EventType.CREATED, contact_id=f"a-{i}",
                         record=side_a_document(email=email))
            for i, email in enumerate(["one@test.com", "bad@test.com", "two@test.com"])
        ]

        batch = await orchestrator.handle_batch(tenant_id, events)

        assert batch.succeeded == 2
        assert batch.failed == 1
        assert len(batch.results) == 2
        assert "Side B rejected contact" in batch.errors[0]
        assert len([w for w in side_b.writes if w[0] == "create"]) == 2

    async def test_spawned_batch_is_drained(self, orchestrator, side_b, tenant_id) -> None:
        events = [
            WebhookEvent(side=Side.A, event_type=EventType.CREATED, contact_id="a-1",
                         record=side_a_document()),
        ]

        task = orchestrator.spawn_batch(tenant_id, events)
        await orchestrator.drain()

        assert task.done()
        assert task.result().succeeded == 1
        assert len(side_b.contacts) == 1


class TestMappingHelpers:
    async def test_find_by_side(self, mapping_store, tenant_id) -> None:
        await mapping_store.upsert(
            ContactMapping(tenant_id=tenant_id, side_a_contact_id="a-1", side_b_contact_id="b-1")
        )

        assert (await mapping_store.find(tenant_id, Side.A, "a-1")).side_b_contact_id == "b-1"
        assert (await mapping_store.find(tenant_id, Side.B, "b-1")).side_a_contact_id == "a-1"
        assert await mapping_store.find(tenant_id, Side.B, "a-1") is None
