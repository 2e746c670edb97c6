"""Sync orchestration between Side A and Side B.

Four scenarios, mirror images of each other:
- side_a_created / side_a_updated: push a Side A change to Side B
- side_b_created / side_b_updated: push a Side B change to Side A

Every scenario maps the inbound record through the tenant's field rules
and hashes the mapped payload. Updates are skipped when the hash matches
the last write, or when the target side holds the newer version. Writes
are stamped with an operation id so their echo can be recognised when it
comes back as a change notification.

The A->B direction stamps the tag on Side B after the write; the B->A
direction registers the id first and embeds it in the Side A write.

Webhook batches run concurrently and settle fully before their outcomes
are inspected. The reconciliation sweep pages through both sides and
isolates per-record failures.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars

from src.contact_sync.core.monitoring import record_sync_outcome, sync_echoes_suppressed_total
from src.contact_sync.errors import ContactSyncError, SyncScenarioError, sanitize_message
from src.contact_sync.providers.base import ContactProvider
from src.contact_sync.schemas import (
    BatchResult,
    ContactMapping,
    ContactRecord,
    EventType,
    FullSyncResult,
    SkipReason,
    Side,
    SyncAction,
    SyncEventRecord,
    SyncResult,
    SyncSource,
    SyncStatus,
    TieBreak,
    WebhookEvent,
)
from src.contact_sync.stores.base import AuditLog, MappingStore, SyncStateStore
from src.contact_sync.sync.conflict import extract_modified_at, resolve_conflict
from src.contact_sync.sync.dedupe import DedupeGuard
from src.contact_sync.sync.field_mapping import FieldMappingEngine, flatten
from src.contact_sync.sync.idempotency import IdempotencyChecker, compute_hash

logger = structlog.get_logger(__name__)

# Email field in each side's flat vocabulary.
EMAIL_FIELD = {Side.A: "primary_email", Side.B: "email"}

WEBHOOK_SOURCE = {Side.A: SyncSource.SIDE_A_WEBHOOK, Side.B: SyncSource.SIDE_B_WEBHOOK}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _ids(inbound: Side, inbound_id: str | None, target_id: str | None) -> dict[str, str | None]:
    if inbound is Side.A:
        return {"side_a_id": inbound_id, "side_b_id": target_id}
    return {"side_a_id": target_id, "side_b_id": inbound_id}


@dataclass
class _Trace:
    """How far a scenario got; read by the failure audit."""

    action: SyncAction
    target_id: str | None = None


class SyncOrchestrator:
    """Runs the sync scenarios against two contact providers.

    Args:
        side_a: Provider for Side A.
        side_b: Provider for Side B.
        mappings: Contact pairing store.
        field_mapping: Rule loading and record mapping.
        dedupe: Echo suppression.
        idempotency: Payload hash comparison.
        audit: Sync event log.
        sync_state: Sweep bookkeeping.
        tie_break: Conflict policy for equal or missing timestamps.
        page_size: Page size used by the reconciliation sweep.
    """

    def __init__(
        self,
        side_a: ContactProvider,
        side_b: ContactProvider,
        mappings: MappingStore,
        field_mapping: FieldMappingEngine,
        dedupe: DedupeGuard,
        idempotency: IdempotencyChecker,
        audit: AuditLog,
        sync_state: SyncStateStore,
        tie_break: TieBreak = TieBreak.INBOUND,
        page_size: int = 100,
    ) -> None:
        self._providers: dict[Side, ContactProvider] = {Side.A: side_a, Side.B: side_b}
        self._mappings = mappings
        self._field_mapping = field_mapping
        self._dedupe = dedupe
        self._idempotency = idempotency
        self._audit_log = audit
        self._sync_state = sync_state
        self._tie_break = tie_break
        self._page_size = page_size
        self._background: set[asyncio.Task] = set()

    # ── Scenarios ──────────────────────────────────────────────────────────

    async def on_side_a_created(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource = SyncSource.SIDE_A_WEBHOOK,
    ) -> SyncResult:
        """A contact appeared on Side A: create or match it on Side B."""
        trace = _Trace(SyncAction.CREATE)
        return await self._run(
            "side_a_created", trace, Side.A, tenant_id, contact_id, source,
            self._created_flow(Side.A, tenant_id, contact_id, record, source, trace),
        )

    async def on_side_a_updated(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource = SyncSource.SIDE_A_WEBHOOK,
    ) -> SyncResult:
        """A Side A contact changed: push the change to its Side B counterpart."""
        trace = _Trace(SyncAction.UPDATE)
        return await self._run(
            "side_a_updated", trace, Side.A, tenant_id, contact_id, source,
            self._updated_flow(Side.A, tenant_id, contact_id, record, source, trace),
        )

    async def on_side_b_created(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource = SyncSource.SIDE_B_WEBHOOK,
    ) -> SyncResult:
        """A contact appeared on Side B: create or match it on Side A."""
        trace = _Trace(SyncAction.CREATE)
        return await self._run(
            "side_b_created", trace, Side.B, tenant_id, contact_id, source,
            self._created_flow(Side.B, tenant_id, contact_id, record, source, trace),
        )

    async def on_side_b_updated(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource = SyncSource.SIDE_B_WEBHOOK,
    ) -> SyncResult:
        """A Side B contact changed: push the change to its Side A counterpart."""
        trace = _Trace(SyncAction.UPDATE)
        return await self._run(
            "side_b_updated", trace, Side.B, tenant_id, contact_id, source,
            self._updated_flow(Side.B, tenant_id, contact_id, record, source, trace),
        )

    async def on_contact_deleted(
        self,
        tenant_id: str,
        side: Side,
        contact_id: str,
        source: SyncSource | None = None,
    ) -> SyncResult:
        """A contact was deleted on ``side``: drop its mapping and stored hashes.

        The counterpart on the other side is left untouched.
        """
        source = source or WEBHOOK_SOURCE[side]
        return await self._run(
            f"{side.value}_deleted", _Trace(SyncAction.DELETE), side, tenant_id, contact_id, source,
            self._deleted_flow(side, tenant_id, contact_id, source),
        )

    # ── Event dispatch ─────────────────────────────────────────────────────

    async def handle_event(
        self,
        tenant_id: str,
        side: Side,
        event_type: EventType,
        contact_id: str,
        record: Mapping[str, Any] | None = None,
        source: SyncSource | None = None,
    ) -> SyncResult:
        """Route one change notification, dropping echoes of our own writes."""
        source = source or WEBHOOK_SOURCE[side]
        record = record or {}

        with bound_contextvars(tenant_id=tenant_id, side=side.value, contact_id=contact_id):
            return await self._dispatch(tenant_id, side, event_type, contact_id, record, source)

    async def _dispatch(
        self,
        tenant_id: str,
        side: Side,
        event_type: EventType,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource,
    ) -> SyncResult:
        if event_type == EventType.DELETED:
            return await self.on_contact_deleted(tenant_id, side, contact_id, source)

        operation_id = self._dedupe.extract_operation_id(record, side)
        if await self._dedupe.is_echo(operation_id):
            sync_echoes_suppressed_total.labels(side=side.value).inc()
            logger.debug(
                "sync.echo_suppressed",
                tenant_id=tenant_id,
                side=side.value,
                contact_id=contact_id,
                operation_id=operation_id,
            )
            return SyncResult(
                action=SyncAction.SKIP,
                source=source,
                skip_reason=SkipReason.ECHO,
                **_ids(side, contact_id, None),
            )

        if event_type == EventType.CREATED:
            handler = self.on_side_a_created if side is Side.A else self.on_side_b_created
        else:
            handler = self.on_side_a_updated if side is Side.A else self.on_side_b_updated
        return await handler(tenant_id, contact_id, record, source)

    async def handle_side_a_event(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any] | None,
        event_type: EventType,
    ) -> SyncResult:
        return await self.handle_event(tenant_id, Side.A, event_type, contact_id, record)

    async def handle_side_b_event(
        self,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any] | None,
        event_type: EventType,
    ) -> SyncResult:
        return await self.handle_event(tenant_id, Side.B, event_type, contact_id, record)

    async def handle_batch(self, tenant_id: str, events: Sequence[WebhookEvent]) -> BatchResult:
        """Process a webhook batch concurrently; one failure never stops the rest.

        All pipelines settle before outcomes are inspected. Failures are
        logged and counted, never raised.
        """
        outcomes = await asyncio.gather(
            *(
                self.handle_event(tenant_id, event.side, event.event_type, event.contact_id, event.record)
                for event in events
            ),
            return_exceptions=True,
        )

        batch = BatchResult()
        for event, outcome in zip(events, outcomes):
            if isinstance(outcome, BaseException):
                batch.failed += 1
                batch.errors.append(sanitize_message(str(outcome)))
                logger.error(
                    "sync.batch_event_failed",
                    tenant_id=tenant_id,
                    side=event.side.value,
                    event_type=event.event_type.value,
                    contact_id=event.contact_id,
                    error_type=type(outcome).__name__,
                )
            else:
                batch.succeeded += 1
                batch.results.append(outcome)

        logger.info(
            "sync.batch_complete",
            tenant_id=tenant_id,
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch

    def spawn_batch(self, tenant_id: str, events: Sequence[WebhookEvent]) -> asyncio.Task:
        """Process a batch in the background and return its task.

        The transport layer can acknowledge the delivery immediately; the
        task is tracked until done and any unexpected failure is logged.
        """
        task = asyncio.create_task(
            self.handle_batch(tenant_id, events),
            name=f"contact_sync_batch_{tenant_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.info("sync.batch_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "sync.batch_task_failed",
                task=task.get_name(),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for every background batch still running."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Reconciliation sweep ───────────────────────────────────────────────

    async def run_full_sync(self, tenant_id: str) -> FullSyncResult:
        """Reconcile every contact on both sides.

        Phase 1 walks Side A: mapped contacts go through side_a_updated,
        unmapped ones through side_a_created. Phase 2 walks Side B: contacts
        still unmapped go through side_b_created, mapped ones are skipped.
        """
        started = time.monotonic()
        result = FullSyncResult()
        logger.info("sync.full_sync_started", tenant_id=tenant_id)

        await self._sweep_side(tenant_id, Side.A, result)
        await self._sweep_side(tenant_id, Side.B, result)

        try:
            await self._sync_state.set_last_full_sync(tenant_id, datetime.now(timezone.utc))
        except Exception:
            logger.error("sync.full_sync_state_failed", tenant_id=tenant_id, exc_info=True)

        result.duration_ms = _elapsed_ms(started)
        logger.info("sync.full_sync_complete", tenant_id=tenant_id, **result.model_dump())
        return result

    async def _sweep_side(self, tenant_id: str, side: Side, result: FullSyncResult) -> None:
        provider = self._providers[side]
        cursor: str | None = None
        while True:
            try:
                page = await provider.list_page(tenant_id, cursor=cursor, limit=self._page_size)
            except Exception:
                logger.error(
                    "sync.full_sync_list_failed",
                    tenant_id=tenant_id,
                    side=side.value,
                    exc_info=True,
                )
                return

            for record in page.records:
                result.total += 1
                await self._sweep_record(tenant_id, side, record, result)

            if not page.next_cursor or not page.records:
                return
            cursor = page.next_cursor

    async def _sweep_record(
        self, tenant_id: str, side: Side, record: ContactRecord, result: FullSyncResult
    ) -> None:
        if not record.id:
            result.errors += 1
            logger.warning("sync.full_sync_missing_id", tenant_id=tenant_id, side=side.value)
            return

        try:
            mapping = await self._mappings.find(tenant_id, side, record.id)
            if side is Side.B and mapping is not None:
                result.skipped += 1
                return
            if side is Side.A:
                handler = self.on_side_a_updated if mapping else self.on_side_a_created
            else:
                handler = self.on_side_b_created
            outcome = await handler(tenant_id, record.id, record.data, SyncSource.FULL_SYNC)
        except Exception:
            result.errors += 1
            logger.error(
                "sync.full_sync_record_failed",
                tenant_id=tenant_id,
                side=side.value,
                contact_id=record.id,
                exc_info=True,
            )
            return

        if outcome.action == SyncAction.SKIP:
            result.skipped += 1
        else:
            result.synced += 1

    # ── Flows ──────────────────────────────────────────────────────────────

    async def _run(
        self,
        scenario: str,
        trace: _Trace,
        inbound: Side,
        tenant_id: str,
        contact_id: str,
        source: SyncSource,
        flow: Awaitable[SyncResult],
    ) -> SyncResult:
        """Await a scenario flow; on failure audit it and re-raise with context."""
        started = time.monotonic()
        try:
            return await flow
        except Exception as exc:
            logger.error(
                "sync.scenario_failed",
                scenario=scenario,
                tenant_id=tenant_id,
                contact_id=contact_id,
                error_type=type(exc).__name__,
                exc_info=True,
            )
            await self._audit(
                tenant_id,
                source,
                trace.action,
                SyncStatus.FAILED,
                scenario=scenario,
                started=started,
                error=sanitize_message(str(exc)),
                **_ids(inbound, contact_id, trace.target_id),
            )
            if isinstance(exc, ContactSyncError):
                exc.with_context(tenant_id=tenant_id, contact_id=contact_id, scenario=scenario)
                raise
            raise SyncScenarioError(
                f"{scenario} failed: {type(exc).__name__}",
                tenant_id=tenant_id,
                contact_id=contact_id,
                scenario=scenario,
            ) from exc

    async def _created_flow(
        self,
        inbound: Side,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource,
        trace: _Trace,
        fields: dict[str, str] | None = None,
        mapping_checked: bool = False,
    ) -> SyncResult:
        started = time.monotonic()
        scenario = f"{inbound.value}_created"
        target = inbound.other
        trace.action = SyncAction.CREATE

        if fields is None:
            fields = await self._field_mapping.map_record(tenant_id, record, inbound)
        payload_hash = compute_hash(fields)

        if not mapping_checked:
            mapping = await self._mappings.find(tenant_id, inbound, contact_id)
            if mapping is not None:
                logger.info(
                    "sync.created_already_mapped",
                    tenant_id=tenant_id,
                    side=inbound.value,
                    contact_id=contact_id,
                )
                return await self._updated_flow(
                    inbound, tenant_id, contact_id, record, source, trace, fields=fields, mapping=mapping
                )

        email = self._resolve_email(fields, record, inbound)
        existing = None
        if email:
            existing = await self._providers[target].find_by_identity(tenant_id, email)
        existing_id = existing.id if existing and existing.id else None
        if existing_id:
            trace.action, trace.target_id = SyncAction.UPDATE, existing_id

        target_id, operation_id, tag_pending = await self._write_to_target(
            inbound, tenant_id, existing_id, fields
        )
        trace.target_id = target_id
        await self._persist(inbound, tenant_id, contact_id, target_id, operation_id, payload_hash)
        if tag_pending:
            await self._write_tag(tenant_id, target, target_id, operation_id)

        action = SyncAction.UPDATE if existing_id else SyncAction.CREATE
        await self._audit(
            tenant_id,
            source,
            action,
            SyncStatus.SUCCESS,
            scenario=scenario,
            started=started,
            details={"matched_existing": bool(existing_id), "operation_id": operation_id},
            **_ids(inbound, contact_id, target_id),
        )
        logger.info(
            "sync.contact_written",
            scenario=scenario,
            tenant_id=tenant_id,
            action=action.value,
            **_ids(inbound, contact_id, target_id),
        )
        return SyncResult(action=action, source=source, **_ids(inbound, contact_id, target_id))

    async def _updated_flow(
        self,
        inbound: Side,
        tenant_id: str,
        contact_id: str,
        record: Mapping[str, Any],
        source: SyncSource,
        trace: _Trace,
        fields: dict[str, str] | None = None,
        mapping: ContactMapping | None = None,
    ) -> SyncResult:
        started = time.monotonic()
        scenario = f"{inbound.value}_updated"
        target = inbound.other
        trace.action = SyncAction.UPDATE

        if fields is None:
            fields = await self._field_mapping.map_record(tenant_id, record, inbound)
        payload_hash = compute_hash(fields)

        if mapping is None:
            mapping = await self._mappings.find(tenant_id, inbound, contact_id)
        if mapping is None:
            return await self._created_flow(
                inbound, tenant_id, contact_id, record, source, trace, fields=fields, mapping_checked=True
            )

        target_id = mapping.contact_id(target)
        trace.target_id = target_id
        ids = _ids(inbound, contact_id, target_id)

        if await self._idempotency.should_skip_write(tenant_id, target_id, target, payload_hash):
            await self._audit(
                tenant_id,
                source,
                SyncAction.SKIP,
                SyncStatus.SKIPPED,
                scenario=scenario,
                started=started,
                details={"reason": SkipReason.UNCHANGED.value},
                **ids,
            )
            logger.debug(
                "sync.unchanged_skipped",
                scenario=scenario,
                tenant_id=tenant_id,
                **ids,
            )
            return SyncResult(
                action=SyncAction.SKIP, source=source, skip_reason=SkipReason.UNCHANGED, **ids
            )

        current = await self._providers[target].get_by_id(tenant_id, target_id)
        if current is not None:
            timestamps = {
                inbound: extract_modified_at(record, inbound),
                target: current.updated_at,
            }
            decision = resolve_conflict(
                timestamps[Side.A], timestamps[Side.B], inbound, self._tie_break
            )
            if decision.winner is target:
                await self._audit(
                    tenant_id,
                    source,
                    SyncAction.SKIP,
                    SyncStatus.SKIPPED,
                    scenario=scenario,
                    started=started,
                    conflict_winner=target,
                    details={"reason": decision.reason},
                    **ids,
                )
                logger.info(
                    "sync.conflict_lost",
                    scenario=scenario,
                    tenant_id=tenant_id,
                    reason=decision.reason,
                    **ids,
                )
                return SyncResult(
                    action=SyncAction.SKIP, source=source, skip_reason=SkipReason.CONFLICT, **ids
                )

        target_id, operation_id, tag_pending = await self._write_to_target(
            inbound, tenant_id, target_id, fields
        )
        trace.target_id = target_id
        await self._persist(inbound, tenant_id, contact_id, target_id, operation_id, payload_hash)
        if tag_pending:
            await self._write_tag(tenant_id, target, target_id, operation_id)

        ids = _ids(inbound, contact_id, target_id)
        await self._audit(
            tenant_id,
            source,
            SyncAction.UPDATE,
            SyncStatus.SUCCESS,
            scenario=scenario,
            started=started,
            details={"operation_id": operation_id},
            **ids,
        )
        logger.info(
            "sync.contact_written",
            scenario=scenario,
            tenant_id=tenant_id,
            action=SyncAction.UPDATE.value,
            **ids,
        )
        return SyncResult(action=SyncAction.UPDATE, source=source, **ids)

    async def _deleted_flow(
        self, side: Side, tenant_id: str, contact_id: str, source: SyncSource
    ) -> SyncResult:
        started = time.monotonic()
        if side is Side.A:
            removed = await self._mappings.delete(tenant_id, side_a_contact_id=contact_id)
        else:
            removed = await self._mappings.delete(tenant_id, side_b_contact_id=contact_id)

        if removed is not None:
            await self._idempotency.clear_hashes(tenant_id, removed.side_a_contact_id)
            await self._idempotency.clear_hashes(tenant_id, removed.side_b_contact_id)
            ids = {"side_a_id": removed.side_a_contact_id, "side_b_id": removed.side_b_contact_id}
        else:
            await self._idempotency.clear_hashes(tenant_id, contact_id)
            ids = _ids(side, contact_id, None)

        await self._audit(
            tenant_id,
            source,
            SyncAction.DELETE,
            SyncStatus.SUCCESS,
            scenario=f"{side.value}_deleted",
            started=started,
            details={"mapping_removed": removed is not None},
            **ids,
        )
        return SyncResult(action=SyncAction.DELETE, source=source, **ids)

    # ── Helpers ────────────────────────────────────────────────────────────

    async def _write_to_target(
        self,
        inbound: Side,
        tenant_id: str,
        target_id: str | None,
        fields: dict[str, str],
    ) -> tuple[str, str, bool]:
        """Create or update the target contact.

        Returns:
            (target contact id, operation id, whether the tag still has to be
            written on the target record).
        """
        target = inbound.other
        provider = self._providers[target]

        if target is Side.A:
            operation_id = await self._dedupe.register_operation(tenant_id, target, target_id or "")
            if target_id:
                written = await provider.update(tenant_id, target_id, fields, sync_tag=operation_id)
            else:
                written = await provider.create(tenant_id, fields, sync_tag=operation_id)
            written_id = written.id or target_id
            tag_pending = False
        else:
            if target_id:
                written = await provider.update(tenant_id, target_id, fields)
            else:
                written = await provider.create(tenant_id, fields)
            written_id = written.id or target_id
            operation_id = ""
            tag_pending = True

        if not written_id:
            raise SyncScenarioError(f"{target.value} write returned no contact id", tenant_id=tenant_id)

        if tag_pending:
            operation_id = await self._dedupe.register_operation(tenant_id, target, written_id)
        return written_id, operation_id, tag_pending

    async def _write_tag(
        self, tenant_id: str, side: Side, contact_id: str, operation_id: str
    ) -> None:
        """Stamp the operation id on a contact we just wrote. Failures only warn."""
        try:
            await self._providers[side].write_sync_tag(tenant_id, contact_id, operation_id)
        except Exception:
            logger.warning(
                "sync.tag_write_failed",
                tenant_id=tenant_id,
                side=side.value,
                contact_id=contact_id,
                exc_info=True,
            )

    async def _persist(
        self,
        inbound: Side,
        tenant_id: str,
        inbound_id: str,
        target_id: str,
        operation_id: str,
        payload_hash: str,
    ) -> None:
        side_a_id, side_b_id = (inbound_id, target_id) if inbound is Side.A else (target_id, inbound_id)
        await self._mappings.upsert(
            ContactMapping(
                tenant_id=tenant_id,
                side_a_contact_id=side_a_id,
                side_b_contact_id=side_b_id,
                last_synced_at=datetime.now(timezone.utc),
                last_sync_source=inbound,
                sync_operation_id=operation_id,
                property_hash=payload_hash,
            )
        )
        await self._idempotency.update_hash(tenant_id, target_id, inbound.other, payload_hash)

    @staticmethod
    def _resolve_email(
        fields: Mapping[str, str], record: Mapping[str, Any], inbound: Side
    ) -> str | None:
        """Identity email: the mapped target field first, then the raw inbound record."""
        email = fields.get(EMAIL_FIELD[inbound.other]) or flatten(record, inbound).get(EMAIL_FIELD[inbound])
        email = (email or "").strip().lower()
        return email or None

    async def _audit(
        self,
        tenant_id: str,
        source: SyncSource,
        action: SyncAction,
        status: SyncStatus,
        *,
        scenario: str,
        started: float,
        side_a_id: str | None = None,
        side_b_id: str | None = None,
        error: str | None = None,
        conflict_winner: Side | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append an audit event and record metrics. Never raises."""
        duration_ms = _elapsed_ms(started)
        record_sync_outcome(scenario, action.value, status.value, duration_ms)
        event = SyncEventRecord(
            tenant_id=tenant_id,
            source=source,
            action=action,
            status=status,
            side_a_contact_id=side_a_id,
            side_b_contact_id=side_b_id,
            error=error,
            conflict_winner=conflict_winner,
            duration_ms=duration_ms,
            details={"scenario": scenario, **(details or {})},
        )
        try:
            await self._audit_log.append(event)
        except Exception:
            logger.error(
                "sync.audit_write_failed",
                tenant_id=tenant_id,
                scenario=scenario,
                exc_info=True,
            )
