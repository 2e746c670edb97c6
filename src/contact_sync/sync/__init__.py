"""Sync core -- mapping, echo suppression, idempotency, conflicts and orchestration.

Provides:
- FieldMappingEngine: Rule loading/caching, record flattening and mapping
- RetryExecutor: External API calls with rate-limit, backoff and auth-refresh handling
- DedupeGuard: Operation-id registry for echo suppression
- IdempotencyChecker: Payload hash comparison to skip redundant writes
- resolve_conflict: Last-writer-wins decision between the two sides
- SyncOrchestrator: The four sync scenarios, webhook dispatch and full sweep
- MaintenanceScheduler: Background purge loops
"""

from src.contact_sync.sync.conflict import parse_timestamp, resolve_conflict
from src.contact_sync.sync.dedupe import DedupeGuard
from src.contact_sync.sync.field_mapping import (
    DEFAULT_RULES,
    PROTECTED_DEFAULT_RULES,
    FieldMappingEngine,
    apply_transform,
    flatten,
    map_to_target,
    validate_rules,
)
from src.contact_sync.sync.idempotency import IdempotencyChecker, compute_hash
from src.contact_sync.sync.retry import RetryExecutor
from src.contact_sync.sync.orchestrator import SyncOrchestrator
from src.contact_sync.sync.scheduler import MaintenanceScheduler, build_maintenance_tasks

__all__ = [
    "DEFAULT_RULES",
    "PROTECTED_DEFAULT_RULES",
    "DedupeGuard",
    "FieldMappingEngine",
    "IdempotencyChecker",
    "MaintenanceScheduler",
    "RetryExecutor",
    "SyncOrchestrator",
    "apply_transform",
    "build_maintenance_tasks",
    "compute_hash",
    "flatten",
    "map_to_target",
    "parse_timestamp",
    "resolve_conflict",
    "validate_rules",
]
