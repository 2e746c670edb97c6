"""Shared fixtures for the contact sync tests.

Wires a SyncOrchestrator over the in-memory doubles in tests/doubles.py,
with the default field mapping rules seeded for the test tenant, plus a
session factory over a temporary SQLite database for the SQL stores.
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import src.contact_sync.models  # noqa: F401  (registers tables)
from src.contact_sync.core.cache import TTLCache
from src.contact_sync.core.database import Base
from src.contact_sync.schemas import Side
from src.contact_sync.sync.dedupe import DedupeGuard
from src.contact_sync.sync.field_mapping import DEFAULT_RULES, FieldMappingEngine
from src.contact_sync.sync.idempotency import IdempotencyChecker
from src.contact_sync.sync.orchestrator import SyncOrchestrator
from tests.doubles import (
    TENANT,
    InMemoryAuditLog,
    InMemoryContactProvider,
    InMemoryDedupeStore,
    InMemoryHashStore,
    InMemoryMappingStore,
    InMemoryRuleStore,
    InMemorySyncStateStore,
)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def tenant_id() -> str:
    return TENANT


@pytest.fixture
def side_a() -> InMemoryContactProvider:
    return InMemoryContactProvider(Side.A)


@pytest.fixture
def side_b() -> InMemoryContactProvider:
    return InMemoryContactProvider(Side.B)


@pytest.fixture
def mapping_store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def hash_store() -> InMemoryHashStore:
    return InMemoryHashStore()


@pytest.fixture
def dedupe_store() -> InMemoryDedupeStore:
    return InMemoryDedupeStore()


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    store = InMemoryRuleStore()
    store.rules[TENANT] = list(DEFAULT_RULES)
    return store


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def sync_state() -> InMemorySyncStateStore:
    return InMemorySyncStateStore()


@pytest.fixture
def field_mapping(rule_store) -> FieldMappingEngine:
    return FieldMappingEngine(rule_store, TTLCache(max_size=10, ttl_seconds=30))


@pytest.fixture
def dedupe(dedupe_store) -> DedupeGuard:
    return DedupeGuard(dedupe_store, TTLCache(max_size=50, ttl_seconds=300), ttl_seconds=300)


@pytest.fixture
def idempotency(hash_store) -> IdempotencyChecker:
    return IdempotencyChecker(hash_store)


@pytest.fixture
def orchestrator(
    side_a,
    side_b,
    mapping_store,
    field_mapping,
    dedupe,
    idempotency,
    audit_log,
    sync_state,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        side_a=side_a,
        side_b=side_b,
        mappings=mapping_store,
        field_mapping=field_mapping,
        dedupe=dedupe,
        idempotency=idempotency,
        audit=audit_log,
        sync_state=sync_state,
    )


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a throwaway SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def _factory():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield _factory
    await engine.dispose()
