"""Service factory and lifespan for the contact sync core.

The transport layer (webhook routes, admin API) lives outside this
package; it enters ``lifespan()`` once per process and calls the
orchestrator on the yielded SyncService.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from src.contact_sync.config import DedupeBackend, Settings, get_settings
from src.contact_sync.core.cache import TTLCache
from src.contact_sync.core.database import close_db, get_session, init_db
from src.contact_sync.core.logging import configure_structlog
from src.contact_sync.providers.base import StaticTokenProvider, TokenProvider
from src.contact_sync.providers.rest import (
    HttpClientFactory,
    SideAContactProvider,
    SideBContactProvider,
)
from src.contact_sync.schemas import TieBreak
from src.contact_sync.stores.base import DedupeStore
from src.contact_sync.stores.redis import RedisDedupeStore, close_redis_client, get_redis_client
from src.contact_sync.stores.sql import (
    SessionFactory,
    SqlAuditLog,
    SqlDedupeStore,
    SqlHashStore,
    SqlMappingStore,
    SqlRuleStore,
    SqlSyncStateStore,
)
from src.contact_sync.sync.dedupe import DedupeGuard
from src.contact_sync.sync.field_mapping import FieldMappingEngine
from src.contact_sync.sync.idempotency import IdempotencyChecker
from src.contact_sync.sync.orchestrator import SyncOrchestrator
from src.contact_sync.sync.retry import RetryExecutor
from src.contact_sync.sync.scheduler import MaintenanceScheduler, build_maintenance_tasks

logger = structlog.get_logger(__name__)


@dataclass
class SyncService:
    """Everything the transport layer needs, wired together."""

    orchestrator: SyncOrchestrator
    field_mapping: FieldMappingEngine
    dedupe: DedupeGuard
    audit: SqlAuditLog
    scheduler: MaintenanceScheduler


def build_sync_service(
    settings: Settings | None = None,
    session_factory: SessionFactory = get_session,
    dedupe_store: DedupeStore | None = None,
    side_a_tokens: TokenProvider | None = None,
    side_b_tokens: TokenProvider | None = None,
    side_a_transport: httpx.AsyncBaseTransport | None = None,
    side_b_transport: httpx.AsyncBaseTransport | None = None,
) -> SyncService:
    """Wire stores, providers and services from settings.

    Token providers default to the static tokens in settings; multi-tenant
    deployments pass their own OAuth-backed TokenProvider.
    """
    settings = settings or get_settings()

    if dedupe_store is None:
        if settings.DEDUPE_BACKEND == DedupeBackend.redis:
            dedupe_store = RedisDedupeStore(get_redis_client(settings.REDIS_URL))
        else:
            dedupe_store = SqlDedupeStore(session_factory)

    def _executor(base_url: str, tokens: TokenProvider, transport, service: str) -> RetryExecutor:
        return RetryExecutor(
            HttpClientFactory(base_url, tokens, settings.HTTP_TIMEOUT_SECONDS, transport=transport),
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            backoff_base_seconds=settings.RETRY_BACKOFF_BASE_SECONDS,
            rate_limit_default_seconds=settings.RETRY_RATE_LIMIT_DEFAULT_SECONDS,
            service=service,
        )

    side_a = SideAContactProvider(_executor(
        settings.SIDE_A_API_BASE_URL,
        side_a_tokens or StaticTokenProvider(settings.SIDE_A_API_TOKEN),
        side_a_transport,
        "side_a",
    ))
    side_b = SideBContactProvider(_executor(
        settings.SIDE_B_API_BASE_URL,
        side_b_tokens or StaticTokenProvider(settings.SIDE_B_API_TOKEN),
        side_b_transport,
        "side_b",
    ))

    field_mapping = FieldMappingEngine(
        SqlRuleStore(session_factory),
        TTLCache(max_size=settings.RULES_CACHE_MAX_SIZE, ttl_seconds=settings.RULES_CACHE_TTL_SECONDS),
    )
    dedupe = DedupeGuard(
        dedupe_store,
        TTLCache(max_size=settings.DEDUPE_CACHE_MAX_SIZE, ttl_seconds=settings.SYNC_OPERATION_TTL_SECONDS),
        ttl_seconds=settings.SYNC_OPERATION_TTL_SECONDS,
    )
    audit = SqlAuditLog(session_factory)

    orchestrator = SyncOrchestrator(
        side_a=side_a,
        side_b=side_b,
        mappings=SqlMappingStore(session_factory),
        field_mapping=field_mapping,
        dedupe=dedupe,
        idempotency=IdempotencyChecker(SqlHashStore(session_factory)),
        audit=audit,
        sync_state=SqlSyncStateStore(session_factory),
        tie_break=TieBreak(settings.CONFLICT_TIE_BREAK),
        page_size=settings.FULL_SYNC_PAGE_SIZE,
    )

    scheduler = MaintenanceScheduler(
        build_maintenance_tasks(dedupe, audit, retention_days=settings.SYNC_EVENT_RETENTION_DAYS),
        intervals={"purge_expired_operations": settings.DEDUPE_CLEANUP_INTERVAL_SECONDS},
    )

    return SyncService(
        orchestrator=orchestrator,
        field_mapping=field_mapping,
        dedupe=dedupe,
        audit=audit,
        scheduler=scheduler,
    )


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    start_scheduler: bool = True,
) -> AsyncGenerator[SyncService, None]:
    """Initialize storage and background loops; tear them down on exit."""
    settings = settings or get_settings()
    configure_structlog()
    await init_db()

    service = build_sync_service(settings)
    if start_scheduler:
        service.scheduler.start()
    logger.info("contact_sync.started", environment=settings.ENVIRONMENT.value)

    try:
        yield service
    finally:
        await service.scheduler.stop()
        await service.orchestrator.drain()
        await close_db()
        if settings.DEDUPE_BACKEND == DedupeBackend.redis:
            await close_redis_client()
        logger.info("contact_sync.stopped")
