"""Redis-backed operation id store for echo suppression.

Key pattern: sync:op:{operation_id}

Redis enforces the expiry itself, so purge_expired has nothing to delete.
Selected with DEDUPE_BACKEND=redis when several processes share one
Redis instance and the database should not carry short-lived rows.
"""

from __future__ import annotations

import json
import math
from datetime import datetime

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.contact_sync.errors import StoreError
from src.contact_sync.schemas import Side
from src.contact_sync.stores.base import DedupeStore

logger = structlog.get_logger(__name__)

_client: aioredis.Redis | None = None


def get_redis_client(url: str) -> aioredis.Redis:
    """Shared client for the Redis dedupe backend, created on first use."""
    global _client
    if _client is None:
        _client = aioredis.from_url(url, decode_responses=True)
    return _client


async def close_redis_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


class RedisDedupeStore(DedupeStore):
    """Operation ids as expiring Redis keys.

    Args:
        redis: Raw async Redis client.
        key_prefix: Prefix for every key written by this store.
    """

    def __init__(self, redis: aioredis.Redis, key_prefix: str = "sync:op") -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    def _key(self, operation_id: str) -> str:
        return f"{self._key_prefix}:{operation_id}"

    async def put(
        self,
        operation_id: str,
        tenant_id: str,
        side: Side,
        contact_id: str,
        expires_at: datetime,
    ) -> None:
        ttl_seconds = math.ceil((expires_at - datetime.now(expires_at.tzinfo)).total_seconds())
        if ttl_seconds <= 0:
            return
        payload = json.dumps({"tenant_id": tenant_id, "side": side.value, "contact_id": contact_id})
        try:
            await self._redis.set(self._key(operation_id), payload, ex=ttl_seconds)
        except RedisError as exc:
            logger.error("store.operation_failed", operation="dedupe.put", backend="redis", error_type=type(exc).__name__)
            raise StoreError(f"dedupe.put failed: {type(exc).__name__}", tenant_id=tenant_id) from exc

    async def exists(self, operation_id: str, now: datetime) -> bool:
        try:
            return bool(await self._redis.exists(self._key(operation_id)))
        except RedisError as exc:
            logger.error("store.operation_failed", operation="dedupe.exists", backend="redis", error_type=type(exc).__name__)
            raise StoreError(f"dedupe.exists failed: {type(exc).__name__}") from exc

    async def purge_expired(self, now: datetime) -> int:
        return 0
