"""Retrying executor for external contact API calls.

Every attempt gets a freshly built httpx client, so a forced credential
refresh after a 401 takes effect on the next attempt. Classification:

- 429: wait Retry-After seconds (default 10) and retry
- 5xx, network errors, timeouts: exponential backoff and retry
- 401: one forced token refresh, retried immediately; a second 401 is final
- any other 4xx: fail immediately

Built on tenacity like the rest of the API clients; the wait and retry
predicates read the last outcome to pick the policy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from src.contact_sync.core.monitoring import external_retries_total
from src.contact_sync.errors import PermanentExternalError, TransientExternalError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ClientFactory(Protocol):
    async def __call__(self, tenant_id: str, force_refresh: bool = False) -> httpx.AsyncClient:
        ...


def _status_code(exc: BaseException | None) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_transient(exc: BaseException | None) -> bool:
    """Rate limits, server errors and transport failures are worth retrying."""
    if isinstance(exc, httpx.TransportError):
        return True
    status = _status_code(exc)
    return status is not None and (status == 429 or status >= 500)


def retry_after_seconds(exc: BaseException | None, default: float) -> float:
    """Seconds requested by a 429's Retry-After header, or ``default``."""
    if not isinstance(exc, httpx.HTTPStatusError):
        return default
    header = exc.response.headers.get("Retry-After")
    try:
        seconds = float(header) if header is not None else default
    except ValueError:
        return default
    return max(seconds, 0.0)


class _Attempt:
    """Per-call state shared by the retry predicate, wait and client factory."""

    def __init__(self) -> None:
        self.force_refresh = False
        self.refreshed = False


class RetryExecutor:
    """Runs an API operation with the retry policy above.

    Args:
        client_factory: Builds an authenticated client for a tenant.
        max_attempts: Total attempts including the first call.
        backoff_base_seconds: First exponential backoff delay.
        rate_limit_default_seconds: Wait for a 429 without Retry-After.
        sleep: Async sleep, injectable for tests.
        service: Name used in logs and error messages.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        max_attempts: int = 4,
        backoff_base_seconds: float = 1.0,
        rate_limit_default_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service: str = "external",
    ) -> None:
        self._client_factory = client_factory
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._rate_limit_default = rate_limit_default_seconds
        self._sleep = sleep
        self._service = service

    async def with_retry(
        self,
        tenant_id: str,
        operation: Callable[[httpx.AsyncClient], Awaitable[T]],
    ) -> T:
        """Run ``operation`` with a fresh client per attempt.

        Raises:
            TransientExternalError: A retryable failure outlasted the attempt cap.
            PermanentExternalError: A non-retryable failure (including a repeated 401).
        """
        state = _Attempt()

        def _should_retry(exc: BaseException) -> bool:
            if _status_code(exc) == 401:
                if state.refreshed:
                    return False
                state.refreshed = True
                state.force_refresh = True
                return True
            return is_transient(exc)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_should_retry),
            before_sleep=lambda retry_state: self._log_retry(tenant_id, retry_state),
            sleep=self._sleep,
            reraise=True,
        )

        async def _attempt() -> T:
            force_refresh, state.force_refresh = state.force_refresh, False
            async with await self._client_factory(tenant_id, force_refresh=force_refresh) as client:
                return await operation(client)

        try:
            return await retrying(_attempt)
        except (httpx.HTTPStatusError, httpx.TransportError) as exc:
            raise self._to_sync_error(tenant_id, exc) from exc

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        status = _status_code(exc)
        if status == 401:
            return 0.0
        if status == 429:
            return retry_after_seconds(exc, self._rate_limit_default)
        return self._backoff_base * (2 ** (retry_state.attempt_number - 1))

    def _log_retry(self, tenant_id: str, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        status = _status_code(exc)
        if status == 401:
            reason = "auth_refresh"
        elif status == 429:
            reason = "rate_limited"
        elif status is not None:
            reason = "server_error"
        else:
            reason = "network"
        external_retries_total.labels(reason=reason).inc()
        logger.warning(
            "retry.attempt_failed",
            service=self._service,
            tenant_id=tenant_id,
            attempt=retry_state.attempt_number,
            status_code=status,
            reason=reason,
            next_wait=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    def _to_sync_error(self, tenant_id: str, exc: Exception) -> Exception:
        status = _status_code(exc)
        if status is not None:
            message = f"{self._service} API returned {status}"
        else:
            message = f"{self._service} API unreachable: {type(exc).__name__}"
        error_cls = TransientExternalError if is_transient(exc) else PermanentExternalError
        return error_cls(message, status_code=status, tenant_id=tenant_id)
