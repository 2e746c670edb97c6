"""Tests for RetryExecutor classification and backoff over httpx.MockTransport.

Covers:
- 429 honours Retry-After, falling back to the configured default
- 5xx and network errors back off exponentially
- A single 401 forces one credential refresh; a second 401 is final
- Other 4xx fail immediately
- Exhausted retries surface as TransientExternalError
- A fresh client (and token) per attempt
"""

from __future__ import annotations

import httpx
import pytest

from src.contact_sync.errors import PermanentExternalError, TransientExternalError
from src.contact_sync.providers.base import TokenProvider
from src.contact_sync.providers.rest import HttpClientFactory
from src.contact_sync.sync.retry import RetryExecutor, is_transient, retry_after_seconds


class RecordingTokenProvider(TokenProvider):
    """Hands out a new token on every forced refresh and records each call."""

    def __init__(self) -> None:
        self.calls: list[bool] = []
        self._version = 1

    async def get_access_token(self, tenant_id: str, force_refresh: bool = False) -> str:
        self.calls.append(force_refresh)
        if force_refresh:
            self._version += 1
        return f"token-v{self._version}"


class ScriptedApi:
    """MockTransport handler replaying scripted responses in order."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


async def _get_contact(client: httpx.AsyncClient) -> dict:
    response = await client.get("/contacts/c-1")
    response.raise_for_status()
    return response.json()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def tokens() -> RecordingTokenProvider:
    return RecordingTokenProvider()


def _executor(api: ScriptedApi, tokens: TokenProvider, sleeps: list[float], **kwargs) -> RetryExecutor:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    factory = HttpClientFactory(
        "https://api.test", tokens, transport=httpx.MockTransport(api)
    )
    return RetryExecutor(factory, sleep=fake_sleep, service="side_b", **kwargs)


class TestRetryExecutor:
    """End-to-end retry behaviour against a scripted API."""

    async def test_success_first_try(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(200, json={"id": "c-1"}))

        result = await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert result == {"id": "c-1"}
        assert sleeps == []
        assert api.requests[0].headers["Authorization"] == "Bearer token-v1"

    async def test_rate_limit_honours_retry_after(self, tokens, sleeps) -> None:
        api = ScriptedApi(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json={"id": "c-1"}),
        )

        await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert sleeps == [3.0]
        assert len(api.requests) == 2

    async def test_rate_limit_without_header_uses_default(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(429), httpx.Response(200, json={}))

        await _executor(api, tokens, sleeps, rate_limit_default_seconds=10.0).with_retry(
            "t1", _get_contact
        )

        assert sleeps == [10.0]

    async def test_server_errors_back_off_exponentially(self, tokens, sleeps) -> None:
        api = ScriptedApi(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"ok": True}),
        )

        result = await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert result == {"ok": True}
        assert sleeps == [1.0, 2.0]

    async def test_empty_result_after_retry_is_returned(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(503), httpx.Response(404))

        async def _find(client: httpx.AsyncClient) -> dict | None:
            response = await client.get("/contacts/c-1")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

        result = await _executor(api, tokens, sleeps).with_retry("t1", _find)

        assert result is None
        assert len(api.requests) == 2

    async def test_exhausted_retries_raise_transient(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(500))

        with pytest.raises(TransientExternalError) as exc_info:
            await _executor(api, tokens, sleeps, max_attempts=4).with_retry("t1", _get_contact)

        assert len(api.requests) == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert exc_info.value.status_code == 500
        assert exc_info.value.tenant_id == "t1"
        assert "side_b API returned 500" in str(exc_info.value)

    async def test_network_error_is_retried(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.ConnectError("connection refused"), httpx.Response(200, json={}))

        await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert len(api.requests) == 2
        assert sleeps == [1.0]

    async def test_single_401_refreshes_credentials(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(401), httpx.Response(200, json={"id": "c-1"}))

        await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert tokens.calls == [False, True]
        assert api.requests[1].headers["Authorization"] == "Bearer token-v2"
        assert sleeps == [0.0]

    async def test_second_401_is_permanent(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(401))

        with pytest.raises(PermanentExternalError) as exc_info:
            await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert exc_info.value.status_code == 401
        assert len(api.requests) == 2

    async def test_other_client_errors_fail_immediately(self, tokens, sleeps) -> None:
        api = ScriptedApi(httpx.Response(422, json={"message": "bad email"}))

        with pytest.raises(PermanentExternalError) as exc_info:
            await _executor(api, tokens, sleeps).with_retry("t1", _get_contact)

        assert exc_info.value.status_code == 422
        assert len(api.requests) == 1
        assert sleeps == []


class TestClassification:
    """Helpers deciding what is worth retrying."""

    def _status_error(self, status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
        request = httpx.Request("GET", "https://api.test/contacts")
        response = httpx.Response(status, headers=headers, request=request)
        return httpx.HTTPStatusError("error", request=request, response=response)

    def test_is_transient(self) -> None:
        assert is_transient(self._status_error(429))
        assert is_transient(self._status_error(500))
        assert is_transient(httpx.ReadTimeout("slow"))
        assert not is_transient(self._status_error(404))
        assert not is_transient(ValueError("nope"))

    def test_retry_after_parsing(self) -> None:
        assert retry_after_seconds(self._status_error(429, {"Retry-After": "7"}), 10.0) == 7.0
        assert retry_after_seconds(self._status_error(429, {"Retry-After": "soon"}), 10.0) == 10.0
        assert retry_after_seconds(self._status_error(429), 10.0) == 10.0
        assert retry_after_seconds(None, 5.0) == 5.0
