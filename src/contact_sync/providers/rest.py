"""REST contact providers for Side A and Side B over httpx.

Every call goes through RetryExecutor, which builds a fresh authenticated
client per attempt from HttpClientFactory. A 404 on a single-contact read
is "not found", never an error.

Side A speaks a nested contact document (``info.name.first``,
``info.emails.items[]``, extended fields for the sync tag). Side B speaks a
flat ``properties`` bag with a ``sync_tag`` property.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from src.contact_sync.providers.base import ContactProvider, TokenProvider
from src.contact_sync.schemas import ContactPage, ContactRecord, Side
from src.contact_sync.sync.conflict import extract_modified_at
from src.contact_sync.sync.dedupe import SIDE_A_SYNC_TAG_FIELD, SIDE_B_SYNC_TAG_PROPERTY
from src.contact_sync.sync.retry import RetryExecutor

logger = structlog.get_logger(__name__)


class HttpClientFactory:
    """Builds an authenticated httpx client for a tenant.

    Args:
        base_url: API root for one side.
        tokens: Token source; ``force_refresh`` is passed through after a 401.
        timeout: Per-request timeout in seconds.
        transport: Optional transport override (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        tokens: TokenProvider,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._tokens = tokens
        self._timeout = timeout
        self._transport = transport

    async def __call__(self, tenant_id: str, force_refresh: bool = False) -> httpx.AsyncClient:
        token = await self._tokens.get_access_token(tenant_id, force_refresh=force_refresh)
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )


class _RestContactProvider(ContactProvider):
    """Shared request plumbing; subclasses supply the wire shapes."""

    def __init__(self, executor: RetryExecutor) -> None:
        self._executor = executor

    # Wire shape hooks

    def _unwrap(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return payload

    def _to_record(self, data: Mapping[str, Any]) -> ContactRecord:
        contact_id = data.get("id") or data.get("_id") or ""
        return ContactRecord(
            id=str(contact_id),
            data=dict(data),
            updated_at=extract_modified_at(data, self.side),
        )

    @abstractmethod
    def _write_body(self, fields: Mapping[str, Any], sync_tag: str | None) -> dict[str, Any]:
        ...

    @abstractmethod
    def _search_body(self, email: str) -> dict[str, Any]:
        ...

    @abstractmethod
    def _search_results(self, payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        ...

    @abstractmethod
    def _page_params(self, cursor: str | None, limit: int) -> dict[str, Any]:
        ...

    @abstractmethod
    def _page(self, payload: Mapping[str, Any], cursor: str | None) -> ContactPage:
        ...

    search_path = "/contacts/search"

    # ContactProvider

    async def get_by_id(self, tenant_id: str, contact_id: str) -> ContactRecord | None:
        async def _get(client: httpx.AsyncClient) -> ContactRecord | None:
            response = await client.get(f"/contacts/{contact_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return self._to_record(self._unwrap(response.json()))

        return await self._executor.with_retry(tenant_id, _get)

    async def find_by_identity(self, tenant_id: str, email: str) -> ContactRecord | None:
        async def _search(client: httpx.AsyncClient) -> ContactRecord | None:
            response = await client.post(self.search_path, json=self._search_body(email))
            response.raise_for_status()
            results = self._search_results(response.json())
            return self._to_record(results[0]) if results else None

        return await self._executor.with_retry(tenant_id, _search)

    async def create(
        self, tenant_id: str, fields: dict[str, Any], sync_tag: str | None = None
    ) -> ContactRecord:
        async def _create(client: httpx.AsyncClient) -> ContactRecord:
            response = await client.post("/contacts", json=self._write_body(fields, sync_tag))
            response.raise_for_status()
            return self._to_record(self._unwrap(response.json()))

        record = await self._executor.with_retry(tenant_id, _create)
        logger.info("provider.contact_created", side=self.side.value, tenant_id=tenant_id, contact_id=record.id)
        return record

    async def update(
        self,
        tenant_id: str,
        contact_id: str,
        fields: dict[str, Any],
        sync_tag: str | None = None,
    ) -> ContactRecord:
        async def _update(client: httpx.AsyncClient) -> ContactRecord:
            response = await client.patch(
                f"/contacts/{contact_id}", json=self._write_body(fields, sync_tag)
            )
            response.raise_for_status()
            return self._to_record(self._unwrap(response.json()))

        record = await self._executor.with_retry(tenant_id, _update)
        logger.info("provider.contact_updated", side=self.side.value, tenant_id=tenant_id, contact_id=contact_id)
        return record

    async def write_sync_tag(self, tenant_id: str, contact_id: str, sync_tag: str) -> None:
        async def _tag(client: httpx.AsyncClient) -> None:
            response = await client.patch(f"/contacts/{contact_id}", json=self._write_body({}, sync_tag))
            response.raise_for_status()

        await self._executor.with_retry(tenant_id, _tag)

    async def list_page(
        self, tenant_id: str, cursor: str | None = None, limit: int = 100
    ) -> ContactPage:
        async def _list(client: httpx.AsyncClient) -> ContactPage:
            response = await client.get("/contacts", params=self._page_params(cursor, limit))
            response.raise_for_status()
            return self._page(response.json(), cursor)

        return await self._executor.with_retry(tenant_id, _list)


# ── Side A ──────────────────────────────────────────────────────────────────


def build_side_a_info(fields: Mapping[str, Any], sync_tag: str | None = None) -> dict[str, Any]:
    """Build a Side A ``info`` document from flat Side A fields.

    Only non-empty fields are included, so the document doubles as a
    partial update.
    """
    info: dict[str, Any] = {}

    name = {key: fields[field] for key, field in (("first", "first_name"), ("last", "last_name")) if fields.get(field)}
    if name:
        info["name"] = name
    if fields.get("primary_email"):
        info["emails"] = {"items": [{"email": fields["primary_email"], "primary": True}]}
    if fields.get("primary_phone"):
        info["phones"] = {"items": [{"phone": fields["primary_phone"], "primary": True}]}
    for key, field in (("company", "company"), ("jobTitle", "job_title"),
                       ("birthdate", "birthdate"), ("locale", "locale")):
        if fields.get(field):
            info[key] = fields[field]

    address = {
        key: fields[field]
        for key, field in (
            ("address", "street"),
            ("city", "city"),
            ("subdivision", "state"),
            ("postalCode", "postal_code"),
            ("country", "country"),
        )
        if fields.get(field)
    }
    if address:
        info["addresses"] = {"items": [address]}
    if fields.get("website"):
        info["urls"] = [{"url": fields["website"]}]
    if sync_tag:
        info["extendedFields"] = {"items": {SIDE_A_SYNC_TAG_FIELD: sync_tag}}
    return info


class SideAContactProvider(_RestContactProvider):
    """Side A: nested contact documents wrapped as ``{"contact": {...}}``."""

    side = Side.A
    search_path = "/contacts/query"

    def _unwrap(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        contact = payload.get("contact")
        return contact if isinstance(contact, Mapping) else payload

    def _write_body(self, fields: Mapping[str, Any], sync_tag: str | None) -> dict[str, Any]:
        return {"info": build_side_a_info(fields, sync_tag)}

    def _search_body(self, email: str) -> dict[str, Any]:
        return {
            "query": {
                "filter": {"info.emails.email": {"$eq": email}},
                "paging": {"limit": 1},
            }
        }

    def _search_results(self, payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        return list(payload.get("contacts") or [])

    def _page_params(self, cursor: str | None, limit: int) -> dict[str, Any]:
        return {"paging.limit": limit, "paging.offset": int(cursor or 0)}

    def _page(self, payload: Mapping[str, Any], cursor: str | None) -> ContactPage:
        contacts = payload.get("contacts") or []
        has_next = bool((payload.get("pagingMetadata") or {}).get("hasNext"))
        next_offset = int(cursor or 0) + len(contacts)
        return ContactPage(
            records=[self._to_record(contact) for contact in contacts],
            next_cursor=str(next_offset) if has_next and contacts else None,
        )


# ── Side B ──────────────────────────────────────────────────────────────────


class SideBContactProvider(_RestContactProvider):
    """Side B: flat ``properties`` bags, cursor paging via ``paging.next.after``."""

    side = Side.B

    def _write_body(self, fields: Mapping[str, Any], sync_tag: str | None) -> dict[str, Any]:
        properties = dict(fields)
        if sync_tag:
            properties[SIDE_B_SYNC_TAG_PROPERTY] = sync_tag
        return {"properties": properties}

    def _search_body(self, email: str) -> dict[str, Any]:
        return {
            "filterGroups": [
                {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
            ],
            "limit": 1,
        }

    def _search_results(self, payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        return list(payload.get("results") or [])

    def _page_params(self, cursor: str | None, limit: int) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit}
        if cursor:
            params["after"] = cursor
        return params

    def _page(self, payload: Mapping[str, Any], cursor: str | None) -> ContactPage:
        results = payload.get("results") or []
        after = ((payload.get("paging") or {}).get("next") or {}).get("after")
        return ContactPage(
            records=[self._to_record(result) for result in results],
            next_cursor=str(after) if after else None,
        )
