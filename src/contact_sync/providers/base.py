"""Contact provider abstract base classes.

Every external system (Side A, Side B) implements ContactProvider. The
SyncOrchestrator only talks to these interfaces, so providers can be
swapped for in-memory doubles in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.contact_sync.schemas import ContactPage, ContactRecord, Side


class ContactProvider(ABC):
    """Abstract interface for one side's contact API.

    ``fields`` arguments are always in this side's flat field vocabulary
    (the output of the field mapping engine). ``sync_tag`` is the operation
    id to embed in the written record, or None.

    Methods:
        get_by_id: Fetch a contact, None when it does not exist.
        find_by_identity: Find a contact by email address.
        create: Create a contact, return the new record.
        update: Update a contact's fields, return the updated record.
        write_sync_tag: Stamp an operation id on an existing contact.
        list_page: Page through all contacts.
    """

    side: Side

    @abstractmethod
    async def get_by_id(self, tenant_id: str, contact_id: str) -> ContactRecord | None:
        ...

    @abstractmethod
    async def find_by_identity(self, tenant_id: str, email: str) -> ContactRecord | None:
        ...

    @abstractmethod
    async def create(
        self, tenant_id: str, fields: dict[str, Any], sync_tag: str | None = None
    ) -> ContactRecord:
        ...

    @abstractmethod
    async def update(
        self,
        tenant_id: str,
        contact_id: str,
        fields: dict[str, Any],
        sync_tag: str | None = None,
    ) -> ContactRecord:
        ...

    @abstractmethod
    async def write_sync_tag(self, tenant_id: str, contact_id: str, sync_tag: str) -> None:
        ...

    @abstractmethod
    async def list_page(
        self, tenant_id: str, cursor: str | None = None, limit: int = 100
    ) -> ContactPage:
        ...


class TokenProvider(ABC):
    """Supplies access tokens per tenant. OAuth flows live outside this package."""

    @abstractmethod
    async def get_access_token(self, tenant_id: str, force_refresh: bool = False) -> str:
        ...


class StaticTokenProvider(TokenProvider):
    """Single configured token for every tenant (development and single-tenant installs)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_access_token(self, tenant_id: str, force_refresh: bool = False) -> str:
        return self._token
