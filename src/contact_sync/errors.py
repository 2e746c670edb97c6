"""Exception taxonomy for the sync core.

Skips (echo, unchanged payload, lost conflict) are results, not errors.
Everything here represents a failure that propagates to the caller.
"""

from __future__ import annotations

import re


class ContactSyncError(Exception):
    """Base error carrying the tenant, contact and scenario it happened in."""

    def __init__(
        self,
        message: str,
        *,
        tenant_id: str | None = None,
        contact_id: str | None = None,
        scenario: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.contact_id = contact_id
        self.scenario = scenario

    def with_context(
        self,
        *,
        tenant_id: str | None = None,
        contact_id: str | None = None,
        scenario: str | None = None,
    ) -> ContactSyncError:
        """Fill in any context that is still missing and return self."""
        self.tenant_id = self.tenant_id or tenant_id
        self.contact_id = self.contact_id or contact_id
        self.scenario = self.scenario or scenario
        return self

    def __str__(self) -> str:
        context = ", ".join(
            f"{key}={value}"
            for key, value in (
                ("tenant", self.tenant_id),
                ("contact", self.contact_id),
                ("scenario", self.scenario),
            )
            if value
        )
        return f"{self.message} ({context})" if context else self.message


class ExternalServiceError(ContactSyncError):
    """A call to Side A or Side B failed."""

    def __init__(self, message: str, *, status_code: int | None = None, **context) -> None:
        super().__init__(message, **context)
        self.status_code = status_code


class TransientExternalError(ExternalServiceError):
    """Rate limits, 5xx and network failures that outlasted the retry budget."""


class PermanentExternalError(ExternalServiceError):
    """Non-retryable failures: 4xx (other than 429) or a repeated 401."""


class StoreError(ContactSyncError):
    """A persistence operation failed."""


class SyncScenarioError(ContactSyncError):
    """An unexpected failure inside a sync scenario."""


# ── Message sanitization ────────────────────────────────────────────────────

_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [token]"),
    (re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), "[token]"),
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[email]"),
    (re.compile(r"\b[A-Fa-f0-9]{32,}\b"), "[token]"),
    (re.compile(r"\b(?:pat|key|sk)-[A-Za-z0-9-]{16,}\b"), "[token]"),
    (re.compile(r"(?<![\w-])\+?\d(?:[\s().-]{0,2}\d){8,14}(?![\w-])"), "[phone]"),
]

_MAX_MESSAGE_LENGTH = 500


def sanitize_message(message: str | None) -> str:
    """Strip contact PII and credentials from text bound for the audit log."""
    if not message:
        return ""
    cleaned = message
    for pattern, replacement in _REDACTIONS:
        cleaned = pattern.sub(replacement, cleaned)
    if len(cleaned) > _MAX_MESSAGE_LENGTH:
        cleaned = cleaned[:_MAX_MESSAGE_LENGTH] + "..."
    return cleaned
