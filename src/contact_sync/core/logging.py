"""structlog configuration for the sync service.

JSON lines in production, console output everywhere else. Context bound
through ``structlog.contextvars`` (tenant, side, contact id) is merged
into every event. Values under contact-detail keys are masked before
rendering, so names, emails and phone numbers never reach the log.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from src.contact_sync.config import Environment, get_settings

# Event keys whose values are contact details.
REDACTED_KEYS = frozenset({
    "email",
    "phone",
    "first_name",
    "last_name",
    "firstname",
    "lastname",
    "fields",
    "record",
})


def redact_contact_details(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking contact-detail values."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_structlog() -> None:
    """Configure stdlib logging and the structlog processor chain."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_contact_details,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
