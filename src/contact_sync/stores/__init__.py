"""Persistence contracts and their SQLAlchemy / Redis implementations.

Every store is an ABC so the sync services can run against the SQL
implementations in production and in-memory doubles in tests.
"""

from src.contact_sync.stores.base import (
    AuditLog,
    DedupeStore,
    HashStore,
    MappingStore,
    RuleStore,
    SyncStateStore,
)

__all__ = [
    "AuditLog",
    "DedupeStore",
    "HashStore",
    "MappingStore",
    "RuleStore",
    "SyncStateStore",
]
