"""
Persistence Layer.

Entities, the two backing stores and the façade that routes between them:

    ManagedDatabase   typed get / save / delete / flush per entity kind
        ├── DocumentStore   SQLAlchemy (async) JSON documents, selective updates
        └── KeyValueStore   Redis hashes, fire-and-forget writes, pattern scans

Entities record their own mutations (dirty fields); only the façade flushes
and clears them.
"""

from ledgerbot.db.base import DirtyFieldTracker, DocumentEntity, LegacyEntity, ManagedEntity
from ledgerbot.db.document_store import DocumentStore
from ledgerbot.db.errors import (
    BackendUnavailable,
    DeliveryFailure,
    InvariantViolation,
    LedgerError,
    UnknownEntityKind,
)
from ledgerbot.db.kv_store import KeyValueStore
from ledgerbot.db.managed import ManagedDatabase
from ledgerbot.db.registry import EntityKind, EntityRegistry

__all__ = [
    "BackendUnavailable",
    "DeliveryFailure",
    "DirtyFieldTracker",
    "DocumentEntity",
    "DocumentStore",
    "EntityKind",
    "EntityRegistry",
    "InvariantViolation",
    "KeyValueStore",
    "LedgerError",
    "LegacyEntity",
    "ManagedDatabase",
    "ManagedEntity",
]
