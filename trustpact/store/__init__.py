"""
Document store abstraction for TrustPact.

This module provides a pluggable store interface supporting:
- SQLite (single-file persistence)
- In-memory (for testing)

The store is the single source of truth for trust requests. Everything
held in memory elsewhere is a disposable copy of its last snapshot.

Invariants:
    - put() is an idempotent upsert
    - update() changes only the named fields
    - Change streams deliver full result sets, not deltas
    - Concurrent writes to one document resolve last-write-wins
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    ChangeFeed,
    DocumentFilter,
    DocumentStore,
    SubscriptionHandle,
)
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

if TYPE_CHECKING:
    from ..config import Settings


def create_document_store(settings: "Settings") -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        settings: TrustPact settings

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend

    if settings.store_backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    elif settings.store_backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(settings.data_dir, wal_mode=settings.sqlite_wal_mode)
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")


__all__ = [
    # Protocol and types
    "DocumentStore",
    "DocumentFilter",
    "SubscriptionHandle",
    "ChangeFeed",
    # Factory
    "create_document_store",
    # Implementations
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
]
