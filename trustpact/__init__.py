"""
TrustPact - trust request lifecycle and live synchronization.

This package implements the core of a trust-request exchange:
- TrustRequest records with a pending/accepted/declined/revoked status
  and a bounded validity window
- RequestRepository for creating, reading and updating requests
- RequestSynchronizer for live "sent" and "received" views built on
  document-store change streams
- Pluggable document stores (in-memory, SQLite)

Example:
    >>> from trustpact import InMemoryDocumentStore, RequestRepository
    >>>
    >>> store = InMemoryDocumentStore()
    >>> await store.connect()
    >>> repo = RequestRepository(store)
    >>> request = await repo.create("alice", "bob")
    >>> await repo.accept(request.request_id)

Invariants:
    - The document store is the single source of truth
    - Every operation takes the acting identity explicitly
    - Expiry is derived from the clock, never persisted
    - Concurrent status writes resolve last-write-wins

Version: see _version.py.
"""

from ._version import __version__
from .config import Settings, StoreBackend
from .errors import (
    AccessDeniedError,
    DecodeError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    TrustPactError,
    UnauthenticatedError,
    ValidationError,
)
from .identity import IdentityProvider, SessionIdentity, require_identity
from .models import RequestStatus, TrustRequest
from .repository import RequestRepository
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqliteDocumentStore,
    create_document_store,
)
from .sync import FilterKind, RequestSynchronizer, Subscription

__all__ = [
    # Version
    "__version__",
    # Model
    "RequestStatus",
    "TrustRequest",
    # Core
    "RequestRepository",
    "RequestSynchronizer",
    "Subscription",
    "FilterKind",
    # Identity
    "IdentityProvider",
    "SessionIdentity",
    "require_identity",
    # Store
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
    "create_document_store",
    # Config
    "Settings",
    "StoreBackend",
    # Errors
    "TrustPactError",
    "AccessDeniedError",
    "UnauthenticatedError",
    "NotFoundError",
    "DecodeError",
    "StoreError",
    "InvalidTransitionError",
    "ValidationError",
]
