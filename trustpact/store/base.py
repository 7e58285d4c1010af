"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that all backends must
implement, plus the change feed used by backends to deliver snapshot
updates to subscribers.

Invariants:
    - Documents are JSON-compatible dicts keyed by (collection, doc_id)
    - put() is an idempotent upsert, update() touches only named fields
    - Subscribers always receive the complete matching set, never a delta
    - Deliveries run on the event loop that created the subscription
    - A cancelled subscription never receives another delivery

How to change safely:
    - Protocol changes require updating all implementations
    - Keep change feed delivery asynchronous (never inline in the writer)
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
ChangeCallback = Callable[[List[Document]], None]
ErrorCallback = Callable[[Exception], None]
SnapshotFn = Callable[["DocumentFilter"], List[Document]]


@dataclass(frozen=True)
class DocumentFilter:
    """Selects the documents a subscription or query is interested in.

    Either an equality filter on one field, a single document id, or
    (with neither set) the whole collection.

    Attributes:
        field: Field name for an equality filter
        value: Value the field must equal
        doc_id: Single document id
    """

    field: Optional[str] = None
    value: Any = None
    doc_id: Optional[str] = None

    def matches(self, doc_id: str, document: Optional[Document]) -> bool:
        """Whether a document (or None for absent) falls inside the filter."""
        if document is None:
            return False
        if self.doc_id is not None:
            return doc_id == self.doc_id
        if self.field is not None:
            return document.get(self.field) == self.value
        return True

    def __str__(self) -> str:
        if self.doc_id is not None:
            return f"doc_id={self.doc_id}"
        if self.field is not None:
            return f"{self.field}=={self.value}"
        return "*"


class SubscriptionHandle:
    """Handle for a live change-stream subscription.

    cancel() is idempotent and safe to call from inside the
    subscription's own callback.
    """

    def __init__(self, feed: ChangeFeed, subscription_id: int) -> None:
        self._feed = feed
        self._subscription_id = subscription_id
        self._cancelled = False

    @property
    def subscription_id(self) -> int:
        return self._subscription_id

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        """Stop deliveries for this subscription."""
        if self._cancelled:
            return
        self._cancelled = True
        self._feed.remove(self._subscription_id)

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"SubscriptionHandle(id={self._subscription_id}, {state})"


@dataclass
class _Listener:
    collection: str
    filter: DocumentFilter
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback]
    loop: asyncio.AbstractEventLoop


class ChangeFeed:
    """Process-local fan-out of snapshot changes to subscribers.

    Backends call publish() after each committed write with the document
    before and after the write. Every subscription whose filter matched
    either version receives the complete current matching set, computed
    by the backend's snapshot function.

    Thread safety:
        Deliveries are scheduled with call_soon_threadsafe on the
        subscriber's loop, so writers on other threads are safe.
    """

    def __init__(self) -> None:
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._listeners)

    def add(
        self,
        collection: str,
        doc_filter: DocumentFilter,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback],
        initial: List[Document],
    ) -> SubscriptionHandle:
        """Register a subscriber and schedule its initial snapshot.

        Must be called from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        subscription_id = next(self._ids)
        self._listeners[subscription_id] = _Listener(
            collection=collection,
            filter=doc_filter,
            on_change=on_change,
            on_error=on_error,
            loop=loop,
        )
        logger.debug(
            "Subscription added",
            extra={
                "subscription_id": subscription_id,
                "collection": collection,
                "filter": str(doc_filter),
            },
        )
        self._schedule(subscription_id, initial)
        return SubscriptionHandle(self, subscription_id)

    def remove(self, subscription_id: int) -> None:
        if self._listeners.pop(subscription_id, None) is not None:
            logger.debug("Subscription removed", extra={"subscription_id": subscription_id})

    def clear(self) -> None:
        self._listeners.clear()

    def publish(
        self,
        collection: str,
        doc_id: str,
        before: Optional[Document],
        after: Optional[Document],
        snapshot: SnapshotFn,
    ) -> None:
        """Notify subscribers affected by a write to one document."""
        for subscription_id, listener in list(self._listeners.items()):
            if listener.collection != collection:
                continue
            if not (
                listener.filter.matches(doc_id, before)
                or listener.filter.matches(doc_id, after)
            ):
                continue
            self._schedule(subscription_id, snapshot(listener.filter))

    def publish_error(self, error: Exception, collection: Optional[str] = None) -> None:
        """Report a channel-level error to subscribers without removing them."""
        for subscription_id, listener in list(self._listeners.items()):
            if collection is not None and listener.collection != collection:
                continue
            listener.loop.call_soon_threadsafe(self._deliver_error, subscription_id, error)

    def _schedule(self, subscription_id: int, documents: List[Document]) -> None:
        listener = self._listeners.get(subscription_id)
        if listener is None:
            return
        payload = copy.deepcopy(documents)
        listener.loop.call_soon_threadsafe(self._deliver, subscription_id, payload)

    def _deliver(self, subscription_id: int, documents: List[Document]) -> None:
        # Cancelled between scheduling and delivery
        listener = self._listeners.get(subscription_id)
        if listener is None:
            return
        try:
            listener.on_change(documents)
        except Exception:
            logger.exception(
                "Subscriber callback failed",
                extra={"subscription_id": subscription_id},
            )

    def _deliver_error(self, subscription_id: int, error: Exception) -> None:
        listener = self._listeners.get(subscription_id)
        if listener is None:
            return
        if listener.on_error is None:
            logger.error(
                f"Change stream error: {error}",
                extra={"subscription_id": subscription_id},
            )
            return
        try:
            listener.on_error(error)
        except Exception:
            logger.exception(
                "Subscriber error callback failed",
                extra={"subscription_id": subscription_id},
            )


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    The store is the single source of truth. Ordering between writes and
    change deliveries is eventual; concurrent writes to the same document
    resolve last-write-wins.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.put("trustRequests", "r1", {"status": "pending"})
        >>> doc = await store.get("trustRequests", "r1")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StoreError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the backend and drop all subscriptions."""
        ...

    @abstractmethod
    async def put(self, collection: str, doc_id: str, document: Document) -> None:
        """Create or replace a document.

        Raises:
            StoreError: If the write fails
        """
        ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document:
        """Read one document.

        Raises:
            NotFoundError: If no document exists for the id
            StoreError: If the read fails
        """
        ...

    @abstractmethod
    async def query(self, collection: str, field: str, value: Any) -> List[Document]:
        """Return all documents whose field equals value, in store order."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """Merge the named fields into an existing document.

        Raises:
            NotFoundError: If no document exists for the id
            StoreError: If the write fails
        """
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Remove a document. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
        *,
        field: Optional[str] = None,
        value: Any = None,
        doc_id: Optional[str] = None,
    ) -> SubscriptionHandle:
        """Subscribe to the full matching set of a filter.

        The current set is delivered once right after subscribing, then
        again after every write that affects a matching document.
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...
