"""
In-memory document store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a database

Invariants:
    - All data is lost on process exit
    - Same snapshot delivery semantics as the SQLite backend
    - Safe to use from multiple coroutines

How to change safely:
    - Keep interface compatible with the DocumentStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional

import logging

from ..errors import NotFoundError, StoreError
from .base import (
    ChangeCallback,
    ChangeFeed,
    Document,
    DocumentFilter,
    ErrorCallback,
    SubscriptionHandle,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Documents live in insertion-ordered dicts per collection, so query
    results come back in creation order.

    Thread safety:
        Uses an asyncio lock around writes. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.put("trustRequests", "r1", {"senderId": "alice"})
        >>> await store.query("trustRequests", "senderId", "alice")
        [{'senderId': 'alice'}]
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._feed = ChangeFeed()
        self._connected = False
        self._lock = asyncio.Lock()
        self._pending_failure: Optional[Exception] = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close, drop subscriptions and clear all data."""
        self._connected = False
        self._feed.clear()
        self._collections.clear()
        logger.debug("InMemoryDocumentStore closed")

    async def put(self, collection: str, doc_id: str, document: Document) -> None:
        self._check("put")
        async with self._lock:
            docs = self._collections[collection]
            before = docs.get(doc_id)
            after = copy.deepcopy(document)
            docs[doc_id] = after
            self._feed.publish(collection, doc_id, before, after, self._snapshot_fn(collection))

        logger.debug(
            "Document stored",
            extra={"collection": collection, "doc_id": doc_id},
        )

    async def get(self, collection: str, doc_id: str) -> Document:
        self._check("get")
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise NotFoundError(
                f"Document not found: {collection}/{doc_id}",
                resource_type=collection,
                resource_id=doc_id,
            )
        return copy.deepcopy(document)

    async def query(self, collection: str, field: str, value: Any) -> List[Document]:
        self._check("query")
        return self._matching(collection, DocumentFilter(field=field, value=value))

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        self._check("update")
        async with self._lock:
            docs = self._collections.get(collection, {})
            before = docs.get(doc_id)
            if before is None:
                raise NotFoundError(
                    f"Document not found: {collection}/{doc_id}",
                    resource_type=collection,
                    resource_id=doc_id,
                )
            after = {**before, **copy.deepcopy(fields)}
            docs[doc_id] = after
            self._feed.publish(collection, doc_id, before, after, self._snapshot_fn(collection))

        logger.debug(
            "Document updated",
            extra={"collection": collection, "doc_id": doc_id, "fields": sorted(fields)},
        )

    async def delete(self, collection: str, doc_id: str) -> bool:
        self._check("delete")
        async with self._lock:
            before = self._collections.get(collection, {}).pop(doc_id, None)
            if before is None:
                return False
            self._feed.publish(collection, doc_id, before, None, self._snapshot_fn(collection))
        return True

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
        self._check("subscribe")
        doc_filter = DocumentFilter(field=field, value=value, doc_id=doc_id)
        async with self._lock:
            return self._feed.add(
                collection,
                doc_filter,
                on_change,
                on_error,
                initial=self._matching(collection, doc_filter),
            )

    def _check(self, operation: str) -> None:
        if not self._connected:
            raise StoreError("Not connected", operation=operation)
        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise StoreError(f"{operation} failed: {failure}", operation=operation) from failure

    def _matching(self, collection: str, doc_filter: DocumentFilter) -> List[Document]:
        docs = self._collections.get(collection, {})
        return [
            copy.deepcopy(doc)
            for key, doc in docs.items()
            if doc_filter.matches(key, doc)
        ]

    def _snapshot_fn(self, collection: str):
        return lambda doc_filter: self._matching(collection, doc_filter)

    # Testing helpers

    def inject_failure(self, exception: Exception) -> None:
        """Make the next operation raise StoreError wrapping this exception."""
        self._pending_failure = exception

    def emit_error(self, error: Exception, collection: Optional[str] = None) -> None:
        """Push a channel-level error to every live subscriber."""
        self._feed.publish_error(error, collection)

    def put_raw(self, collection: str, doc_id: str, document: Document) -> None:
        """Store a document verbatim, bypassing the change feed."""
        self._collections[collection][doc_id] = document

    def document_count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    @property
    def subscriber_count(self) -> int:
        return len(self._feed)
