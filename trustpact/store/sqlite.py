"""
SQLite document store for TrustPact.

This module keeps documents as JSON text in a single SQLite file and
provides process-local change streams on top of it.

Invariants:
    - One SQLite file per store (``<data_dir>/trustpact.db``)
    - Every write runs in its own explicit transaction
    - Subscribers are notified only after COMMIT
    - Query order is insertion order (rowid), stable across upserts

How to change safely:
    - Schema migrations must be backward compatible
    - Keep writes inside BEGIN IMMEDIATE / COMMIT
    - Change streams only see writes made through this process

Table schema:
    documents:
        - collection TEXT
        - doc_id TEXT
        - body_json TEXT
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (collection, doc_id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

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

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteDocumentStore:
    """SQLite-backed implementation of DocumentStore.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/trustpact")
        >>> await store.connect()
        >>> await store.put("trustRequests", "r1", {"senderId": "alice"})
    """

    SCHEMA_VERSION = 1
    DB_FILENAME = "trustpact.db"

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._feed = ChangeFeed()
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.DB_FILENAME

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, mapping driver errors to StoreError."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database: {e}", operation="connect") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                body_json TEXT NOT NULL DEFAULT '{}',
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if needed."""
        if self._connected:
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        self._connected = True
        logger.info(f"SQLite document store ready: {self.db_path}")

    async def close(self) -> None:
        self._feed.clear()
        self._connected = False
        logger.debug("SqliteDocumentStore closed")

    async def put(self, collection: str, doc_id: str, document: Document) -> None:
        self._check("put")
        body = json.dumps(document)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    before = self._read(conn, collection, doc_id)
                    conn.execute(
                        """
                        INSERT INTO documents (collection, doc_id, body_json, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT (collection, doc_id)
                        DO UPDATE SET body_json = excluded.body_json,
                                      updated_at = excluded.updated_at
                        """,
                        (collection, doc_id, body, int(time.time() * 1000)),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

                self._feed.publish(
                    collection, doc_id, before, json.loads(body), self._snapshot_fn(conn, collection)
                )

        logger.debug(
            "Document stored",
            extra={"collection": collection, "doc_id": doc_id},
        )

    async def get(self, collection: str, doc_id: str) -> Document:
        self._check("get")
        with self._get_connection() as conn:
            document = self._read(conn, collection, doc_id)
        if document is None:
            raise NotFoundError(
                f"Document not found: {collection}/{doc_id}",
                resource_type=collection,
                resource_id=doc_id,
            )
        return document

    async def query(self, collection: str, field: str, value: Any) -> list[Document]:
        self._check("query")
        with self._get_connection() as conn:
            return self._select(conn, collection, DocumentFilter(field=field, value=value))

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        self._check("update")
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    before = self._read(conn, collection, doc_id)
                    if before is None:
                        conn.execute("ROLLBACK")
                        raise NotFoundError(
                            f"Document not found: {collection}/{doc_id}",
                            resource_type=collection,
                            resource_id=doc_id,
                        )

                    after = {**before, **fields}
                    conn.execute(
                        """
                        UPDATE documents SET body_json = ?, updated_at = ?
                        WHERE collection = ? AND doc_id = ?
                        """,
                        (json.dumps(after), int(time.time() * 1000), collection, doc_id),
                    )
                    conn.execute("COMMIT")
                except NotFoundError:
                    raise
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

                self._feed.publish(collection, doc_id, before, after, self._snapshot_fn(conn, collection))

        logger.debug(
            "Document updated",
            extra={"collection": collection, "doc_id": doc_id, "fields": sorted(fields)},
        )

    async def delete(self, collection: str, doc_id: str) -> bool:
        self._check("delete")
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    before = self._read(conn, collection, doc_id)
                    if before is None:
                        conn.execute("ROLLBACK")
                        return False
                    conn.execute(
                        "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                        (collection, doc_id),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

                self._feed.publish(collection, doc_id, before, None, self._snapshot_fn(conn, collection))
        return True

    async def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        doc_id: str | None = None,
    ) -> SubscriptionHandle:
        self._check("subscribe")
        doc_filter = DocumentFilter(field=field, value=value, doc_id=doc_id)
        async with self._lock:
            with self._get_connection() as conn:
                initial = self._select(conn, collection, doc_filter)
            return self._feed.add(collection, doc_filter, on_change, on_error, initial=initial)

    def _check(self, operation: str) -> None:
        if not self._connected:
            raise StoreError("Not connected", operation=operation)

    def _read(self, conn: sqlite3.Connection, collection: str, doc_id: str) -> Document | None:
        row = conn.execute(
            "SELECT body_json FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["body_json"])

    def _select(
        self,
        conn: sqlite3.Connection,
        collection: str,
        doc_filter: DocumentFilter,
    ) -> list[Document]:
        if doc_filter.doc_id is not None:
            document = self._read(conn, collection, doc_filter.doc_id)
            return [document] if document is not None else []

        if doc_filter.field is None:
            rows = conn.execute(
                "SELECT body_json FROM documents WHERE collection = ? ORDER BY rowid",
                (collection,),
            ).fetchall()
            return [json.loads(row["body_json"]) for row in rows]

        if not _FIELD_NAME.match(doc_filter.field):
            raise StoreError(f"Invalid filter field: {doc_filter.field!r}", operation="query")

        rows = conn.execute(
            f"""
            SELECT body_json FROM documents
            WHERE collection = ? AND json_extract(body_json, '$.{doc_filter.field}') = ?
            ORDER BY rowid
            """,
            (collection, doc_filter.value),
        ).fetchall()
        return [json.loads(row["body_json"]) for row in rows]

    def _snapshot_fn(self, conn: sqlite3.Connection, collection: str):
        return lambda doc_filter: self._select(conn, collection, doc_filter)
