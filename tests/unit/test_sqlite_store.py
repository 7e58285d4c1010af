"""
Unit tests for the SQLite document store.

Tests cover:
- Schema creation and persistence across instances
- Upsert, merge update and delete
- Query ordering and filter validation
- Change notifications after commit
"""

import sqlite3

import pytest
import pytest_asyncio

from trustpact.errors import NotFoundError, StoreError
from trustpact.store import DocumentStore, SqliteDocumentStore

COLLECTION = "trustRequests"


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = SqliteDocumentStore(str(tmp_path / "data"))
    await store.connect()
    yield store
    await store.close()


class TestSqliteDocumentStore:
    """Tests for SqliteDocumentStore."""

    def test_satisfies_protocol(self, tmp_path):
        """SQLite store implements DocumentStore."""
        assert isinstance(SqliteDocumentStore(str(tmp_path)), DocumentStore)

    @pytest.mark.asyncio
    async def test_connect_creates_schema(self, sqlite_store):
        """connect() creates the database file and tables."""
        assert sqlite_store.db_path.exists()

        conn = sqlite3.connect(str(sqlite_store.db_path))
        try:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        finally:
            conn.close()
        assert {"documents", "schema_version"} <= tables

    @pytest.mark.asyncio
    async def test_requires_connect(self, tmp_path):
        """Operations fail before connect()."""
        store = SqliteDocumentStore(str(tmp_path))
        with pytest.raises(StoreError):
            await store.put(COLLECTION, "r1", {})

    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, sqlite_store):
        """Stored documents come back unchanged."""
        doc = {"senderId": "alice", "status": "pending", "nested": {"a": [1, 2]}}
        await sqlite_store.put(COLLECTION, "r1", doc)
        assert await sqlite_store.get(COLLECTION, "r1") == doc

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, sqlite_store):
        """The same id in another collection is a different document."""
        await sqlite_store.put(COLLECTION, "r1", {"n": 1})
        await sqlite_store.put("other", "r1", {"n": 2})
        assert (await sqlite_store.get(COLLECTION, "r1"))["n"] == 1
        assert (await sqlite_store.get("other", "r1"))["n"] == 2

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        """A new store on the same directory sees earlier writes."""
        first = SqliteDocumentStore(str(tmp_path))
        await first.connect()
        await first.put(COLLECTION, "r1", {"status": "pending"})
        await first.close()

        second = SqliteDocumentStore(str(tmp_path))
        await second.connect()
        assert await second.get(COLLECTION, "r1") == {"status": "pending"}
        await second.close()

    @pytest.mark.asyncio
    async def test_get_missing(self, sqlite_store):
        """Missing documents raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await sqlite_store.get(COLLECTION, "missing")

    @pytest.mark.asyncio
    async def test_update_merges(self, sqlite_store):
        """Update merges named fields into the stored document."""
        await sqlite_store.put(COLLECTION, "r1", {"senderId": "alice", "status": "pending"})
        await sqlite_store.update(COLLECTION, "r1", {"status": "accepted"})
        assert await sqlite_store.get(COLLECTION, "r1") == {
            "senderId": "alice",
            "status": "accepted",
        }

    @pytest.mark.asyncio
    async def test_update_missing(self, sqlite_store):
        """Updating a missing document raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await sqlite_store.update(COLLECTION, "missing", {"status": "accepted"})

    @pytest.mark.asyncio
    async def test_delete(self, sqlite_store):
        """Delete reports whether a document was removed."""
        await sqlite_store.put(COLLECTION, "r1", {})
        assert await sqlite_store.delete(COLLECTION, "r1") is True
        assert await sqlite_store.delete(COLLECTION, "r1") is False
        with pytest.raises(NotFoundError):
            await sqlite_store.get(COLLECTION, "r1")

    @pytest.mark.asyncio
    async def test_query_order_stable_across_upsert(self, sqlite_store):
        """Query keeps insertion order even after documents are rewritten."""
        await sqlite_store.put(COLLECTION, "r1", {"senderId": "alice", "n": 1})
        await sqlite_store.put(COLLECTION, "r2", {"senderId": "alice", "n": 2})
        await sqlite_store.put(COLLECTION, "r3", {"senderId": "bob", "n": 3})
        await sqlite_store.put(COLLECTION, "r1", {"senderId": "alice", "n": 10})

        docs = await sqlite_store.query(COLLECTION, "senderId", "alice")
        assert [d["n"] for d in docs] == [10, 2]

    @pytest.mark.asyncio
    async def test_query_rejects_unsafe_field(self, sqlite_store):
        """Field names that are not plain identifiers are refused."""
        with pytest.raises(StoreError):
            await sqlite_store.query(COLLECTION, "status') OR 1=1 --", "x")


class TestSqliteSubscriptions:
    """Tests for SQLite change notifications."""

    @pytest.mark.asyncio
    async def test_initial_and_updates(self, sqlite_store, recorder_factory):
        """Subscribers get the initial set and every later full set."""
        await sqlite_store.put(COLLECTION, "r1", {"receiverId": "bob", "status": "pending"})
        recorder = recorder_factory()
        await sqlite_store.subscribe(COLLECTION, recorder, field="receiverId", value="bob")
        await recorder.wait_for(1)
        assert len(recorder.last) == 1

        await sqlite_store.put(COLLECTION, "r2", {"receiverId": "bob", "status": "pending"})
        await recorder.wait_for(2)
        assert len(recorder.last) == 2

        await sqlite_store.update(COLLECTION, "r1", {"status": "declined"})
        await recorder.wait_for(3)
        assert recorder.last[0]["status"] == "declined"

    @pytest.mark.asyncio
    async def test_delete_notifies(self, sqlite_store, recorder_factory):
        """Deleting a matching document delivers the reduced set."""
        await sqlite_store.put(COLLECTION, "r1", {"senderId": "alice"})
        recorder = recorder_factory()
        await sqlite_store.subscribe(COLLECTION, recorder, doc_id="r1")
        await recorder.wait_for(1)

        await sqlite_store.delete(COLLECTION, "r1")
        await recorder.wait_for(2)
        assert recorder.last == []

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery(self, sqlite_store, recorder_factory, settled):
        """Cancelled subscriptions receive nothing."""
        recorder = recorder_factory()
        handle = await sqlite_store.subscribe(COLLECTION, recorder)
        await recorder.wait_for(1)
        handle.cancel()

        await sqlite_store.put(COLLECTION, "r1", {})
        await settled()
        assert len(recorder.deliveries) == 1
