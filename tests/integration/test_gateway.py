"""
Integration tests for the HTTP gateway.

Tests cover:
- Creating, listing and answering trust requests over HTTP
- Error codes mapped to status codes and readable messages
- Store lifecycle through the application lifespan
"""

from datetime import datetime, timedelta

import pytest
from starlette.testclient import TestClient

from trustpact.config import Settings
from trustpact.gateway import create_app
from trustpact.store import InMemoryDocumentStore

ALICE = {"X-User-ID": "alice"}
BOB = {"X-User-ID": "bob"}


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def settings():
    return Settings(max_expiration_days=7)


@pytest.fixture
def client(store, settings):
    app = create_app(settings, store=store)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def send(client, receiver="bob", headers=ALICE, **body):
    return client.post("/api/v1/requests", json={"receiver_id": receiver, **body}, headers=headers)


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "service": "trustpact-gateway",
            "store": "memory",
        }


class TestLifespan:
    """Tests for store lifecycle."""

    def test_store_connected_and_closed(self, store, settings):
        """The store is connected while serving and closed afterwards."""
        app = create_app(settings, store=store)
        with TestClient(app):
            assert store.is_connected
            assert app.state.repository.collection == "trustRequests"
        assert not store.is_connected


class TestCreateRequest:
    """Tests for POST /requests."""

    def test_create(self, client):
        """Created requests are pending, valid and acceptable."""
        response = send(client)
        assert response.status_code == 201

        data = response.json()
        assert data["sender_id"] == "alice"
        assert data["receiver_id"] == "bob"
        assert data["status"] == "pending"
        assert data["label"] == "Pending"
        assert data["is_valid"] is True
        assert data["can_be_accepted"] is True

        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        expiration = datetime.fromisoformat(data["expiration"].replace("Z", "+00:00"))
        assert expiration - timestamp == timedelta(hours=24)

    def test_create_with_window(self, client):
        """expires_in_days sets the window."""
        data = send(client, expires_in_days=3).json()
        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        expiration = datetime.fromisoformat(data["expiration"].replace("Z", "+00:00"))
        assert timedelta(days=3) - timedelta(seconds=5) < expiration - timestamp <= timedelta(days=3)

    def test_create_window_too_long(self, client, store):
        """Windows beyond the configured maximum are rejected."""
        response = send(client, expires_in_days=8)
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert store.document_count("trustRequests") == 0

    def test_create_without_identity(self, client):
        """Missing X-User-ID maps to 401 with a readable message."""
        response = send(client, headers={})
        assert response.status_code == 401
        assert response.json() == {
            "error": "User not authenticated",
            "error_code": "UNAUTHENTICATED",
        }

    def test_create_empty_receiver(self, client):
        """Empty receivers fail with the coded validation error body."""
        response = send(client, receiver="")
        assert response.status_code == 422

        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert "receiver_id" in body["error"]
        assert "detail" not in body

    def test_create_zero_day_window(self, client, store):
        """Non-positive windows fail with the coded validation error body."""
        response = send(client, expires_in_days=0)
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert store.document_count("trustRequests") == 0

    def test_create_store_unavailable(self, client, store):
        """Store failures map to 503."""
        store.inject_failure(ConnectionError("offline"))
        response = send(client)
        assert response.status_code == 503
        assert response.json()["error_code"] == "STORE_ERROR"


class TestReadRequests:
    """Tests for GET endpoints."""

    def test_get_by_id(self, client):
        created = send(client).json()
        response = client.get(f"/api/v1/requests/{created['request_id']}", headers=BOB)
        assert response.status_code == 200
        assert response.json()["request_id"] == created["request_id"]

    def test_get_by_outsider(self, client):
        """Users outside the request cannot read it."""
        created = send(client).json()
        response = client.get(
            f"/api/v1/requests/{created['request_id']}",
            headers={"X-User-ID": "mallory"},
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "ACCESS_DENIED"

    def test_get_missing(self, client):
        """Unknown ids map to 404."""
        response = client.get("/api/v1/requests/nope", headers=ALICE)
        assert response.status_code == 404
        assert response.json()["error"] == "Request not found"

    def test_get_malformed(self, client, store):
        """Unreadable documents map to 500 with a generic message."""
        store.put_raw("trustRequests", "broken", {"requestId": "broken"})
        response = client.get("/api/v1/requests/broken", headers=ALICE)
        assert response.status_code == 500
        assert response.json()["error_code"] == "DECODE_FAILURE"

    def test_sent_and_received(self, client):
        """Lists are filtered by the calling user."""
        send(client, receiver="bob")
        send(client, receiver="carol")
        send(client, receiver="alice", headers=BOB)

        sent = client.get("/api/v1/requests/sent", headers=ALICE).json()
        received = client.get("/api/v1/requests/received", headers=ALICE).json()

        assert sent["total"] == 2
        assert {item["receiver_id"] for item in sent["items"]} == {"bob", "carol"}
        assert received["total"] == 1
        assert received["items"][0]["sender_id"] == "bob"

    def test_list_requires_identity(self, client):
        response = client.get("/api/v1/requests/received")
        assert response.status_code == 401


class TestAnswerRequests:
    """Tests for accept, decline and revoke."""

    def test_accept(self, client):
        """Accepting returns the updated request."""
        created = send(client).json()
        response = client.post(f"/api/v1/requests/{created['request_id']}/accept", headers=BOB)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "accepted"
        assert data["label"] == "Accepted"
        assert data["can_be_accepted"] is False

    def test_decline_then_revoke_last_write_wins(self, client):
        """Without strict transitions the last answer sticks."""
        request_id = send(client).json()["request_id"]
        client.post(f"/api/v1/requests/{request_id}/decline", headers=BOB)
        response = client.post(f"/api/v1/requests/{request_id}/revoke", headers=ALICE)

        assert response.json()["status"] == "revoked"

    def test_answer_missing(self, client):
        response = client.post("/api/v1/requests/nope/accept", headers=BOB)
        assert response.status_code == 404

    @pytest.mark.parametrize("action", ["accept", "decline", "revoke"])
    def test_outsider_cannot_answer(self, client, action):
        """Users outside the request get 403 and the status is unchanged."""
        request_id = send(client).json()["request_id"]
        response = client.post(
            f"/api/v1/requests/{request_id}/{action}",
            headers={"X-User-ID": "mallory"},
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "ACCESS_DENIED"
        assert client.get(f"/api/v1/requests/{request_id}", headers=ALICE).json()["status"] == "pending"

    @pytest.mark.parametrize("action", ["accept", "decline"])
    def test_sender_cannot_answer_own_request(self, client, action):
        """Only the receiver accepts or declines."""
        request_id = send(client).json()["request_id"]
        response = client.post(f"/api/v1/requests/{request_id}/{action}", headers=ALICE)

        assert response.status_code == 403
        assert "receiver" in response.json()["error"]

    def test_receiver_cannot_revoke(self, client):
        """Only the sender revokes."""
        request_id = send(client).json()["request_id"]
        response = client.post(f"/api/v1/requests/{request_id}/revoke", headers=BOB)

        assert response.status_code == 403
        assert "sender" in response.json()["error"]
        assert client.get(f"/api/v1/requests/{request_id}", headers=BOB).json()["status"] == "pending"

    def test_strict_transitions_conflict(self, store):
        """Strict mode rejects a second answer with 409."""
        app = create_app(Settings(strict_transitions=True), store=store)
        with TestClient(app, raise_server_exceptions=False) as client:
            request_id = send(client).json()["request_id"]
            assert client.post(f"/api/v1/requests/{request_id}/accept", headers=BOB).status_code == 200

            response = client.post(f"/api/v1/requests/{request_id}/decline", headers=BOB)

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "INVALID_TRANSITION"
        assert "accepted" in body["error"]
