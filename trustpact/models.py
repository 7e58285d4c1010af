"""
Trust request data model.

A trust request is one user's proposal of a trust relationship to
another, valid for a bounded window. The record is small: identifiers,
a status, a creation timestamp and an absolute expiration.

Invariants:
    - request_id, sender_id, receiver_id and timestamp never change
    - expiration > timestamp at creation
    - Expiry is derived from the clock, never stored as a status
    - Leaving ``pending`` is one-way for well-behaved callers

Document shape (field name -> type), used for storage and filters:
    requestId:  str
    senderId:   str
    receiverId: str
    status:     "pending" | "accepted" | "declined" | "revoked"
    timestamp:  ISO-8601 UTC string
    expiration: ISO-8601 UTC string
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

from .errors import DecodeError, ValidationError

DEFAULT_EXPIRATION = timedelta(hours=24)

# Wire field names
FIELD_REQUEST_ID = "requestId"
FIELD_SENDER_ID = "senderId"
FIELD_RECEIVER_ID = "receiverId"
FIELD_STATUS = "status"
FIELD_TIMESTAMP = "timestamp"
FIELD_EXPIRATION = "expiration"

DOCUMENT_FIELDS = (
    FIELD_REQUEST_ID,
    FIELD_SENDER_ID,
    FIELD_RECEIVER_ID,
    FIELD_STATUS,
    FIELD_TIMESTAMP,
    FIELD_EXPIRATION,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    """Lifecycle states of a trust request."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"

    @property
    def label(self) -> str:
        """Display label, e.g. ``Pending``."""
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


@dataclass(frozen=True)
class TrustRequest:
    """A trust request between two users.

    Attributes:
        request_id: Unique identifier, also the store document id
        sender_id: User who sent the request
        receiver_id: User the request is addressed to
        status: Current lifecycle state
        timestamp: Creation time (UTC)
        expiration: Time after which the request is no longer actionable
    """

    request_id: str
    sender_id: str
    receiver_id: str
    status: RequestStatus
    timestamp: datetime
    expiration: datetime

    @classmethod
    def new(
        cls,
        sender_id: str,
        receiver_id: str,
        *,
        now: datetime,
        expiration: datetime | None = None,
        default_window: timedelta = DEFAULT_EXPIRATION,
        request_id: str | None = None,
    ) -> TrustRequest:
        """Build a fresh pending request.

        Args:
            sender_id: Sending user
            receiver_id: Receiving user
            now: Creation timestamp
            expiration: Explicit expiration (defaults to now + default_window)
            default_window: Window used when no expiration is given
            request_id: Explicit id (a UUID4 is generated otherwise)

        Returns:
            New TrustRequest in the pending state

        Raises:
            ValidationError: If an id is empty or expiration <= now
        """
        if not sender_id:
            raise ValidationError("Sender id must not be empty", field_name="sender_id")
        if not receiver_id:
            raise ValidationError("Receiver id must not be empty", field_name="receiver_id")

        timestamp = _as_utc(now)
        resolved = _as_utc(expiration) if expiration is not None else timestamp + default_window
        if resolved <= timestamp:
            raise ValidationError(
                "Expiration must be after the creation timestamp",
                field_name="expiration",
            )

        return cls(
            request_id=request_id or str(uuid.uuid4()),
            sender_id=sender_id,
            receiver_id=receiver_id,
            status=RequestStatus.PENDING,
            timestamp=timestamp,
            expiration=resolved,
        )

    def is_valid(self, now: datetime | None = None) -> bool:
        """Whether the request has not yet expired."""
        current = _as_utc(now) if now is not None else utc_now()
        return current < self.expiration

    def can_be_accepted(self, now: datetime | None = None) -> bool:
        """Whether the request is pending and not expired."""
        return self.status is RequestStatus.PENDING and self.is_valid(now)

    def with_status(self, status: RequestStatus) -> TrustRequest:
        """Copy of this request with a different status."""
        return replace(self, status=RequestStatus(status))

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return {
            FIELD_REQUEST_ID: self.request_id,
            FIELD_SENDER_ID: self.sender_id,
            FIELD_RECEIVER_ID: self.receiver_id,
            FIELD_STATUS: self.status.value,
            FIELD_TIMESTAMP: self.timestamp.isoformat(),
            FIELD_EXPIRATION: self.expiration.isoformat(),
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> TrustRequest:
        """Create from a stored document.

        Raises:
            DecodeError: If a field is missing or has the wrong shape
        """
        if not isinstance(document, Mapping):
            raise DecodeError("Document is not a mapping")
        doc_id = document.get(FIELD_REQUEST_ID)
        if not isinstance(doc_id, str):
            doc_id = None

        missing = [name for name in DOCUMENT_FIELDS if name not in document]
        if missing:
            raise DecodeError(
                f"Document is missing fields: {', '.join(missing)}",
                document_id=doc_id,
            )

        for name in (FIELD_REQUEST_ID, FIELD_SENDER_ID, FIELD_RECEIVER_ID):
            if not isinstance(document[name], str) or not document[name]:
                raise DecodeError(f"Field '{name}' must be a non-empty string", document_id=doc_id)

        try:
            status = RequestStatus(document[FIELD_STATUS])
        except ValueError:
            raise DecodeError(
                f"Unknown status '{document[FIELD_STATUS]}'",
                document_id=doc_id,
            ) from None

        return cls(
            request_id=document[FIELD_REQUEST_ID],
            sender_id=document[FIELD_SENDER_ID],
            receiver_id=document[FIELD_RECEIVER_ID],
            status=status,
            timestamp=_parse_datetime(document[FIELD_TIMESTAMP], FIELD_TIMESTAMP, doc_id),
            expiration=_parse_datetime(document[FIELD_EXPIRATION], FIELD_EXPIRATION, doc_id),
        )


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_datetime(value: Any, name: str, doc_id: str | None) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str):
        raise DecodeError(f"Field '{name}' must be an ISO-8601 string", document_id=doc_id)
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise DecodeError(
            f"Field '{name}' is not a valid timestamp: {value!r}",
            document_id=doc_id,
        ) from None
