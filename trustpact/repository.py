"""
Request repository for TrustPact.

This module owns creation, retrieval, and status transitions of trust
requests against the document store.

Invariants:
    - Every call takes the acting identity explicitly
    - create() writes the full document, status writes touch one field
    - No retries: store failures reach the caller unchanged
    - Expiry is never written; it is derived from the clock on read

How to change safely:
    - Keep status writes single-field so concurrent writers stay
      last-write-wins at the store
    - strict_transitions is read-then-write, not a compare-and-swap
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from .errors import DecodeError, InvalidTransitionError, UnauthenticatedError, ValidationError
from .identity import IdentityProvider, require_identity
from .models import (
    DEFAULT_EXPIRATION,
    FIELD_RECEIVER_ID,
    FIELD_SENDER_ID,
    FIELD_STATUS,
    RequestStatus,
    TrustRequest,
    utc_now,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "trustRequests"


class RequestRepository:
    """Creates, reads and mutates trust requests.

    Example:
        >>> repo = RequestRepository(store)
        >>> request = await repo.create("alice", "bob")
        >>> await repo.accept(request.request_id)
        >>> (await repo.get_by_id(request.request_id)).status
        <RequestStatus.ACCEPTED: 'accepted'>
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = DEFAULT_COLLECTION,
        default_expiration: timedelta = DEFAULT_EXPIRATION,
        clock: Callable[[], datetime] = utc_now,
        strict_transitions: bool = False,
    ) -> None:
        """Initialize the repository.

        Args:
            store: Backing document store
            collection: Collection holding trust requests
            default_expiration: Window applied when create() gets no expiration
            clock: Source of "now", injectable for tests
            strict_transitions: Reject status writes once a request left pending
        """
        self._store = store
        self.collection = collection
        self.default_expiration = default_expiration
        self._clock = clock
        self.strict_transitions = strict_transitions

    async def create(
        self,
        sender_id: str | None,
        receiver_id: str,
        expiration: datetime | None = None,
    ) -> TrustRequest:
        """Create and persist a new pending request.

        Args:
            sender_id: Sending user (None when no identity is available)
            receiver_id: Receiving user
            expiration: Absolute expiration (defaults to now + default window)

        Returns:
            The persisted TrustRequest

        Raises:
            UnauthenticatedError: If sender_id is None
            ValidationError: If expiration is not after the creation time
            StoreError: If the write fails
        """
        if sender_id is None:
            raise UnauthenticatedError()

        request = TrustRequest.new(
            sender_id,
            receiver_id,
            now=self._clock(),
            expiration=expiration,
            default_window=self.default_expiration,
        )
        await self._store.put(self.collection, request.request_id, request.to_document())

        logger.debug(
            "Created trust request",
            extra={
                "request_id": request.request_id,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
            },
        )
        return request

    async def create_for(
        self,
        identity: IdentityProvider,
        receiver_id: str,
        expiration: datetime | None = None,
    ) -> TrustRequest:
        """Create a request sent by whoever is signed in to identity."""
        return await self.create(require_identity(identity), receiver_id, expiration)

    async def get_by_id(self, request_id: str) -> TrustRequest:
        """Fetch one request.

        Raises:
            NotFoundError: If no request exists for the id
            DecodeError: If the stored document is malformed
        """
        document = await self._store.get(self.collection, request_id)
        return TrustRequest.from_document(document)

    async def list_by_sender(self, sender_id: str) -> list[TrustRequest]:
        """Requests sent by a user, in store order."""
        return await self._list(FIELD_SENDER_ID, sender_id)

    async def list_by_receiver(self, receiver_id: str) -> list[TrustRequest]:
        """Requests addressed to a user, in store order."""
        return await self._list(FIELD_RECEIVER_ID, receiver_id)

    async def set_status(self, request_id: str, status: RequestStatus) -> None:
        """Overwrite the status of a request.

        Unconditional unless strict_transitions is enabled; sequential
        writes leave the last one in place.

        Raises:
            NotFoundError: If the request does not exist
            ValidationError: If status is not a known RequestStatus
            InvalidTransitionError: In strict mode, if the request already left pending
            StoreError: If the write fails
        """
        try:
            target = RequestStatus(status)
        except ValueError:
            raise ValidationError(
                f"Unknown status '{status}'",
                field_name="status",
            ) from None

        if self.strict_transitions:
            current = await self.get_by_id(request_id)
            if current.status.is_terminal:
                raise InvalidTransitionError(request_id, current.status.value, target.value)

        await self._store.update(self.collection, request_id, {FIELD_STATUS: target.value})

        logger.debug(
            "Updated trust request status",
            extra={"request_id": request_id, "status": target.value},
        )

    async def accept(self, request_id: str) -> None:
        await self.set_status(request_id, RequestStatus.ACCEPTED)

    async def decline(self, request_id: str) -> None:
        await self.set_status(request_id, RequestStatus.DECLINED)

    async def revoke(self, request_id: str) -> None:
        await self.set_status(request_id, RequestStatus.REVOKED)

    async def _list(self, field: str, value: str) -> list[TrustRequest]:
        documents = await self._store.query(self.collection, field, value)
        return decode_documents(documents)


def decode_documents(documents: list[dict]) -> list[TrustRequest]:
    """Decode a batch, dropping malformed documents.

    Args:
        documents: Raw store documents

    Returns:
        Successfully decoded requests, in input order
    """
    requests = []
    for document in documents:
        try:
            requests.append(TrustRequest.from_document(document))
        except DecodeError as e:
            logger.warning(
                f"Dropping malformed trust request: {e.message}",
                extra={"document_id": e.document_id},
            )
    return requests
