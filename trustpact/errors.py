"""
Error types for TrustPact.

This module defines all exception types raised by the core:
- TrustPactError: Base exception
- UnauthenticatedError: No identity where one is required
- NotFoundError: Id-based lookup miss
- DecodeError: Stored document does not match the expected shape
- StoreError: Opaque failure reported by the document store
- AccessDeniedError: Actor is not the party allowed to act
- InvalidTransitionError: Status write rejected in strict mode
- ValidationError: Rejected input values

Invariants:
    - All errors inherit from TrustPactError
    - Errors carry a structured code, never presentation text
    - Human-readable messages are produced at the gateway boundary
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class TrustPactError(Exception):
    """Base exception for all TrustPact errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TRUSTPACT_ERROR"
        self.details = details or {}


class UnauthenticatedError(TrustPactError):
    """No current identity is available.

    Raised when:
    - A request is created without a sender
    - The identity provider reports a signed-out session
    """

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message, code="UNAUTHENTICATED")


class NotFoundError(TrustPactError):
    """Resource not found.

    Raised when:
    - A trust request id has no stored document
    - A partial update targets a missing document
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class DecodeError(TrustPactError):
    """A stored document does not match the trust request shape.

    Fatal for point reads, dropped from batches by list reads and
    change streams.
    """

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DECODE_FAILURE",
            details={"document_id": document_id},
        )
        self.document_id = document_id


class StoreError(TrustPactError):
    """Opaque failure from the backing document store.

    Network, permission and storage failures are passed through
    with the original exception chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation


class AccessDeniedError(TrustPactError):
    """Actor is not a party allowed to act on a request.

    Raised when:
    - Someone other than the receiver accepts or declines
    - Someone other than the sender revokes
    - Someone outside the request reads it
    """

    def __init__(
        self,
        message: str,
        actor: str,
        resource_id: str,
        required_role: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="ACCESS_DENIED",
            details={
                "actor": actor,
                "resource_id": resource_id,
                "required_role": required_role,
            },
        )
        self.actor = actor
        self.resource_id = resource_id
        self.required_role = required_role


class InvalidTransitionError(TrustPactError):
    """Status transition rejected.

    Only raised when the repository runs with strict transitions;
    the only legal moves are out of ``pending``.
    """

    def __init__(
        self,
        request_id: str,
        current: str,
        target: str,
    ) -> None:
        super().__init__(
            f"Cannot move request '{request_id}' from {current} to {target}",
            code="INVALID_TRANSITION",
            details={
                "request_id": request_id,
                "current": current,
                "target": target,
            },
        )
        self.request_id = request_id
        self.current = current
        self.target = target


class ValidationError(TrustPactError):
    """Input validation failed.

    Raised when:
    - Sender or receiver id is empty
    - Expiration is not after the creation timestamp
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []
