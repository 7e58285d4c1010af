"""
Identity collaborator for TrustPact.

The core never reads a process-wide session. Callers pass user ids
explicitly; an IdentityProvider exists only for callers that want to
follow "whoever is signed in" (the synchronizer's follow mode and
RequestRepository.create_for).
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from .errors import UnauthenticatedError

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


@runtime_checkable
class IdentityProvider(Protocol):
    """Source of the current user identity."""

    def current_identity(self) -> Optional[str]:
        """Return the signed-in user id, or None."""
        ...

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a callback for identity changes.

        Returns:
            Function that removes the listener when called
        """
        ...


class SessionIdentity:
    """In-process identity session with change notifications.

    Listeners fire only when the identity actually changes, so signing
    in twice as the same user is silent.

    Example:
        >>> session = SessionIdentity()
        >>> session.sign_in("alice")
        >>> session.current_identity()
        'alice'
    """

    def __init__(self, user_id: Optional[str] = None) -> None:
        self._user_id = user_id
        self._listeners: list[IdentityListener] = []

    def current_identity(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise UnauthenticatedError("Cannot sign in with an empty user id")
        self._set(user_id)

    def sign_out(self) -> None:
        self._set(None)

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set(self, user_id: Optional[str]) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info("Identity changed", extra={"authenticated": user_id is not None})
        for listener in list(self._listeners):
            listener(user_id)


def require_identity(provider: IdentityProvider) -> str:
    """Return the current identity or raise.

    Raises:
        UnauthenticatedError: If nobody is signed in
    """
    user_id = provider.current_identity()
    if not user_id:
        raise UnauthenticatedError()
    return user_id
