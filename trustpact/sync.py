"""
Synchronization layer for TrustPact.

Maintains live per-user views of "requests I sent" and "requests I
received" by subscribing to filtered change streams of the document
store and republishing every snapshot to registered observers.

Invariants:
    - At most one active subscription per (kind, user) pair
    - Each delivery replaces the previous view wholesale
    - Malformed documents are dropped, never fail a delivery
    - Channel errors are reported out-of-band and keep the subscription
    - After cancel() an observer receives nothing further
    - Nothing starts until a caller asks for it

How to change safely:
    - All view mutation happens on the event loop, inside deliveries
    - Keep Subscription.cancel() idempotent and reentrant
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .identity import IdentityProvider
from .models import FIELD_RECEIVER_ID, FIELD_SENDER_ID, TrustRequest
from .repository import DEFAULT_COLLECTION, decode_documents
from .store import DocumentStore, SubscriptionHandle

logger = logging.getLogger(__name__)

RequestsObserver = Callable[[list[TrustRequest]], None]
RequestObserver = Callable[[Optional[TrustRequest]], None]
ErrorObserver = Callable[[Exception], None]


class FilterKind(str, Enum):
    """Which side of a request a subscription follows."""

    SENT = "sent"
    RECEIVED = "received"

    @property
    def field(self) -> str:
        """Document field the filter matches on."""
        return FIELD_SENDER_ID if self is FilterKind.SENT else FIELD_RECEIVER_ID


class Subscription:
    """Caller-owned handle for one live view.

    Attributes:
        key: (kind, id) pair identifying the view
    """

    def __init__(self, owner: RequestSynchronizer, key: Tuple[Hashable, str]) -> None:
        self._owner = owner
        self.key = key
        self._handle: Optional[SubscriptionHandle] = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop deliveries. Safe to call repeatedly and from inside a delivery."""
        if not self._active:
            return
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
        self._owner._discard(self)

    def _attach(self, handle: SubscriptionHandle) -> None:
        # cancel() may have run while the store subscription was pending
        self._handle = handle
        if not self._active:
            handle.cancel()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"Subscription(key={self.key!r}, {state})"


class RequestSynchronizer:
    """Live sent/received views backed by store change streams.

    Example:
        >>> sync = RequestSynchronizer(store)
        >>> sub = await sync.subscribe_received("bob", lambda reqs: print(len(reqs)))
        >>> # ... deliveries arrive on the event loop ...
        >>> sub.cancel()
        >>> await sync.close()
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self._store = store
        self.collection = collection
        self._subscriptions: Dict[Tuple[Hashable, str], Subscription] = {}
        self._views: Dict[Tuple[Hashable, str], Tuple[TrustRequest, ...]] = {}
        self._primary: Dict[FilterKind, str] = {}

        # Identity following
        self._identity: Optional[IdentityProvider] = None
        self._remove_identity_listener: Optional[Callable[[], None]] = None
        self._followed_user: Optional[str] = None
        self._follow_callbacks: Dict[str, Any] = {}
        self._follow_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    # Published views

    @property
    def sent_requests(self) -> Tuple[TrustRequest, ...]:
        """Latest sent-requests view of the most recently started SENT subscription."""
        return self.view(FilterKind.SENT, self._primary.get(FilterKind.SENT))

    @property
    def received_requests(self) -> Tuple[TrustRequest, ...]:
        """Latest received-requests view of the most recently started RECEIVED subscription."""
        return self.view(FilterKind.RECEIVED, self._primary.get(FilterKind.RECEIVED))

    def view(self, kind: FilterKind, user_id: Optional[str]) -> Tuple[TrustRequest, ...]:
        """Latest published list for a (kind, user) pair, empty if none."""
        if user_id is None:
            return ()
        return self._views.get((FilterKind(kind), user_id), ())

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    @property
    def followed_user(self) -> Optional[str]:
        return self._followed_user

    def is_subscribed(self, kind: FilterKind, user_id: str) -> bool:
        return (FilterKind(kind), user_id) in self._subscriptions

    # Subscriptions

    async def subscribe(
        self,
        kind: FilterKind,
        user_id: str,
        observer: Optional[RequestsObserver] = None,
        on_error: Optional[ErrorObserver] = None,
    ) -> Subscription:
        """Start a live view of one user's sent or received requests.

        Any earlier subscription for the same (kind, user) pair is
        cancelled first.

        Args:
            kind: SENT or RECEIVED
            user_id: User whose requests to follow
            observer: Called with the full current list on every change
            on_error: Called with channel-level errors

        Returns:
            Subscription handle owned by the caller
        """
        kind = FilterKind(kind)
        key = (kind, user_id)

        def on_change(documents: list[dict]) -> None:
            requests = decode_documents(documents)
            self._views[key] = tuple(requests)
            if observer is not None:
                observer(requests)

        subscription = await self._start(
            key,
            on_change,
            on_error,
            field=kind.field,
            value=user_id,
        )
        self._primary[kind] = user_id
        return subscription

    async def subscribe_sent(
        self,
        user_id: str,
        observer: Optional[RequestsObserver] = None,
        on_error: Optional[ErrorObserver] = None,
    ) -> Subscription:
        return await self.subscribe(FilterKind.SENT, user_id, observer, on_error)

    async def subscribe_received(
        self,
        user_id: str,
        observer: Optional[RequestsObserver] = None,
        on_error: Optional[ErrorObserver] = None,
    ) -> Subscription:
        return await self.subscribe(FilterKind.RECEIVED, user_id, observer, on_error)

    async def watch_request(
        self,
        request_id: str,
        observer: RequestObserver,
        on_error: Optional[ErrorObserver] = None,
    ) -> Subscription:
        """Follow a single request.

        The observer receives the current request, or None when the
        document is missing or malformed.
        """
        key = ("request", request_id)

        def on_change(documents: list[dict]) -> None:
            requests = decode_documents(documents)
            observer(requests[0] if requests else None)

        return await self._start(key, on_change, on_error, doc_id=request_id)

    async def _start(
        self,
        key: Tuple[Hashable, str],
        on_change: Callable[[list[dict]], None],
        on_error: Optional[ErrorObserver],
        **store_filter: Any,
    ) -> Subscription:
        prior = self._subscriptions.get(key)
        if prior is not None:
            logger.debug("Replacing existing subscription", extra={"key": str(key)})
            prior.cancel()

        subscription = Subscription(self, key)
        self._subscriptions[key] = subscription

        def deliver(documents: list[dict]) -> None:
            if subscription.active:
                on_change(documents)

        def report(error: Exception) -> None:
            if not subscription.active:
                return
            logger.error(
                f"Change stream error: {error}",
                extra={"key": str(key)},
            )
            if on_error is not None:
                on_error(error)

        try:
            handle = await self._store.subscribe(
                self.collection,
                deliver,
                report,
                **store_filter,
            )
        except Exception:
            subscription._active = False
            self._discard(subscription)
            raise

        subscription._attach(handle)
        logger.debug("Subscription started", extra={"key": str(key)})
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        if self._subscriptions.get(subscription.key) is subscription:
            del self._subscriptions[subscription.key]
            self._views.pop(subscription.key, None)

    def cancel_all(self) -> None:
        """Cancel every subscription this synchronizer created."""
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()

    # Identity following

    async def follow(
        self,
        identity: IdentityProvider,
        on_sent: Optional[RequestsObserver] = None,
        on_received: Optional[RequestsObserver] = None,
        on_error: Optional[ErrorObserver] = None,
    ) -> None:
        """Keep sent/received views pointed at the signed-in user.

        Subscriptions restart on every identity change and are torn
        down on sign-out.
        """
        self.unfollow()
        self._identity = identity
        self._follow_callbacks = {
            "on_sent": on_sent,
            "on_received": on_received,
            "on_error": on_error,
        }
        self._remove_identity_listener = identity.add_listener(self._on_identity_changed)
        await self._refollow(identity.current_identity())

    def unfollow(self) -> None:
        """Stop following identity changes and drop the followed views."""
        if self._remove_identity_listener is not None:
            self._remove_identity_listener()
            self._remove_identity_listener = None
        self._identity = None
        self._drop_followed()

    def _on_identity_changed(self, user_id: Optional[str]) -> None:
        task = asyncio.get_running_loop().create_task(self._refollow(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Failed to follow identity change: {task.exception()}",
                exc_info=task.exception(),
            )
            on_error = self._follow_callbacks.get("on_error")
            if on_error is not None:
                on_error(task.exception())

    async def _refollow(self, user_id: Optional[str]) -> None:
        async with self._follow_lock:
            if self._identity is None:
                return
            # A later change superseded this one
            if user_id != self._identity.current_identity():
                return
            if user_id == self._followed_user and user_id is not None:
                return

            self._drop_followed()
            if user_id is None:
                logger.info("Identity cleared, live views stopped")
                return

            try:
                await self.subscribe_sent(
                    user_id,
                    self._follow_callbacks.get("on_sent"),
                    self._follow_callbacks.get("on_error"),
                )
                await self.subscribe_received(
                    user_id,
                    self._follow_callbacks.get("on_received"),
                    self._follow_callbacks.get("on_error"),
                )
            except Exception:
                # All or nothing: followed_user stays unset on failure
                self._cancel_views(user_id)
                raise
            self._followed_user = user_id
            logger.info("Following identity", extra={"user_id": user_id})

    def _drop_followed(self) -> None:
        user_id = self._followed_user
        self._followed_user = None
        if user_id is not None:
            self._cancel_views(user_id)

    def _cancel_views(self, user_id: str) -> None:
        for kind in FilterKind:
            subscription = self._subscriptions.get((kind, user_id))
            if subscription is not None:
                subscription.cancel()

    # Lifecycle

    async def close(self) -> None:
        """Cancel all subscriptions and pending identity work."""
        self.unfollow()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.cancel_all()
        self._primary.clear()

    async def __aenter__(self) -> RequestSynchronizer:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
