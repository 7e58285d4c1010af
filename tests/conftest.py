"""
Shared fixtures for TrustPact tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from trustpact.store import InMemoryDocumentStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class Recorder:
    """Collects observer deliveries and lets tests wait for them."""

    def __init__(self) -> None:
        self.deliveries: list = []
        self.errors: list[Exception] = []
        self._changed = asyncio.Event()

    def __call__(self, value) -> None:
        self.deliveries.append(value)
        self._changed.set()

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)
        self._changed.set()

    @property
    def last(self):
        return self.deliveries[-1]

    async def wait_for(self, count: int, timeout: float = 1.0) -> None:
        """Wait until at least count deliveries arrived."""

        async def _wait() -> None:
            while len(self.deliveries) < count:
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout)

    async def wait_for_errors(self, count: int, timeout: float = 1.0) -> None:
        async def _wait() -> None:
            while len(self.errors) < count:
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout)


async def settle() -> None:
    """Let already-scheduled deliveries run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    """Clock fixed at a known instant."""
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def recorder_factory():
    """Factory for delivery recorders (bound to the running loop on use)."""
    return Recorder


@pytest.fixture
def settled():
    """Coroutine function that drains scheduled deliveries."""
    return settle


@pytest_asyncio.fixture
async def memory_store():
    """Connected in-memory document store."""
    store = InMemoryDocumentStore()
    await store.connect()
    yield store
    await store.close()
