"""Global pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import pytest

from leasekeeper.config import Settings
from leasekeeper.store.memory import InMemoryObjectStore

# Fast timings for tests driving real election loops
FAST_TIMINGS = {
    "lease_duration": 0.5,
    "renew_deadline": 0.1,
    "retry_period": 0.01,
    "reconcile_period": 0.02,
}


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def make_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Build Settings isolated from the caller's environment."""
    for var in ("POD_NAME", "POD_NAMESPACE", "LEASEKEEPER_IDENTITY", "LEASEKEEPER_NAMESPACE"):
        monkeypatch.delenv(var, raising=False)

    def factory(**overrides: object) -> Settings:
        values: dict[str, object] = {
            "identity": "pod-a",
            "namespace": "default",
            "store_backend": "memory",
            **FAST_TIMINGS,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)  # type: ignore[call-arg]

    return factory


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a condition until it holds or fail after a timeout."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return wait
