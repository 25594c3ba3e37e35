"""Shared fixtures and fakes for shopcache tests."""

import asyncio
from typing import Any, Optional

import pytest

from shopcache.domain.events import EventBus


class ManualClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In-memory transport recording every call.

    Reads return ``resources[path]``; writes return the next queued response
    (or the request body). A queued exception is raised instead. ``gate``
    holds every call until the test sets it.
    """

    def __init__(self, resources: Optional[dict[str, Any]] = None):
        self.resources = dict(resources or {})
        self.fetch_calls: list[tuple[str, Any]] = []
        self.write_calls: list[tuple[str, str, Any]] = []
        self.write_responses: list[Any] = []
        self.fetch_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def fetch_resource(self, path, params=None):
        self.fetch_calls.append((path, params))
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        if path not in self.resources:
            raise LookupError(f"404 {path}")
        return self.resources[path]

    async def write_resource(self, path, method, body=None):
        self.write_calls.append((path, method, body))
        if self.gate is not None:
            await self.gate.wait()
        response = self.write_responses.pop(0) if self.write_responses else body
        if isinstance(response, Exception):
            raise response
        return response


class ControlledWriter:
    """Writer whose calls stay pending until the test resolves them."""

    def __init__(self):
        self.calls: list[Any] = []
        self.futures: list[asyncio.Future] = []

    async def __call__(self, operation):
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.calls.append(operation)
        self.futures.append(future)
        return await future

    def succeed(self, index: int, value: Any = None) -> None:
        self.futures[index].set_result(value)

    def fail(self, index: int, error: Optional[Exception] = None) -> None:
        self.futures[index].set_exception(error or ConnectionError("server unavailable"))


async def settle() -> None:
    """Let scheduled tasks run until they block again."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1_000.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()

