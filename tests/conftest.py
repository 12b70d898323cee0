"""
Pytest fixtures: a controllable clock, scripted transports, a collecting
notice sink and in-memory queue storage.
"""

import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio

from seatsync.offline.storage import MemoryStorage
from seatsync.services.client import ResilientClient
from seatsync.services.notices import Notice, NoticeKind
from seatsync.services.results import ApiResult
from seatsync.settings import Settings
from seatsync.transport.base import Transport


class FakeClock:
    """Clock whose time only moves when told to; sleep advances it."""

    def __init__(self, start: float = 1_000.0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def timestamp(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.current += seconds


Responder = Callable[[str, list[Any]], Any]


class FakeTransport(Transport):
    """
    Transport answering from a script.

    Each script item is an ApiResult, an exception to raise, or a callable
    taking (operation, params). The last item repeats once the script runs out.
    """

    def __init__(self, name: str, *script: Any, gate: asyncio.Event | None = None):
        self._name = name
        self.script = list(script) or [ApiResult.ok({"ok": True})]
        self.calls: list[tuple[str, list[Any]]] = []
        self.gate = gate
        self.active = 0
        self.max_active = 0
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return True

    async def invoke(self, operation: str, params: list[Any], timeout: float) -> ApiResult:
        self.calls.append((operation, list(params)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)

            index = min(len(self.calls) - 1, len(self.script) - 1)
            item = self.script[index]
            if callable(item) and not isinstance(item, ApiResult):
                item = item(operation, params)
            if isinstance(item, BaseException):
                raise item
            return item.model_copy() if isinstance(item, ApiResult) else item
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


class CollectingNoticeSink:
    def __init__(self):
        self.notices: list[Notice] = []

    def notify(self, notice: Notice) -> None:
        self.notices.append(notice)

    def of_kind(self, kind: NoticeKind) -> list[Notice]:
        return [n for n in self.notices if n.kind == kind]


def make_settings(**overrides: Any) -> Settings:
    values = {
        "primary_base_url": "http://primary.test/rest/v1",
        "secondary_urls": "",
        "retry_attempts": 2,
        "retry_jitter": False,
        "retry_base_delay": 0.1,
        "retry_max_delay": 1.0,
        "cache_ttl": 60.0,
        "max_concurrent_requests": 5,
        "probe_url": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notices() -> CollectingNoticeSink:
    return CollectingNoticeSink()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def make_client(clock, notices, storage, settings):
    """Factory building a ResilientClient around fake transports."""
    clients: list[ResilientClient] = []

    def factory(
        primary: Transport | None = None,
        secondary: Transport | None = None,
        **kwargs: Any,
    ) -> ResilientClient:
        client = ResilientClient(
            primary=primary or FakeTransport("primary"),
            secondary=secondary,
            storage=kwargs.pop("storage", storage),
            notices=notices,
            clock=clock,
            settings=kwargs.pop("settings", settings),
            **kwargs,
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()
