from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio

from loanstream.db.database import create_engine, create_session_factory, init_models
from loanstream.services.counters import CounterStore
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.registry import Connection, ConnectionRegistry


class FakeTransport:
    """In-memory stand-in for a WebSocket: records frames, can fail or stall."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.closed_with: int | None = None

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def messages(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages()]


@pytest.fixture
def counters() -> CounterStore:
    return CounterStore()


@pytest.fixture
def registry(counters: CounterStore) -> ConnectionRegistry:
    return ConnectionRegistry(counters)


@pytest.fixture
def broadcaster(registry: ConnectionRegistry, counters: CounterStore) -> LiveBroadcaster:
    return LiveBroadcaster(registry, counters)


@pytest.fixture
def make_connection(registry: ConnectionRegistry):
    """Register a connection over a FakeTransport; returns (conn, transport)."""

    async def _make(send_timeout: float = 1.0, **transport_kwargs):
        transport = FakeTransport(**transport_kwargs)
        conn = Connection(transport, send_timeout=send_timeout)
        await registry.register(conn)
        return conn, transport

    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'loans.db'}")
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()
