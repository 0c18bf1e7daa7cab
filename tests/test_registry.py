"""Connection registry: join catch-up, idempotent removal, snapshot iteration, drain."""
from __future__ import annotations

import pytest

from conftest import FakeTransport
from loanstream.services.counters import FAILED, SUCCESS, CounterStore
from loanstream.services.registry import Connection, ConnectionRegistry, ConnectionState


@pytest.mark.asyncio
async def test_register_sends_current_counts(counters: CounterStore, registry, make_connection):
    counters.increment(SUCCESS)
    counters.increment(FAILED)

    conn, transport = await make_connection()

    assert conn in registry
    [msg] = transport.messages()
    assert msg["type"] == "metrics"
    assert msg["data"] == {"total": 2, "success": 1, "failed": 1}
    assert "timestamp" in msg


@pytest.mark.asyncio
async def test_register_with_dead_transport_is_rolled_back(registry: ConnectionRegistry):
    conn = Connection(FakeTransport(fail=True))

    assert await registry.register(conn) is False
    assert conn not in registry
    assert len(registry) == 0
    assert conn.state is ConnectionState.CLOSED
    assert conn.transport.closed_with is not None


@pytest.mark.asyncio
async def test_unregister_is_idempotent(registry: ConnectionRegistry, make_connection):
    conn, _ = await make_connection()

    registry.unregister(conn)
    registry.unregister(conn)
    registry.unregister(Connection(FakeTransport()))

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_iteration_tolerates_removal(registry: ConnectionRegistry, make_connection):
    conns = [(await make_connection())[0] for _ in range(4)]

    seen = []
    for conn in registry:
        seen.append(conn)
        registry.unregister(conn)

    assert sorted(c.id for c in seen) == sorted(c.id for c in conns)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_snapshot_is_point_in_time(registry: ConnectionRegistry, make_connection):
    first, _ = await make_connection()
    snap = registry.snapshot()
    second, _ = await make_connection()

    assert snap == (first,)
    assert set(registry.snapshot()) == {first, second}


@pytest.mark.asyncio
async def test_repeated_connect_cycles_leave_nothing_behind(registry: ConnectionRegistry):
    for _ in range(50):
        conn = Connection(FakeTransport())
        await registry.register(conn)
        registry.unregister(conn)

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_close_all_drains_and_closes(registry: ConnectionRegistry, make_connection):
    pairs = [await make_connection() for _ in range(3)]

    closed = await registry.close_all()

    assert closed == 3
    assert len(registry) == 0
    for conn, transport in pairs:
        assert conn.state is ConnectionState.CLOSED
        assert transport.closed_with == 1001


@pytest.mark.asyncio
async def test_send_after_close_is_refused():
    transport = FakeTransport()
    conn = Connection(transport)
    await conn.close()

    assert await conn.send("{}") is False
    assert transport.sent == []
