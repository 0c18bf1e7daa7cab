"""LiveBroadcaster: fan-out, failure isolation, slow consumers, ordering."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from pydantic import BaseModel

import loanstream.services.live_broadcast as live_broadcast
from loanstream.services.registry import ConnectionState
from loanstream.services.counters import FAILED, SUCCESS
from loanstream.services.messages import Heartbeat, LoanEventData


def _loan_event(status: str = SUCCESS, **kw) -> LoanEventData:
    return LoanEventData(
        applicant_id=kw.get("applicant_id", "APP-1"),
        status=status,
        error=kw.get("error"),
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        loan_amount=kw.get("loan_amount", 2500.0),
        email=kw.get("email", "a@example.com"),
    )


@pytest.mark.asyncio
async def test_three_clients_get_counts_then_record(counters, broadcaster, make_connection):
    transports = [(await make_connection())[1] for _ in range(3)]

    counters.increment(SUCCESS)
    await broadcaster.notify_counts_changed()
    await broadcaster.notify_record_event(_loan_event())

    for t in transports:
        catch_up, metrics, new_loan = t.messages()
        assert catch_up["data"] == {"total": 0, "success": 0, "failed": 0}
        assert metrics["type"] == "metrics"
        assert metrics["data"] == {"total": 1, "success": 1, "failed": 0}
        assert new_loan["type"] == "newLoan"
        assert new_loan["data"]["status"] == "success"
        assert new_loan["data"]["applicantId"] == "APP-1"


@pytest.mark.asyncio
async def test_failing_member_is_removed_others_still_served(registry, broadcaster, make_connection):
    conn_a, transport_a = await make_connection()
    conn_b, transport_b = await make_connection()
    conn_c, transport_c = await make_connection()
    transport_a.fail = True

    delivered = await broadcaster.broadcast(Heartbeat(timestamp=datetime.now(timezone.utc)))

    assert delivered == 2
    assert conn_a not in registry
    assert conn_b in registry and conn_c in registry
    assert transport_b.types() == ["metrics", "heartbeat"]
    assert transport_c.types() == ["metrics", "heartbeat"]
    assert broadcaster.dropped == 1


@pytest.mark.asyncio
async def test_lone_dead_member_pruned_without_raising(counters, registry, broadcaster, make_connection):
    _, transport = await make_connection()
    transport.fail = True
    assert len(registry) == 1

    counters.increment(FAILED)
    await broadcaster.notify_counts_changed()
    await broadcaster.notify_record_event(_loan_event(FAILED, error="bad"))

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_slow_consumer_is_dropped(registry, broadcaster, make_connection):
    slow, slow_transport = await make_connection(send_timeout=0.05)
    fast, fast_transport = await make_connection(send_timeout=0.05)
    slow_transport.delay = 1.0

    delivered = await broadcaster.heartbeat()

    assert delivered == 1
    assert slow not in registry
    assert fast in registry
    assert fast_transport.types() == ["metrics", "heartbeat"]


@pytest.mark.asyncio
async def test_message_serialised_once(monkeypatch, broadcaster, make_connection):
    for _ in range(3):
        await make_connection()
    calls = []
    real_encode = live_broadcast.encode

    def counting_encode(message):
        calls.append(message)
        return real_encode(message)

    monkeypatch.setattr(live_broadcast, "encode", counting_encode)

    await broadcaster.heartbeat()

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_serialisation_failure_is_contained(registry, broadcaster, make_connection):
    _, transport = await make_connection()

    class Broken(BaseModel):
        def model_dump_json(self, **kwargs):
            raise ValueError("cannot encode")

    assert await broadcaster.broadcast(Broken()) == 0
    assert len(registry) == 1
    assert transport.types() == ["metrics"]


@pytest.mark.asyncio
async def test_no_members_is_a_noop(broadcaster):
    assert await broadcaster.heartbeat() == 0


@pytest.mark.asyncio
async def test_per_connection_order_follows_call_order(counters, broadcaster, make_connection):
    _, transport = await make_connection()
    transport.delay = 0.01

    counters.increment(SUCCESS)
    await asyncio.gather(
        broadcaster.notify_counts_changed(),
        broadcaster.notify_record_event(_loan_event()),
        broadcaster.heartbeat(),
    )

    assert transport.types() == ["metrics", "metrics", "newLoan", "heartbeat"]


@pytest.mark.asyncio
async def test_counts_snapshot_taken_at_call_time(counters, broadcaster, make_connection):
    _, transport = await make_connection()
    transport.delay = 0.01

    counters.increment(SUCCESS)
    pending = asyncio.ensure_future(broadcaster.notify_counts_changed())
    await asyncio.sleep(0)
    counters.increment(SUCCESS)
    await pending

    assert transport.messages()[-1]["data"]["total"] == 1


@pytest.mark.asyncio
async def test_pruned_members_are_closed_so_clients_reconnect(registry, broadcaster, make_connection):
    stalled, stalled_transport = await make_connection(send_timeout=0.05)
    broken, broken_transport = await make_connection(send_timeout=0.05)
    healthy, healthy_transport = await make_connection(send_timeout=0.05)
    stalled_transport.delay = 0.5
    broken_transport.fail = True

    await broadcaster.heartbeat()

    assert list(registry) == [healthy]
    for conn, transport in ((stalled, stalled_transport), (broken, broken_transport)):
        assert transport.closed_with is not None
        assert conn.state is ConnectionState.CLOSED
    assert healthy_transport.closed_with is None
    assert healthy.is_open
