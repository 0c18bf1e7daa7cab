"""
Live metrics state owned by the app lifespan (counters, registry, broadcaster,
ingest service, reconciler).

Built once at startup, stored on ``app.state.live``; routes get the pieces
through the dependencies below rather than module globals.
"""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from starlette.requests import HTTPConnection

from loanstream.services.counters import CounterStore
from loanstream.services.ingest import LoanIngestService
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.reconciler import ReconciliationLoop
from loanstream.services.registry import ConnectionRegistry


@dataclass
class LiveState:
    counters: CounterStore
    registry: ConnectionRegistry
    broadcaster: LiveBroadcaster
    ingest: LoanIngestService
    reconciler: ReconciliationLoop


def get_live_state(conn: HTTPConnection) -> LiveState:
    live = getattr(conn.app.state, "live", None)
    if live is None:
        raise RuntimeError("Live state not initialized")
    return live


def get_ingest_service(request: Request) -> LoanIngestService:
    return get_live_state(request).ingest
