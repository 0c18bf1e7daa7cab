"""
FastAPI application for the loan intake service.

- Health: /health/live, /health/ready
- API: /api/loan/ingest, /errors, /logs, /stats, /metrics/history, /live/stats
- Push channel: /ws (metrics, newLoan, heartbeat, pong)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from loanstream.core.config import Settings, settings as default_settings
from loanstream.api.health import router as health_router
from loanstream.api.router import router as api_router
from loanstream.api.ws import live_channel
from loanstream.db.crud import count_query
from loanstream.db.database import create_engine, create_session_factory, init_models
from loanstream.services.counters import Counters, CounterStore
from loanstream.services.ingest import LoanIngestService
from loanstream.services.ingest_state import LiveState
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.reconciler import ReconciliationLoop
from loanstream.services.registry import ConnectionRegistry

logger = logging.getLogger("loanstream.api")


def _setup_logging(settings: Settings) -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _setup_logging(settings)

        engine = create_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
        await init_models(engine)
        session_factory = create_session_factory(engine)
        query_counts = count_query(session_factory)

        try:
            initial = await query_counts()
        except Exception as exc:
            logger.warning("could not load initial counts, starting from zero: %s", exc)
            initial = Counters()
        logger.info("metrics initialized: %s", initial.as_dict())

        counters = CounterStore(initial)
        registry = ConnectionRegistry(counters)
        broadcaster = LiveBroadcaster(registry, counters)
        reconciler = ReconciliationLoop(
            counters,
            broadcaster,
            query_counts,
            interval=settings.RECONCILE_INTERVAL_SEC,
            heartbeat_interval=settings.WS_HEARTBEAT_SEC,
        )

        app.state.settings = settings
        app.state.session_factory = session_factory
        app.state.live = LiveState(
            counters=counters,
            registry=registry,
            broadcaster=broadcaster,
            ingest=LoanIngestService(session_factory, counters, broadcaster),
            reconciler=reconciler,
        )
        await reconciler.start()

        yield

        await reconciler.stop()
        await registry.close_all()
        await engine.dispose()

    app = FastAPI(
        title="Loan Intake API",
        description="Loan ingestion with a live metrics push channel",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(api_router, prefix=settings.API_PREFIX)
    app.add_api_websocket_route(settings.WS_PATH, live_channel)
    return app


app = create_app()
