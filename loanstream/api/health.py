"""Health endpoints: liveness and readiness."""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from loanstream.db.crud import ping

router = APIRouter(tags=["health"])
logger = logging.getLogger("loanstream.health")


@router.get("/health/live")
async def liveness():
    """Liveness: process is running. No dependencies checked."""
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness: database is reachable and the metrics reconciler is running."""
    errors = []
    try:
        async with request.app.state.session_factory() as session:
            await ping(session)
    except Exception as e:
        logger.warning("DB readiness check failed: %s", e)
        errors.append("database")

    live = getattr(request.app.state, "live", None)
    if live is None or not live.reconciler.running:
        errors.append("reconciler")

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "errors": errors},
        )
    return {"status": "ok", "connections": live.broadcaster.subscriber_count}
