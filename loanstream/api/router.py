"""
Loan API: ingestion plus the read endpoints behind the dashboard.

- POST /ingest          : validate + persist one application, push live updates
- GET  /errors          : latest failed records
- GET  /logs            : latest records, oldest first
- GET  /stats           : counts recomputed from storage
- GET  /metrics/history : last 24h grouped by hour
- GET  /live/stats      : in-memory counters and push-channel stats
"""
import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from loanstream.db.crud import hourly_buckets, loans_since, query_counts, recent_loans
from loanstream.db.database import get_db
from loanstream.db.schemas import HistoryBucket, LiveStatsOut, LoanOut, StatsOut
from loanstream.services.counters import FAILED
from loanstream.services.ingest import LoanIngestService
from loanstream.services.ingest_state import LiveState, get_ingest_service, get_live_state

router = APIRouter()


@router.post("/ingest", summary="Ingest one loan application")
async def ingest_loan(
    payload: Any = Body(...),
    service: LoanIngestService = Depends(get_ingest_service),
):
    result = await service.ingest(payload)
    if result.kind == "accepted":
        return {
            "success": True,
            "message": "Loan application processed successfully",
            "applicantId": result.applicant_id,
            "loanId": result.loan_id,
        }
    if result.kind == "invalid":
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": result.error, "applicantId": result.applicant_id},
        )
    if result.kind == "duplicate":
        return JSONResponse(status_code=400, content={"success": False, "error": result.error})
    return JSONResponse(status_code=500, content={"success": False, "error": result.error})


@router.get("/errors", response_model=list[LoanOut])
async def error_logs(db: AsyncSession = Depends(get_db)):
    """Latest 50 failed records, newest first."""
    return await recent_loans(db, limit=50, status=FAILED)


@router.get("/logs", response_model=list[LoanOut])
async def logs(db: AsyncSession = Depends(get_db)):
    """Latest 100 records, oldest first for display."""
    loans = await recent_loans(db, limit=100)
    return list(reversed(loans))


@router.get("/stats", response_model=StatsOut)
async def stats(db: AsyncSession = Depends(get_db)):
    counts = await query_counts(db)
    rate = f"{counts.success / counts.total * 100:.1f}" if counts.total else "0"
    return StatsOut(**counts.as_dict(), success_rate=rate)


@router.get("/metrics/history", response_model=list[HistoryBucket])
async def metrics_history(db: AsyncSession = Depends(get_db)):
    since = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=24)
    return hourly_buckets(await loans_since(db, since))


@router.get("/live/stats", response_model=LiveStatsOut)
async def live_stats(live: LiveState = Depends(get_live_state)):
    snapshot = live.counters.snapshot()
    return LiveStatsOut(
        connections=live.broadcaster.subscriber_count,
        **snapshot.as_dict(),
        delivered=live.broadcaster.sent,
        dropped=live.broadcaster.dropped,
        reconciler_state=live.reconciler.state.value,
        last_reconciled_at=live.reconciler.stats["last_reconciled_at"],
    )
