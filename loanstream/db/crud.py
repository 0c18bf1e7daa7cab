"""Loan persistence and the aggregate queries the live metrics rely on."""
from __future__ import annotations

import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loanstream.db.models import Loan
from loanstream.services.counters import FAILED, SUCCESS, Counters


async def insert_loan(
    session: AsyncSession,
    *,
    status: str,
    applicant_id: Optional[str],
    loan_amount: Optional[float],
    email: Optional[str],
    error: Optional[str] = None,
) -> Loan:
    """Insert and commit one loan row. IntegrityError propagates (duplicate applicant)."""
    now = datetime.datetime.now(datetime.timezone.utc)
    loan = Loan(
        applicant_id=applicant_id,
        loan_amount=loan_amount,
        email=email,
        status=status,
        error=error,
        processed_at=now,
        created_at=now,
    )
    session.add(loan)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return loan


async def query_counts(session: AsyncSession) -> Counters:
    """Full recount: total plus per-status counts in one grouped query."""
    rows = (
        await session.execute(select(Loan.status, func.count()).group_by(Loan.status))
    ).all()
    by_status: dict[str, int] = {status: n for status, n in rows}
    return Counters(
        total=sum(by_status.values()),
        success=by_status.get(SUCCESS, 0),
        failed=by_status.get(FAILED, 0),
    )


def count_query(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[], Awaitable[Counters]]:
    """Bind query_counts to a session factory (each call opens its own session)."""

    async def _query() -> Counters:
        async with session_factory() as session:
            return await query_counts(session)

    return _query


async def recent_loans(
    session: AsyncSession, limit: int = 100, status: Optional[str] = None
) -> list[Loan]:
    stmt = select(Loan).order_by(Loan.created_at.desc(), Loan.id.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(Loan.status == status)
    return list((await session.execute(stmt)).scalars())


async def loans_since(session: AsyncSession, since: datetime.datetime) -> list[Loan]:
    stmt = select(Loan).where(Loan.created_at >= since).order_by(Loan.created_at)
    return list((await session.execute(stmt)).scalars())


def hourly_buckets(loans: list[Loan]) -> list[dict[str, Any]]:
    """Group loans by UTC hour: [{timestamp, time, total, success, failed}, ...]."""
    buckets: dict[datetime.datetime, dict[str, int]] = {}
    for loan in loans:
        created = loan.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=datetime.timezone.utc)
        hour = created.astimezone(datetime.timezone.utc).replace(
            minute=0, second=0, microsecond=0
        )
        b = buckets.setdefault(hour, {"total": 0, "success": 0, "failed": 0})
        b["total"] += 1
        if loan.status in (SUCCESS, FAILED):
            b[loan.status] += 1
    return [
        {"timestamp": hour, "time": hour.strftime("%H:%M"), **counts}
        for hour, counts in sorted(buckets.items())
    ]


async def ping(session: AsyncSession) -> None:
    await session.execute(text("SELECT 1"))
