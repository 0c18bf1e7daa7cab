"""
Loan ingestion: validate, persist, count, broadcast.

Every call ends in exactly one terminal outcome. Validation failures,
duplicate applicant ids and unexpected storage errors are all counted as
"failed". Validation failures and duplicates are persisted as failed rows
(a duplicate row carries no applicant id, since the column is unique), so
reconciliation agrees with the live counters. A storage error cannot be
persisted: dashboards see failed +1 at once and the next reconciliation tick
steps it back to what the database holds.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loanstream.db.crud import insert_loan
from loanstream.db.models import Loan
from loanstream.db.schemas import LoanIn
from loanstream.services.counters import FAILED, SUCCESS, CounterStore
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.messages import LoanEventData

logger = logging.getLogger("loanstream.ingest")

DUPLICATE_ERROR = "Applicant ID already exists. Please use a unique ID."
INTERNAL_ERROR = "Internal server error. Please try again."


@dataclass(frozen=True)
class IngestResult:
    outcome: str
    kind: str  # accepted | invalid | duplicate | error
    applicant_id: Optional[str] = None
    error: Optional[str] = None
    loan_id: Optional[int] = None


def first_error(exc: ValidationError) -> str:
    """Human message for the first validation error, e.g. 'Minimum loan amount is $100'."""
    err = exc.errors()[0]
    if err["type"] == "value_error":
        return str(err["ctx"]["error"])
    field = ".".join(str(p) for p in err["loc"]) or "body"
    return f"{field}: {err['msg']}"


def _salvage(payload: Any) -> dict[str, Any]:
    """Best-effort fields from an invalid payload, for the failed row and its event."""
    if not isinstance(payload, dict):
        return {"applicant_id": None, "loan_amount": None, "email": None}
    applicant_id = payload.get("applicantId")
    amount = payload.get("loanAmount")
    email = payload.get("email")
    return {
        "applicant_id": str(applicant_id)[:255] if applicant_id not in (None, "") else None,
        "loan_amount": float(amount)
        if isinstance(amount, (int, float)) and not isinstance(amount, bool)
        else None,
        "email": email if isinstance(email, str) and email else None,
    }


def event_from_loan(loan: Loan) -> LoanEventData:
    return LoanEventData(
        applicant_id=loan.applicant_id,
        status=loan.status,
        error=loan.error,
        timestamp=loan.created_at,
        loan_amount=loan.loan_amount,
        email=loan.email,
    )


class LoanIngestService:
    """Ingestion boundary: the only caller of CounterStore.increment."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        counters: CounterStore,
        broadcaster: LiveBroadcaster,
    ):
        self._session_factory = session_factory
        self._counters = counters
        self._broadcaster = broadcaster

    async def ingest(self, payload: Any) -> IngestResult:
        try:
            loan_in = LoanIn.model_validate(payload)
        except ValidationError as exc:
            return await self._reject(payload, first_error(exc))

        try:
            async with self._session_factory() as session:
                loan = await insert_loan(
                    session,
                    status=SUCCESS,
                    applicant_id=loan_in.applicant_id,
                    loan_amount=loan_in.loan_amount,
                    email=loan_in.email,
                )
        except IntegrityError:
            logger.info("duplicate applicant %s", loan_in.applicant_id)
            return await self._record_duplicate(
                loan_in.applicant_id, loan_amount=loan_in.loan_amount, email=loan_in.email
            )
        except Exception:
            logger.exception("could not persist loan %s", loan_in.applicant_id)
            return await self._fail_unpersisted(
                "error", loan_in.applicant_id, INTERNAL_ERROR,
                loan_amount=loan_in.loan_amount, email=loan_in.email,
            )

        await self.record_terminal(SUCCESS, event_from_loan(loan))
        logger.info("loan %s accepted", loan.applicant_id)
        return IngestResult(SUCCESS, "accepted", loan.applicant_id, loan_id=loan.id)

    async def _reject(self, payload: Any, error: str) -> IngestResult:
        fields = _salvage(payload)
        logger.info("loan %s failed validation: %s", fields["applicant_id"], error)
        try:
            async with self._session_factory() as session:
                loan = await insert_loan(session, status=FAILED, error=error, **fields)
        except IntegrityError:
            return await self._record_duplicate(
                fields["applicant_id"], loan_amount=fields["loan_amount"], email=fields["email"]
            )
        except Exception:
            logger.exception("could not persist failed loan %s", fields["applicant_id"])
            return await self._fail_unpersisted(
                "error", fields["applicant_id"], INTERNAL_ERROR,
                loan_amount=fields["loan_amount"], email=fields["email"],
            )

        await self.record_terminal(FAILED, event_from_loan(loan))
        return IngestResult(FAILED, "invalid", fields["applicant_id"], error=error, loan_id=loan.id)

    async def _record_duplicate(
        self,
        applicant_id: Optional[str],
        *,
        loan_amount: Optional[float] = None,
        email: Optional[str] = None,
    ) -> IngestResult:
        try:
            async with self._session_factory() as session:
                loan = await insert_loan(
                    session,
                    status=FAILED,
                    applicant_id=None,
                    loan_amount=loan_amount,
                    email=email,
                    error=DUPLICATE_ERROR,
                )
        except Exception:
            logger.exception("could not persist duplicate %s", applicant_id)
            return await self._fail_unpersisted(
                "duplicate", applicant_id, DUPLICATE_ERROR,
                loan_amount=loan_amount, email=email,
            )

        event = event_from_loan(loan).model_copy(update={"applicant_id": applicant_id})
        await self.record_terminal(FAILED, event)
        return IngestResult(FAILED, "duplicate", applicant_id, error=DUPLICATE_ERROR, loan_id=loan.id)

    async def _fail_unpersisted(
        self,
        kind: str,
        applicant_id: Optional[str],
        error: str,
        *,
        loan_amount: Optional[float] = None,
        email: Optional[str] = None,
    ) -> IngestResult:
        event = LoanEventData(
            applicant_id=applicant_id,
            status=FAILED,
            error=error,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            loan_amount=loan_amount,
            email=email,
        )
        await self.record_terminal(FAILED, event)
        return IngestResult(FAILED, kind, applicant_id, error=error)

    async def record_terminal(self, outcome: str, record: LoanEventData) -> None:
        """Count one terminal record, then push counts before the record event."""
        self._counters.increment(outcome)
        try:
            await self._broadcaster.notify_counts_changed()
            await self._broadcaster.notify_record_event(record)
        except Exception:
            logger.exception("live broadcast failed for %s", record.applicant_id)
