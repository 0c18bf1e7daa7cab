from sqlalchemy import Column, Integer, Float, String, Text, DateTime, Index
from sqlalchemy.orm import DeclarativeBase
import datetime


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


class Loan(Base):
    """
    One loan application as ingested.

    Failed-validation applications are stored too (status="failed", error set),
    with whatever fields could be salvaged from the payload.
    """
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    applicant_id = Column(String(255), unique=True, index=True)
    loan_amount = Column(Float)
    email = Column(Text)
    status = Column(String(16), nullable=False, default="pending")
    error = Column(Text)
    processed_at = Column(DateTime(timezone=True), default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_loans_status_created", "status", "created_at"),
        Index("idx_loans_created", "created_at"),
    )
