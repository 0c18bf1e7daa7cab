"""Loan API request/response schemas."""
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

APPLICANT_ID_PATTERN = r"^[A-Za-z0-9_-]+$"
EMAIL_PATTERN = r"^\S+@\S+\.\S+$"


class LoanIn(BaseModel):
    """Incoming loan application (camelCase JSON)."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    applicant_id: str = Field(alias="applicantId")
    loan_amount: float = Field(alias="loanAmount", strict=True)
    email: str

    @field_validator("applicant_id")
    @classmethod
    def _applicant_id(cls, v: str) -> str:
        if not v:
            raise ValueError("Applicant ID is required")
        if len(v) > 50:
            raise ValueError("Applicant ID must be less than 50 characters")
        if not re.match(APPLICANT_ID_PATTERN, v):
            raise ValueError(
                "Applicant ID can only contain letters, numbers, hyphens, and underscores"
            )
        return v

    @field_validator("loan_amount")
    @classmethod
    def _loan_amount(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Loan amount must be positive")
        if v < 100:
            raise ValueError("Minimum loan amount is $100")
        if v > 1_000_000:
            raise ValueError("Maximum loan amount is $1,000,000")
        return v

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        if not v:
            raise ValueError("Email is required")
        if not re.match(EMAIL_PATTERN, v):
            raise ValueError("Please enter a valid email address")
        return v


class LoanOut(BaseModel):
    """One stored loan as shown in the dashboard logs."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    applicant_id: Optional[str] = Field(default=None, serialization_alias="applicantId")
    status: str
    error: Optional[str] = None
    timestamp: datetime = Field(validation_alias="created_at")
    loan_amount: Optional[float] = Field(default=None, serialization_alias="loanAmount")
    email: Optional[str] = None


class StatsOut(BaseModel):
    """Counts recomputed from storage."""
    total: int = 0
    success: int = 0
    failed: int = 0
    success_rate: str = Field(default="0", serialization_alias="successRate")


class HistoryBucket(BaseModel):
    timestamp: datetime
    time: str
    total: int = 0
    success: int = 0
    failed: int = 0


class LiveStatsOut(BaseModel):
    """In-memory view: what the dashboards are currently being told."""
    connections: int = 0
    total: int = 0
    success: int = 0
    failed: int = 0
    delivered: int = 0
    dropped: int = 0
    reconciler_state: str = "idle"
    last_reconciled_at: Optional[datetime] = None
