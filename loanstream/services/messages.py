"""
Push-channel wire messages.

Every message carries a ``type`` tag and its own timestamp so a dashboard can
interpret it without any earlier context:

- metrics  : counter snapshot
- newLoan  : one record reached a terminal outcome
- heartbeat: keepalive frame
- pong     : reply to a client ``{"type": "ping"}``
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from loanstream.services.counters import Counters


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricsData(BaseModel):
    total: int = Field(ge=0)
    success: int = Field(ge=0)
    failed: int = Field(ge=0)


class CountsUpdate(BaseModel):
    type: Literal["metrics"] = "metrics"
    data: MetricsData
    timestamp: datetime

    @classmethod
    def from_counters(cls, counters: Counters, at: datetime) -> "CountsUpdate":
        return cls(data=MetricsData(**counters.as_dict()), timestamp=at)


class LoanEventData(BaseModel):
    """Public shape of a record outcome (camelCase on the wire)."""
    model_config = ConfigDict(populate_by_name=True)

    applicant_id: Optional[str] = Field(default=None, alias="applicantId")
    status: Literal["success", "failed"]
    error: Optional[str] = None
    timestamp: datetime
    loan_amount: Optional[float] = Field(default=None, alias="loanAmount")
    email: Optional[str] = None


class RecordEvent(BaseModel):
    type: Literal["newLoan"] = "newLoan"
    data: LoanEventData
    timestamp: datetime


class Heartbeat(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime


class Pong(BaseModel):
    type: Literal["pong"] = "pong"
    timestamp: datetime


BroadcastMessage = Annotated[
    Union[CountsUpdate, RecordEvent, Heartbeat, Pong],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[BroadcastMessage] = TypeAdapter(BroadcastMessage)


def encode(message: BaseModel) -> str:
    """Serialise a message to its JSON wire form."""
    return message.model_dump_json(by_alias=True)


def decode(raw: str | bytes) -> BroadcastMessage:
    """Parse a wire message back into its tagged model (used by clients)."""
    return _message_adapter.validate_json(raw)
