"""Wire format of push-channel messages."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from loanstream.services.counters import Counters
from loanstream.services.messages import (
    CountsUpdate,
    Heartbeat,
    LoanEventData,
    RecordEvent,
    decode,
    encode,
)

AT = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def test_metrics_wire_shape():
    wire = json.loads(encode(CountsUpdate.from_counters(Counters(3, 2, 1), AT)))

    assert wire["type"] == "metrics"
    assert wire["data"] == {"total": 3, "success": 2, "failed": 1}
    assert datetime.fromisoformat(wire["timestamp"].replace("Z", "+00:00")) == AT


def test_new_loan_wire_shape_uses_camel_case():
    event = RecordEvent(
        data=LoanEventData(
            applicant_id="APP-9", status="failed", error="Email is required", timestamp=AT
        ),
        timestamp=AT,
    )
    wire = json.loads(encode(event))

    assert wire["type"] == "newLoan"
    assert set(wire["data"]) == {"applicantId", "status", "error", "timestamp", "loanAmount", "email"}
    assert wire["data"]["applicantId"] == "APP-9"
    assert wire["data"]["loanAmount"] is None
    assert wire["data"]["email"] is None


def test_decode_dispatches_on_type():
    raw = encode(RecordEvent(
        data=LoanEventData(applicant_id="A", status="success", timestamp=AT, loan_amount=100.0),
        timestamp=AT,
    ))
    msg = decode(raw)

    assert isinstance(msg, RecordEvent)
    assert msg.data.loan_amount == 100.0
    assert isinstance(decode(encode(Heartbeat(timestamp=AT))), Heartbeat)


def test_decode_rejects_untagged_message():
    with pytest.raises(ValidationError):
        decode('{"data": {"total": 1}}')


def test_negative_counts_are_not_representable():
    with pytest.raises(ValidationError):
        CountsUpdate.from_counters(Counters(total=-1), AT)
