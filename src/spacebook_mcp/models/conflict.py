from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from spacebook_mcp.models.booking import Status


class ConflictStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ConflictDecision(str, Enum):
    KEEP_NEW = "KEEP_NEW"  # the displacing booking keeps the slot
    KEEP_DISPLACED = "KEEP_DISPLACED"


class ConflictRecord(BaseModel):
    """Ledger entry created when a HIGH priority booking displaces another."""

    id: int | None = None
    conflict_code: str
    displacing_booking_id: int
    displaced_booking_id: int
    resource_id: int
    date: dt.date
    from_time: dt.time
    to_time: dt.time
    status: ConflictStatus = ConflictStatus.OPEN
    decision: Optional[ConflictDecision] = None
    created_by: str
    decision_by: Optional[str] = None
    reason: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.now)
    closed_at: Optional[dt.datetime] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> ConflictRecord:
        if self.displacing_booking_id == self.displaced_booking_id:
            raise ValueError("a booking cannot displace itself")
        if (self.decision is None) != (self.closed_at is None):
            raise ValueError("decision and closed_at are set together")
        if (self.status is ConflictStatus.RESOLVED) != (self.decision is not None):
            raise ValueError("only resolved conflicts carry a decision")
        return self


class FollowUp(BaseModel):
    """Status change the caller is expected to apply next."""

    booking_id: int
    target: Status


class ConflictResolution(BaseModel):
    conflict_code: str
    decision: ConflictDecision
    status: ConflictStatus = ConflictStatus.RESOLVED
    losing_booking_id: int
    follow_up: Optional[FollowUp] = None
