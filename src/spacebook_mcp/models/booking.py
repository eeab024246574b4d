from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_BUFFER_MINUTES = 240


class Status(str, Enum):
    REQUESTED = "REQUESTED"
    IN_REVIEW = "IN_REVIEW"
    RESERVED = "RESERVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_blocking(self) -> bool:
        """RESERVED and APPROVED hold the resource."""
        return self in (Status.RESERVED, Status.APPROVED)


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


class SupportMode(str, Enum):
    ATTENDED = "ATTENDED"  # staff present for the whole buffered window
    SETUP_ONLY = "SETUP_ONLY"  # staff only for set-up and tear-down buffers


class BookingDraft(BaseModel):
    """Incoming booking request, validated before it is stored."""

    title: str = Field(min_length=1, max_length=200)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    resource_id: Optional[int] = None
    free_location: Optional[str] = Field(default=None, max_length=200)
    buffer_before_min: Optional[int] = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: Optional[int] = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    priority: Priority = Priority.MEDIUM
    requires_tech: bool = False
    tech_support_mode: SupportMode = SupportMode.ATTENDED

    @field_validator("free_location")
    @classmethod
    def _blank_location_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _check_invariants(self) -> BookingDraft:
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if (self.resource_id is None) == (self.free_location is None):
            raise ValueError("exactly one of resource_id or free_location must be set")
        return self


class Booking(BaseModel):
    """A stored booking. Only the status engine changes status and flags."""

    id: int
    title: str
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    resource_id: Optional[int] = None
    free_location: Optional[str] = None
    buffer_before_min: int = 0
    buffer_after_min: int = 0
    status: Status = Status.REQUESTED
    ceremonial_ok: bool = False
    technical_ok: bool = False
    priority: Priority = Priority.MEDIUM
    requires_tech: bool = False
    tech_support_mode: SupportMode = SupportMode.ATTENDED
    requires_rebooking: bool = False
    active: bool = True
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.now)
    updated_at: dt.datetime = Field(default_factory=dt.datetime.now)

    @property
    def is_resource_bound(self) -> bool:
        return self.resource_id is not None


class StatusOptions(BaseModel):
    booking_id: int
    current: Status
    allowed: list[Status]


class StatusChangeResult(BaseModel):
    booking_id: int
    status: Status
    approval_pending: bool = False
    missing: list[str] = Field(default_factory=list)
    conflict_codes: list[str] = Field(default_factory=list)
