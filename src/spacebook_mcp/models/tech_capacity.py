from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field

from spacebook_mcp.models.booking import Status, SupportMode


class TechCapacityConfig(BaseModel):
    """Singleton row bounding concurrent technical-support bookings."""

    block_minutes: int = Field(default=30, gt=0, le=1440)
    slots_per_block: int = Field(default=10, ge=0)
    active: bool = True
    timezone: Optional[str] = "UTC"
    notes: Optional[str] = None


class CapacityBlock(BaseModel):
    start: dt.time
    end: str  # "24:00" for the last block of the day
    used: int
    available: int


class TechCapacityOverview(BaseModel):
    date: dt.date
    block_minutes: int
    slots_per_block: int
    blocks: list[CapacityBlock] = Field(default_factory=list)


class TechBooking(BaseModel):
    booking_id: int
    title: str
    resource_id: Optional[int]
    start_time: dt.time
    end_time: dt.time
    status: Status
    tech_support_mode: SupportMode
