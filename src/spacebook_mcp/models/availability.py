from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field

from spacebook_mcp.models.booking import Status


class AvailabilityParams(BaseModel):
    """What to check: a window on a resource (or a free-text location)."""

    date: dt.date
    start_time: dt.time
    end_time: dt.time
    resource_id: Optional[int] = None
    buffer_before_min: Optional[int] = None
    buffer_after_min: Optional[int] = None
    exclude_booking_id: Optional[int] = None


class ConflictItem(BaseModel):
    booking_id: int
    status: Status
    title: str
    resource_id: Optional[int]
    date: dt.date
    effective_from: str
    effective_to: str
    buffer_before_min: int
    buffer_after_min: int


class AvailabilityResult(BaseModel):
    available: Optional[bool]
    skipped: bool = False
    reason: Optional[str] = None
    effective_from: Optional[str] = None
    effective_to: Optional[str] = None
    conflicts: list[ConflictItem] = Field(default_factory=list)

    @property
    def conflicting_ids(self) -> list[int]:
        return [item.booking_id for item in self.conflicts]


class OccupancyBlock(BaseModel):
    booking_id: int
    effective_from: str
    effective_to: str
    status: Status


class ResourceOccupancy(BaseModel):
    resource_id: int
    date: dt.date
    blocks: list[OccupancyBlock] = Field(default_factory=list)
