from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AuditKind(str, Enum):
    STATUS = "STATUS"
    CEREMONIAL_OK = "CEREMONIAL_OK"
    TECHNICAL_OK = "TECHNICAL_OK"
    REPROGRAM = "REPROGRAM"
    PRIORITY_CONFLICT = "PRIORITY_CONFLICT"
    CONFLICT_DECISION = "CONFLICT_DECISION"


class AuditEntry(BaseModel):
    id: int | None = None
    booking_id: int
    actor_id: Optional[str] = None
    kind: AuditKind
    from_value: Optional[str] = None
    to_value: Optional[str] = None
    reason: Optional[str] = None
    note: Optional[str] = None
    details: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.now)
