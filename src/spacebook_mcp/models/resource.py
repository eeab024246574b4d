from __future__ import annotations

from pydantic import BaseModel, Field

from spacebook_mcp.models.booking import MAX_BUFFER_MINUTES


class ResourceInfo(BaseModel):
    """What the booking engine needs to know about a bookable resource."""

    id: int
    name: str
    active: bool = True
    default_buffer_before_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    default_buffer_after_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
