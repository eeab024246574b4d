from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from spacebook_mcp.models.booking import Status

ALLOWED_TRANSITIONS: Mapping[Status, tuple[Status, ...]] = MappingProxyType(
    {
        Status.REQUESTED: (Status.IN_REVIEW,),
        Status.IN_REVIEW: (Status.RESERVED, Status.REJECTED, Status.APPROVED),
        Status.RESERVED: (Status.APPROVED, Status.REJECTED, Status.IN_REVIEW),
        Status.APPROVED: (Status.IN_REVIEW,),
        Status.REJECTED: (),
    }
)


def allowed_transitions(current: Status) -> tuple[Status, ...]:
    return ALLOWED_TRANSITIONS.get(current, ())


def is_allowed(current: Status, target: Status) -> bool:
    return target in allowed_transitions(current)
