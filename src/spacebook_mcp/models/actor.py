from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import BaseModel, Field


class Authority(str, Enum):
    ADMIN_FULL = "ADMIN_FULL"
    CEREMONIAL = "CEREMONIAL"
    TECHNICAL = "TECHNICAL"


class Action(str, Enum):
    CHANGE_STATUS = "CHANGE_STATUS"
    APPROVE = "APPROVE"
    SET_CEREMONIAL_OK = "SET_CEREMONIAL_OK"
    SET_TECHNICAL_OK = "SET_TECHNICAL_OK"
    RESOLVE_CONFLICT = "RESOLVE_CONFLICT"


_OPERATIVE = frozenset({Authority.ADMIN_FULL, Authority.CEREMONIAL, Authority.TECHNICAL})

CAPABILITIES: Mapping[Action, frozenset[Authority]] = MappingProxyType(
    {
        Action.CHANGE_STATUS: _OPERATIVE,
        Action.APPROVE: _OPERATIVE,
        Action.SET_CEREMONIAL_OK: frozenset({Authority.ADMIN_FULL, Authority.CEREMONIAL}),
        Action.SET_TECHNICAL_OK: frozenset({Authority.ADMIN_FULL, Authority.TECHNICAL}),
        Action.RESOLVE_CONFLICT: _OPERATIVE,
    }
)


class Actor(BaseModel):
    """A resolved principal and the authorities it holds."""

    id: str
    display_name: Optional[str] = None
    authorities: frozenset[Authority] = Field(default_factory=frozenset)

    def can(self, action: Action) -> bool:
        return can(self, action)


def can(actor: Actor, action: Action) -> bool:
    """Return True if any of the actor's authorities grants ``action``."""
    return bool(actor.authorities & CAPABILITIES[action])
