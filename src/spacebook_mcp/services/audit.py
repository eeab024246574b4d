from __future__ import annotations

import logging

from spacebook_mcp.db.database import Database
from spacebook_mcp.models.actor import Actor
from spacebook_mcp.models.audit import AuditEntry, AuditKind

logger = logging.getLogger(__name__)


def _trim_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class DatabaseAuditSink:
    """Audit sink writing to the ``audit_log`` table.

    Uses the shared connection, so entries commit or roll back together
    with the booking change that produced them.
    """

    def __init__(self, db: Database):
        self.db = db

    async def append(
        self,
        subject_id: int,
        actor: Actor | None,
        kind: AuditKind,
        from_value: str | None,
        to_value: str | None,
        reason: str | None = None,
        note: str | None = None,
        details: str | None = None,
    ) -> None:
        await self.db.insert_audit_entry(
            AuditEntry(
                booking_id=subject_id,
                actor_id=actor.id if actor else None,
                kind=kind,
                from_value=from_value,
                to_value=to_value,
                reason=_trim_to_none(reason),
                note=_trim_to_none(note),
                details=_trim_to_none(details),
            )
        )
        logger.debug("Audit %s on booking %d: %s -> %s", kind.value, subject_id, from_value, to_value)
