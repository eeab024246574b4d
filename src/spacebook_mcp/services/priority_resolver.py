from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import ForbiddenError, IllegalTransitionError, NotFoundError, PriorityTieError
from spacebook_mcp.interfaces import AuditSink, NotificationSink
from spacebook_mcp.models.actor import Action, Actor
from spacebook_mcp.models.audit import AuditKind
from spacebook_mcp.models.availability import AvailabilityResult
from spacebook_mcp.models.booking import Booking, Priority, Status
from spacebook_mcp.models.conflict import (
    ConflictDecision,
    ConflictRecord,
    ConflictResolution,
    ConflictStatus,
    FollowUp,
)
from spacebook_mcp.services.audit import DatabaseAuditSink
from spacebook_mcp.services.event_bus import (
    PRIORITY_CONFLICT_CREATED,
    PRIORITY_CONFLICT_RESOLVED,
    EventBus,
)
from spacebook_mcp.services.transitions import is_allowed

logger = logging.getLogger(__name__)


def is_higher(candidate: Priority, other: Priority) -> bool:
    return candidate.rank > other.rank


def build_code(date: dt.date, sequence: int) -> str:
    return f"PRIO-{date.strftime('%Y%m%d')}-{sequence:05d}"


class PriorityConflictResolver:
    """Lets a HIGH priority booking displace lower ones and keeps the ledger.

    Displacement never changes the displaced booking's status: it opens a
    ConflictRecord and flags the booking for rebooking. A person closes the
    record later through ``resolve_conflict`` and then applies whatever
    status change the decision calls for.
    """

    def __init__(
        self,
        db: Database,
        audit: AuditSink | None = None,
        notifications: NotificationSink | None = None,
    ):
        self.db = db
        self.audit: AuditSink = audit or DatabaseAuditSink(db)
        self.notifications: NotificationSink = notifications or EventBus()

    # ------------------------------------------------------------------
    # Unit-of-work API (called by the status engine)
    # ------------------------------------------------------------------

    async def select_displaced(
        self, candidate: Booking, availability: AvailabilityResult
    ) -> list[Booking]:
        """Bookings the candidate may push aside; raises on a HIGH vs HIGH tie."""
        conflict_ids = [i for i in availability.conflicting_ids if i != candidate.id]
        if not conflict_ids:
            return []

        conflicting = await self.db.get_bookings(conflict_ids)
        tied = [b.id for b in conflicting if b.priority is Priority.HIGH]
        if tied:
            logger.warning("Priority tie: booking %d vs HIGH bookings %s", candidate.id, tied)
            raise PriorityTieError(candidate.id, tied)

        return [b for b in conflicting if is_higher(candidate.priority, b.priority)]

    async def register_conflicts(
        self, displacing: Booking, displaced: list[Booking], actor: Actor
    ) -> list[ConflictRecord]:
        """Open one record per displaced booking not already open against ``displacing``."""
        if not displaced:
            return []
        if displacing.resource_id is None:
            raise ValueError("only resource-bound bookings can displace others")

        already_open = {
            r.displaced_booking_id
            for r in await self.db.find_open_conflicts(displacing_booking_id=displacing.id)
        }
        sequence = await self.db.count_conflicts_for_date(displacing.date)

        created: list[ConflictRecord] = []
        for booking in displaced:
            if booking.id in already_open:
                continue
            sequence += 1
            record = ConflictRecord(
                conflict_code=build_code(displacing.date, sequence),
                displacing_booking_id=displacing.id,
                displaced_booking_id=booking.id,
                resource_id=displacing.resource_id,
                date=displacing.date,
                from_time=displacing.start_time,
                to_time=displacing.end_time,
                status=ConflictStatus.OPEN,
                created_by=actor.id,
            )
            record.id = await self.db.insert_conflict(record)
            await self.db.set_requires_rebooking(booking.id, True)
            await self.audit.append(
                booking.id,
                actor,
                AuditKind.PRIORITY_CONFLICT,
                None,
                record.conflict_code,
                details=f"Displaced by booking {displacing.id}",
            )
            already_open.add(booking.id)
            created.append(record)
            logger.info(
                "Opened %s: booking %d displaces booking %d",
                record.conflict_code,
                displacing.id,
                booking.id,
            )
        return created

    async def announce(self, records: list[ConflictRecord]) -> None:
        """Notify listeners about new records; call only after commit."""
        for record in records:
            await self.notifications.publish(PRIORITY_CONFLICT_CREATED, _event_payload(record))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self,
        conflict_code: str,
        decision: ConflictDecision,
        actor: Actor,
        target: Status | None = None,
        reason: str | None = None,
    ) -> ConflictResolution:
        """Close an OPEN record. Status changes stay with the caller."""
        if not actor.can(Action.RESOLVE_CONFLICT):
            raise ForbiddenError("ROLE_NOT_ALLOWED")

        async with self.db.transaction():
            record = await self.db.get_conflict(conflict_code)
            if record is None:
                raise NotFoundError(f"Conflict {conflict_code} not found")
            if record.status is ConflictStatus.RESOLVED:
                raise IllegalTransitionError(f"Conflict {conflict_code} is already resolved")

            losing_id = (
                record.displaced_booking_id
                if decision is ConflictDecision.KEEP_NEW
                else record.displacing_booking_id
            )
            follow_up = None
            if target is not None:
                loser = await self.db.get_booking(losing_id)
                if loser is None or not loser.active:
                    raise NotFoundError(f"Booking {losing_id} not found")
                if not is_allowed(loser.status, target):
                    raise IllegalTransitionError(
                        f"Booking {losing_id} cannot go from {loser.status.value} to {target.value}"
                    )
                follow_up = FollowUp(booking_id=losing_id, target=target)

            reason = reason.strip() if reason and reason.strip() else None
            if not await self.db.close_conflict(
                conflict_code, decision, actor.id, reason, dt.datetime.now()
            ):
                raise IllegalTransitionError(f"Conflict {conflict_code} is already resolved")

            if not await self.db.find_open_conflicts(
                displaced_booking_id=record.displaced_booking_id
            ):
                await self.db.set_requires_rebooking(record.displaced_booking_id, False)

            await self.audit.append(
                record.displaced_booking_id,
                actor,
                AuditKind.CONFLICT_DECISION,
                ConflictStatus.OPEN.value,
                decision.value,
                reason=reason,
                details=f"{conflict_code}: booking {losing_id} loses",
            )

        logger.info("Resolved %s as %s by %s", conflict_code, decision.value, actor.id)
        await self.notifications.publish(
            PRIORITY_CONFLICT_RESOLVED,
            {
                "conflict_code": conflict_code,
                "decision": decision.value,
                "losing_booking_id": losing_id,
            },
        )
        return ConflictResolution(
            conflict_code=conflict_code,
            decision=decision,
            status=ConflictStatus.RESOLVED,
            losing_booking_id=losing_id,
            follow_up=follow_up,
        )

    async def get_open_conflicts(self, booking_id: int) -> list[ConflictRecord]:
        """OPEN records where the booking is either side."""
        async with self.db.snapshot():
            displacing = await self.db.find_open_conflicts(displacing_booking_id=booking_id)
            displaced = await self.db.find_open_conflicts(displaced_booking_id=booking_id)
        return sorted([*displacing, *displaced], key=lambda r: r.id or 0)


def _event_payload(record: ConflictRecord) -> dict[str, Any]:
    return {
        "conflict_code": record.conflict_code,
        "displacing_booking_id": record.displacing_booking_id,
        "displaced_booking_id": record.displaced_booking_id,
        "resource_id": record.resource_id,
        "date": record.date.isoformat(),
        "from": record.from_time.strftime("%H:%M"),
        "to": record.to_time.strftime("%H:%M"),
    }
