from __future__ import annotations

import logging
from dataclasses import dataclass, field

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import (
    AvailabilityConflictError,
    BookingError,
    BookingValidationError,
    CapacityExceededError,
    ForbiddenError,
    IllegalTransitionError,
    NotFoundError,
)
from spacebook_mcp.interfaces import AuditSink, NotificationSink
from spacebook_mcp.models.actor import Action, Actor
from spacebook_mcp.models.audit import AuditKind
from spacebook_mcp.models.booking import Booking, Priority, Status, StatusChangeResult, StatusOptions
from spacebook_mcp.models.conflict import ConflictRecord
from spacebook_mcp.services.audit import DatabaseAuditSink
from spacebook_mcp.services.availability import AvailabilityChecker
from spacebook_mcp.services.event_bus import BOOKING_STATUS_CHANGED, EventBus
from spacebook_mcp.services.priority_resolver import PriorityConflictResolver
from spacebook_mcp.services.tech_capacity import TechCapacityGate
from spacebook_mcp.services.transitions import allowed_transitions, is_allowed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangeRequest:
    target: Status
    reason: str | None = None
    note: str | None = None
    ceremonial_ok: bool | None = None
    technical_ok: bool | None = None


@dataclass
class _Outcome:
    result: StatusChangeResult
    previous: Status
    created: list[ConflictRecord] = field(default_factory=list)


def _flag(value: bool) -> str:
    return "true" if value else "false"


class StatusTransitionEngine:
    """The booking workflow state machine.

    Every call is one unit of work: the availability check, the technical
    capacity gate, flag updates, conflict records and audit entries commit
    together or not at all. The true state of a booking is its status plus
    both approval flags, since an approval may raise flags and still leave
    the status where it was.
    """

    def __init__(
        self,
        db: Database,
        availability: AvailabilityChecker | None = None,
        tech_gate: TechCapacityGate | None = None,
        resolver: PriorityConflictResolver | None = None,
        audit: AuditSink | None = None,
        notifications: NotificationSink | None = None,
    ):
        self.db = db
        self.audit: AuditSink = audit or DatabaseAuditSink(db)
        self.notifications: NotificationSink = notifications or EventBus()
        self.availability = availability or AvailabilityChecker(db)
        self.tech_gate = tech_gate or TechCapacityGate(db)
        self.resolver = resolver or PriorityConflictResolver(db, self.audit, self.notifications)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_status_options(self, booking_id: int) -> StatusOptions:
        async with self.db.snapshot():
            booking = await self._load(booking_id)
        return StatusOptions(
            booking_id=booking.id,
            current=booking.status,
            allowed=list(allowed_transitions(booking.status)),
        )

    async def change_status(
        self,
        booking_id: int,
        target: Status,
        actor: Actor,
        reason: str | None = None,
        note: str | None = None,
        ceremonial_ok: bool | None = None,
        technical_ok: bool | None = None,
    ) -> StatusChangeResult:
        request = StatusChangeRequest(
            target=Status(target),
            reason=reason,
            note=note,
            ceremonial_ok=ceremonial_ok,
            technical_ok=technical_ok,
        )
        try:
            outcome = await self._change_status(booking_id, request, actor)
        except BookingError as exc:
            logger.warning(
                "Status change of booking %s to %s by %s refused: %s %s",
                booking_id,
                request.target.value,
                actor.id,
                exc.code,
                exc.message,
            )
            raise

        result = outcome.result
        if not result.approval_pending:
            logger.info(
                "Booking %d: %s -> %s by %s",
                booking_id,
                outcome.previous.value,
                result.status.value,
                actor.id,
            )
            await self.notifications.publish(
                BOOKING_STATUS_CHANGED,
                {
                    "booking_id": booking_id,
                    "from": outcome.previous.value,
                    "to": result.status.value,
                    "actor_id": actor.id,
                },
            )
        await self.resolver.announce(outcome.created)
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _change_status(
        self, booking_id: int, request: StatusChangeRequest, actor: Actor
    ) -> _Outcome:
        if not actor.can(Action.CHANGE_STATUS):
            raise ForbiddenError("ROLE_NOT_ALLOWED")

        async with self.db.transaction():
            booking = await self._load(booking_id)
            if not is_allowed(booking.status, request.target):
                raise IllegalTransitionError(
                    f"Transition from {booking.status.value} to {request.target.value} is not allowed"
                )

            if request.target is Status.APPROVED:
                return await self._approve(booking, actor, request)
            if request.target is Status.RESERVED:
                return await self._reserve(booking, actor, request)
            if request.target is Status.IN_REVIEW:
                return await self._revert(booking, actor, request)
            if request.target is Status.REJECTED:
                return await self._reject(booking, actor, request)
            raise IllegalTransitionError(f"Cannot transition back to {request.target.value}")

    async def _reserve(
        self, booking: Booking, actor: Actor, request: StatusChangeRequest
    ) -> _Outcome:
        displaced = await self._ensure_available(booking)
        await self._ensure_tech_capacity(booking)

        await self.db.update_booking_workflow(
            booking.id, Status.RESERVED, booking.ceremonial_ok, booking.technical_ok, actor.id
        )
        await self._audit_status(booking, actor, Status.RESERVED, request)
        created = await self.resolver.register_conflicts(booking, displaced, actor)
        return self._done(booking, Status.RESERVED, created)

    async def _approve(
        self, booking: Booking, actor: Actor, request: StatusChangeRequest
    ) -> _Outcome:
        if not actor.can(Action.APPROVE):
            raise ForbiddenError("ROLE_NOT_ALLOWED")

        ceremonial = self._raise_flag(
            booking.ceremonial_ok, request.ceremonial_ok, actor, Action.SET_CEREMONIAL_OK, "CEREMONIAL_ONLY"
        )
        technical = self._raise_flag(
            booking.technical_ok, request.technical_ok, actor, Action.SET_TECHNICAL_OK, "TECHNICAL_ONLY"
        )

        missing = []
        if not ceremonial:
            missing.append("ceremonial_ok")
        if not technical:
            missing.append("technical_ok")

        if missing:
            await self.db.update_booking_workflow(
                booking.id, booking.status, ceremonial, technical, actor.id
            )
            await self._audit_flags(booking, actor, ceremonial, technical, request)
            return _Outcome(
                result=StatusChangeResult(
                    booking_id=booking.id,
                    status=booking.status,
                    approval_pending=True,
                    missing=missing,
                ),
                previous=booking.status,
            )

        displaced = await self._ensure_available(booking)
        await self._ensure_tech_capacity(booking)

        await self.db.update_booking_workflow(
            booking.id, Status.APPROVED, ceremonial, technical, actor.id
        )
        await self._audit_status(booking, actor, Status.APPROVED, request)
        await self._audit_flags(booking, actor, ceremonial, technical, request)
        created = await self.resolver.register_conflicts(booking, displaced, actor)
        return self._done(booking, Status.APPROVED, created)

    async def _revert(
        self, booking: Booking, actor: Actor, request: StatusChangeRequest
    ) -> _Outcome:
        ceremonial = self._lower_flag(
            booking.ceremonial_ok,
            request.ceremonial_ok,
            actor,
            Action.SET_CEREMONIAL_OK,
            "CEREMONIAL_ONLY",
            "ceremonial_ok",
        )
        technical = self._lower_flag(
            booking.technical_ok,
            request.technical_ok,
            actor,
            Action.SET_TECHNICAL_OK,
            "TECHNICAL_ONLY",
            "technical_ok",
        )

        await self.db.update_booking_workflow(
            booking.id, Status.IN_REVIEW, ceremonial, technical, actor.id
        )
        if booking.status.is_blocking:
            await self.audit.append(
                booking.id,
                actor,
                AuditKind.REPROGRAM,
                booking.status.value,
                Status.IN_REVIEW.value,
                request.reason,
                request.note,
                details=(
                    f"{booking.date.isoformat()} "
                    f"{booking.start_time.strftime('%H:%M')}-{booking.end_time.strftime('%H:%M')}"
                ),
            )
        await self._audit_status(booking, actor, Status.IN_REVIEW, request)
        await self._audit_flags(booking, actor, ceremonial, technical, request)
        return self._done(booking, Status.IN_REVIEW)

    async def _reject(
        self, booking: Booking, actor: Actor, request: StatusChangeRequest
    ) -> _Outcome:
        await self.db.update_booking_workflow(
            booking.id, Status.REJECTED, booking.ceremonial_ok, booking.technical_ok, actor.id
        )
        await self._audit_status(booking, actor, Status.REJECTED, request)
        return self._done(booking, Status.REJECTED)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _ensure_available(self, booking: Booking) -> list[Booking]:
        """Return the bookings a HIGH booking displaces; raise on any other conflict."""
        result = await self.availability.evaluate_booking(booking)
        if result.available is not False:
            return []
        if not booking.is_resource_bound or booking.priority is not Priority.HIGH:
            raise AvailabilityConflictError(result)
        return await self.resolver.select_displaced(booking, result)

    async def _ensure_tech_capacity(self, booking: Booking) -> None:
        if not await self.tech_gate.has_capacity_for(booking):
            raise CapacityExceededError("No technical capacity left for the requested window")

    @staticmethod
    def _raise_flag(
        current: bool,
        requested: bool | None,
        actor: Actor,
        action: Action,
        forbidden_code: str,
    ) -> bool:
        allowed = actor.can(action)
        if requested is True and not current and not allowed:
            raise ForbiddenError(forbidden_code)
        if requested is False:
            return current
        return current or allowed

    @staticmethod
    def _lower_flag(
        current: bool,
        requested: bool | None,
        actor: Actor,
        action: Action,
        forbidden_code: str,
        field_name: str,
    ) -> bool:
        if requested is None or requested == current:
            return current
        if not actor.can(action):
            raise ForbiddenError(forbidden_code)
        if requested:
            raise BookingValidationError(
                f"{field_name} can only be lowered in this transition",
                errors=[{"loc": [field_name], "msg": "can only be lowered"}],
            )
        return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load(self, booking_id: int) -> Booking:
        booking = await self.db.get_booking(booking_id)
        if booking is None or not booking.active:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def _audit_status(
        self, booking: Booking, actor: Actor, target: Status, request: StatusChangeRequest
    ) -> None:
        await self.audit.append(
            booking.id,
            actor,
            AuditKind.STATUS,
            booking.status.value,
            target.value,
            request.reason,
            request.note,
        )

    async def _audit_flags(
        self,
        booking: Booking,
        actor: Actor,
        ceremonial: bool,
        technical: bool,
        request: StatusChangeRequest,
    ) -> None:
        if booking.ceremonial_ok != ceremonial:
            await self.audit.append(
                booking.id,
                actor,
                AuditKind.CEREMONIAL_OK,
                _flag(booking.ceremonial_ok),
                _flag(ceremonial),
                request.reason,
                request.note,
            )
        if booking.technical_ok != technical:
            await self.audit.append(
                booking.id,
                actor,
                AuditKind.TECHNICAL_OK,
                _flag(booking.technical_ok),
                _flag(technical),
                request.reason,
                request.note,
            )

    @staticmethod
    def _done(
        booking: Booking, status: Status, created: list[ConflictRecord] | None = None
    ) -> _Outcome:
        created = created or []
        return _Outcome(
            result=StatusChangeResult(
                booking_id=booking.id,
                status=status,
                conflict_codes=[r.conflict_code for r in created],
            ),
            previous=booking.status,
            created=created,
        )
