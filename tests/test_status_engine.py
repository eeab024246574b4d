from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable

import pytest

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import (
    AvailabilityConflictError,
    BookingValidationError,
    ForbiddenError,
    IllegalTransitionError,
    NotFoundError,
)
from spacebook_mcp.models.actor import Actor
from spacebook_mcp.models.audit import AuditKind
from spacebook_mcp.models.booking import Booking, Status
from spacebook_mcp.services.availability import AvailabilityChecker
from spacebook_mcp.services.bookings import BookingService
from spacebook_mcp.services.event_bus import BOOKING_STATUS_CHANGED, EventBus
from spacebook_mcp.services.status_engine import StatusTransitionEngine
from spacebook_mcp.services.tech_capacity import TechCapacityGate
from spacebook_mcp.services.transitions import ALLOWED_TRANSITIONS

MakeBooking = Callable[..., Awaitable[Booking]]

ILLEGAL_PAIRS = [
    (current, target)
    for current in Status
    for target in Status
    if target not in ALLOWED_TRANSITIONS[current]
]


class FailingAuditSink:
    async def append(self, *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("audit store unavailable")


async def _set_flags(db: Database, booking: Booking, ceremonial_ok: bool, technical_ok: bool) -> None:
    async with db.transaction():
        await db.update_booking_workflow(
            booking.id, booking.status, ceremonial_ok, technical_ok, "fixture"
        )


async def _kinds(db: Database, booking_id: int) -> list[AuditKind]:
    return [e.kind for e in await db.get_audit_entries(booking_id)]


@pytest.mark.asyncio
class TestTransitionTable:
    @pytest.mark.parametrize(
        ("current", "target"),
        ILLEGAL_PAIRS,
        ids=[f"{c.value}->{t.value}" for c, t in ILLEGAL_PAIRS],
    )
    async def test_illegal_pair_rejected_without_mutation(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        admin: Actor,
        current: Status,
        target: Status,
    ) -> None:
        booking = await make_booking(current)
        history_before = await db.get_audit_entries(booking.id)

        with pytest.raises(IllegalTransitionError):
            await engine.change_status(booking.id, target, admin)

        after = await booking_service.get_booking(booking.id)
        assert after.status is booking.status
        assert (after.ceremonial_ok, after.technical_ok) == (booking.ceremonial_ok, booking.technical_ok)
        assert await db.get_audit_entries(booking.id) == history_before

    async def test_status_options(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)
        options = await engine.get_status_options(booking.id)
        assert options.current is Status.IN_REVIEW
        assert options.allowed == [Status.RESERVED, Status.REJECTED, Status.APPROVED]

    async def test_rejected_is_terminal(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking
    ) -> None:
        booking = await make_booking(Status.REJECTED)
        options = await engine.get_status_options(booking.id)
        assert options.allowed == []

    async def test_unknown_booking(self, engine: StatusTransitionEngine, admin: Actor) -> None:
        with pytest.raises(NotFoundError):
            await engine.change_status(999, Status.IN_REVIEW, admin)
        with pytest.raises(NotFoundError):
            await engine.get_status_options(999)

    async def test_inactive_booking(
        self, db: Database, engine: StatusTransitionEngine, make_booking: MakeBooking, admin: Actor
    ) -> None:
        booking = await make_booking()
        async with db.transaction():
            assert await db.deactivate_booking(booking.id) is True
        with pytest.raises(NotFoundError):
            await engine.change_status(booking.id, Status.IN_REVIEW, admin)


@pytest.mark.asyncio
class TestApproval:
    async def test_one_flag_leaves_approval_pending(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        ceremonial: Actor,
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)

        result = await engine.change_status(booking.id, Status.APPROVED, ceremonial, reason="protocol ok")

        assert result.approval_pending is True
        assert result.status is Status.IN_REVIEW
        assert result.missing == ["technical_ok"]
        stored = await booking_service.get_booking(booking.id)
        assert stored.status is Status.IN_REVIEW
        assert (stored.ceremonial_ok, stored.technical_ok) == (True, False)
        entries = await db.get_audit_entries(booking.id, AuditKind.CEREMONIAL_OK)
        assert [(e.from_value, e.to_value, e.reason) for e in entries] == [("false", "true", "protocol ok")]

    async def test_second_domain_completes_approval_once(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        make_booking: MakeBooking,
        ceremonial: Actor,
        technical: Actor,
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)

        await engine.change_status(booking.id, Status.APPROVED, ceremonial)
        result = await engine.change_status(booking.id, Status.APPROVED, technical)

        assert result.approval_pending is False
        assert result.status is Status.APPROVED
        assert result.missing == []
        approvals = [
            e
            for e in await db.get_audit_entries(booking.id, AuditKind.STATUS)
            if e.to_value == Status.APPROVED.value
        ]
        assert len(approvals) == 1

        with pytest.raises(IllegalTransitionError):
            await engine.change_status(booking.id, Status.APPROVED, technical)

    async def test_admin_raises_both_flags(
        self,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        admin: Actor,
    ) -> None:
        booking = await make_booking(Status.RESERVED)

        result = await engine.change_status(booking.id, Status.APPROVED, admin)

        assert result.status is Status.APPROVED
        stored = await booking_service.get_booking(booking.id)
        assert (stored.ceremonial_ok, stored.technical_ok) == (True, True)
        assert stored.last_modified_by == admin.id

    async def test_explicit_false_holds_flag_back(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking, admin: Actor
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)
        result = await engine.change_status(booking.id, Status.APPROVED, admin, technical_ok=False)
        assert result.approval_pending is True
        assert result.missing == ["technical_ok"]

    async def test_flag_outside_authority_forbidden(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        technical: Actor,
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)

        with pytest.raises(ForbiddenError) as exc_info:
            await engine.change_status(booking.id, Status.APPROVED, technical, ceremonial_ok=True)

        assert exc_info.value.message == "CEREMONIAL_ONLY"
        stored = await booking_service.get_booking(booking.id)
        assert (stored.ceremonial_ok, stored.technical_ok) == (False, False)

    async def test_no_authority_forbidden(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking, requester: Actor
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)
        with pytest.raises(ForbiddenError) as exc_info:
            await engine.change_status(booking.id, Status.APPROVED, requester)
        assert exc_info.value.message == "ROLE_NOT_ALLOWED"

    async def test_conflict_rolls_back_flags(
        self,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        admin: Actor,
    ) -> None:
        holder = await make_booking(Status.RESERVED)
        booking = await make_booking(
            Status.IN_REVIEW, start_time=dt.time(9, 30), end_time=dt.time(10, 30)
        )

        with pytest.raises(AvailabilityConflictError) as exc_info:
            await engine.change_status(booking.id, Status.APPROVED, admin)

        assert exc_info.value.result.conflicting_ids == [holder.id]
        assert exc_info.value.to_dict()["error"] == "AVAILABILITY_CONFLICT"
        stored = await booking_service.get_booking(booking.id)
        assert stored.status is Status.IN_REVIEW
        assert (stored.ceremonial_ok, stored.technical_ok) == (False, False)

    @pytest.mark.parametrize("status", list(Status))
    @pytest.mark.parametrize("ceremonial_ok", [False, True])
    @pytest.mark.parametrize("technical_ok", [False, True])
    async def test_state_space_ceremonial_approval(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        ceremonial: Actor,
        status: Status,
        ceremonial_ok: bool,
        technical_ok: bool,
    ) -> None:
        booking = await make_booking(status)
        await _set_flags(db, booking, ceremonial_ok, technical_ok)

        if Status.APPROVED not in ALLOWED_TRANSITIONS[status]:
            with pytest.raises(IllegalTransitionError):
                await engine.change_status(booking.id, Status.APPROVED, ceremonial)
            stored = await booking_service.get_booking(booking.id)
            assert (stored.status, stored.ceremonial_ok, stored.technical_ok) == (
                status,
                ceremonial_ok,
                technical_ok,
            )
            return

        result = await engine.change_status(booking.id, Status.APPROVED, ceremonial)
        stored = await booking_service.get_booking(booking.id)
        assert stored.ceremonial_ok is True
        assert stored.technical_ok is technical_ok
        if technical_ok:
            assert result.approval_pending is False
            assert stored.status is Status.APPROVED
        else:
            assert result.approval_pending is True
            assert result.missing == ["technical_ok"]
            assert stored.status is status


@pytest.mark.asyncio
class TestReviewAndRejection:
    async def test_back_to_review_records_reprogram(
        self,
        db: Database,
        engine: StatusTransitionEngine,
        booking_service: BookingService,
        make_booking: MakeBooking,
        admin: Actor,
    ) -> None:
        booking = await make_booking(Status.APPROVED)

        result = await engine.change_status(
            booking.id, Status.IN_REVIEW, admin, reason="date moved", ceremonial_ok=False
        )

        assert result.status is Status.IN_REVIEW
        stored = await booking_service.get_booking(booking.id)
        assert (stored.ceremonial_ok, stored.technical_ok) == (False, True)
        reprogram = await db.get_audit_entries(booking.id, AuditKind.REPROGRAM)
        assert len(reprogram) == 1
        assert reprogram[0].from_value == Status.APPROVED.value
        assert reprogram[0].details == "2025-03-14 09:00-10:00"
        assert (await _kinds(db, booking.id))[-3:] == [
            AuditKind.REPROGRAM,
            AuditKind.STATUS,
            AuditKind.CEREMONIAL_OK,
        ]

    async def test_first_review_is_not_a_reprogram(
        self, db: Database, engine: StatusTransitionEngine, make_booking: MakeBooking, admin: Actor
    ) -> None:
        booking = await make_booking()
        await engine.change_status(booking.id, Status.IN_REVIEW, admin)
        assert await db.get_audit_entries(booking.id, AuditKind.REPROGRAM) == []

    async def test_review_cannot_raise_flags(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking, admin: Actor
    ) -> None:
        booking = await make_booking(Status.RESERVED)
        with pytest.raises(BookingValidationError):
            await engine.change_status(booking.id, Status.IN_REVIEW, admin, technical_ok=True)

    async def test_review_lowering_other_domain_forbidden(
        self, engine: StatusTransitionEngine, make_booking: MakeBooking, technical: Actor
    ) -> None:
        booking = await make_booking(Status.APPROVED)
        with pytest.raises(ForbiddenError) as exc_info:
            await engine.change_status(booking.id, Status.IN_REVIEW, technical, ceremonial_ok=False)
        assert exc_info.value.message == "CEREMONIAL_ONLY"

    async def test_reject_frees_resource(
        self,
        engine: StatusTransitionEngine,
        checker: AvailabilityChecker,
        make_booking: MakeBooking,
        admin: Actor,
    ) -> None:
        booking = await make_booking(Status.RESERVED)
        await engine.change_status(booking.id, Status.REJECTED, admin, note="duplicate")

        result = await checker.check_availability(
            booking.resource_id, booking.date, booking.start_time, booking.end_time
        )
        assert result.available is True


@pytest.mark.asyncio
class TestUnitOfWork:
    async def test_audit_failure_rolls_back_transition(
        self,
        db: Database,
        checker: AvailabilityChecker,
        tech_gate: TechCapacityGate,
        booking_service: BookingService,
        make_booking: MakeBooking,
        admin: Actor,
    ) -> None:
        booking = await make_booking(Status.IN_REVIEW)
        engine = StatusTransitionEngine(db, checker, tech_gate, audit=FailingAuditSink())

        with pytest.raises(RuntimeError):
            await engine.change_status(booking.id, Status.RESERVED, admin)

        stored = await booking_service.get_booking(booking.id)
        assert stored.status is Status.IN_REVIEW

    async def test_status_change_published_after_commit(
        self,
        engine: StatusTransitionEngine,
        event_bus: EventBus,
        make_booking: MakeBooking,
        admin: Actor,
        ceremonial: Actor,
    ) -> None:
        booking = await make_booking()
        received: list[dict] = []

        async def listener(event: dict) -> None:
            received.append(event)

        event_bus.subscribe(BOOKING_STATUS_CHANGED, listener)
        await engine.change_status(booking.id, Status.IN_REVIEW, admin)
        await engine.change_status(booking.id, Status.APPROVED, ceremonial)

        assert [(e["from"], e["to"]) for e in received] == [("REQUESTED", "IN_REVIEW")]
