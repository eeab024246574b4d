from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest

from spacebook_mcp.db.database import Database
from spacebook_mcp.models.actor import Actor, Authority
from spacebook_mcp.models.booking import Booking, Status
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.services.audit import DatabaseAuditSink
from spacebook_mcp.services.availability import AvailabilityChecker
from spacebook_mcp.services.bookings import BookingService
from spacebook_mcp.services.event_bus import EventBus
from spacebook_mcp.services.priority_resolver import PriorityConflictResolver
from spacebook_mcp.services.status_engine import StatusTransitionEngine
from spacebook_mcp.services.tech_capacity import TechCapacityGate

DAY = dt.date(2025, 3, 14)

MakeBooking = Callable[..., Awaitable[Booking]]

# Steps the admin takes to bring a fresh booking into each status.
_PATHS: dict[Status, list[Status]] = {
    Status.REQUESTED: [],
    Status.IN_REVIEW: [Status.IN_REVIEW],
    Status.RESERVED: [Status.IN_REVIEW, Status.RESERVED],
    Status.APPROVED: [Status.IN_REVIEW, Status.APPROVED],
    Status.REJECTED: [Status.IN_REVIEW, Status.REJECTED],
}


@pytest.fixture
async def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "test.db")
    await database.initialize()
    yield database  # type: ignore[misc]
    await database.close()


@pytest.fixture
async def resource(db: Database) -> ResourceInfo:
    info = ResourceInfo(id=1, name="Main Hall")
    async with db.transaction():
        await db.upsert_resource(info)
    return info


@pytest.fixture
async def buffered_resource(db: Database) -> ResourceInfo:
    info = ResourceInfo(
        id=2, name="Auditorium", default_buffer_before_min=15, default_buffer_after_min=30
    )
    async with db.transaction():
        await db.upsert_resource(info)
    return info


async def _actor(db: Database, actor_id: str, *authorities: Authority) -> Actor:
    actor = Actor(id=actor_id, display_name=actor_id.title(), authorities=frozenset(authorities))
    async with db.transaction():
        await db.upsert_actor(actor)
    return actor


@pytest.fixture
async def admin(db: Database) -> Actor:
    return await _actor(db, "admin", Authority.ADMIN_FULL)


@pytest.fixture
async def ceremonial(db: Database) -> Actor:
    return await _actor(db, "protocol", Authority.CEREMONIAL)


@pytest.fixture
async def technical(db: Database) -> Actor:
    return await _actor(db, "av-team", Authority.TECHNICAL)


@pytest.fixture
async def requester(db: Database) -> Actor:
    return await _actor(db, "alice")


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def checker(db: Database) -> AvailabilityChecker:
    return AvailabilityChecker(db)


@pytest.fixture
def tech_gate(db: Database) -> TechCapacityGate:
    return TechCapacityGate(db)


@pytest.fixture
def resolver(db: Database, event_bus: EventBus) -> PriorityConflictResolver:
    return PriorityConflictResolver(db, DatabaseAuditSink(db), event_bus)


@pytest.fixture
def engine(
    db: Database,
    checker: AvailabilityChecker,
    tech_gate: TechCapacityGate,
    resolver: PriorityConflictResolver,
    event_bus: EventBus,
) -> StatusTransitionEngine:
    return StatusTransitionEngine(
        db, checker, tech_gate, resolver, DatabaseAuditSink(db), event_bus
    )


@pytest.fixture
def booking_service(db: Database) -> BookingService:
    return BookingService(db)


@pytest.fixture
def make_booking(
    booking_service: BookingService,
    engine: StatusTransitionEngine,
    requester: Actor,
    admin: Actor,
    resource: ResourceInfo,
) -> MakeBooking:
    """Create a booking and walk it to ``status`` as the admin."""

    async def _make(status: Status = Status.REQUESTED, **fields: Any) -> Booking:
        draft = {
            "title": "Board meeting",
            "date": DAY,
            "start_time": dt.time(9, 0),
            "end_time": dt.time(10, 0),
            "resource_id": resource.id,
            **fields,
        }
        booking = await booking_service.create_booking(draft, requester)
        for step in _PATHS[status]:
            await engine.change_status(booking.id, step, admin)
        return await booking_service.get_booking(booking.id)

    return _make
