from __future__ import annotations

import datetime as dt

import pytest

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import NotFoundError, StorageError
from spacebook_mcp.models.actor import Actor, Authority
from spacebook_mcp.models.booking import Booking, Priority, Status
from spacebook_mcp.models.conflict import ConflictDecision, ConflictRecord, ConflictStatus
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.models.tech_capacity import TechCapacityConfig

DAY = dt.date(2025, 3, 14)


def _booking(**fields: object) -> Booking:
    return Booking(
        **{
            "id": 0,
            "title": "Seminar",
            "date": DAY,
            "start_time": dt.time(9),
            "end_time": dt.time(10),
            "resource_id": 1,
            **fields,
        }
    )


@pytest.fixture
async def hall(db: Database) -> ResourceInfo:
    info = ResourceInfo(id=1, name="Main Hall", default_buffer_after_min=10)
    async with db.transaction():
        await db.upsert_resource(info)
    return info


@pytest.mark.asyncio
class TestDatabase:
    async def test_resource_upsert_and_lookup(self, db: Database, hall: ResourceInfo) -> None:
        assert await db.lookup_resource(hall.id) == hall
        assert await db.lookup_resource(42) is None

        async with db.transaction():
            await db.upsert_resource(hall.model_copy(update={"active": False}))
        stored = await db.lookup_resource(hall.id)
        assert stored is not None
        assert stored.active is False

    async def test_resolve_actor(self, db: Database) -> None:
        actor = Actor(id="bob", authorities=frozenset({Authority.CEREMONIAL, Authority.TECHNICAL}))
        async with db.transaction():
            await db.upsert_actor(actor)

        assert await db.resolve_actor("bob") == actor
        with pytest.raises(NotFoundError):
            await db.resolve_actor("nobody")

    async def test_inactive_actor_not_resolved(self, db: Database) -> None:
        async with db.transaction():
            await db.upsert_actor(Actor(id="carol"), active=False)
        with pytest.raises(NotFoundError):
            await db.resolve_actor("carol")

    async def test_booking_roundtrip(self, db: Database, hall: ResourceInfo) -> None:
        async with db.transaction():
            booking_id = await db.insert_booking(
                _booking(buffer_after_min=10, priority=Priority.HIGH, requires_tech=True)
            )
        stored = await db.get_booking(booking_id)
        assert stored is not None
        assert stored.id == booking_id
        assert stored.start_time == dt.time(9)
        assert stored.priority is Priority.HIGH
        assert stored.requires_tech is True
        assert stored.status is Status.REQUESTED
        assert await db.get_booking(booking_id + 1) is None

    async def test_find_resource_bookings_filters(self, db: Database, hall: ResourceInfo) -> None:
        async with db.transaction():
            reserved = await db.insert_booking(_booking(status=Status.RESERVED))
            await db.insert_booking(_booking(status=Status.IN_REVIEW))
            other_day = await db.insert_booking(_booking(status=Status.RESERVED, date=DAY + dt.timedelta(days=1)))
            gone = await db.insert_booking(_booking(status=Status.APPROVED))
            await db.deactivate_booking(gone)

        found = await db.find_resource_bookings(hall.id, DAY, (Status.RESERVED, Status.APPROVED))
        assert [b.id for b in found] == [reserved]
        assert other_day not in [b.id for b in found]
        assert await db.find_resource_bookings(
            hall.id, DAY, (Status.RESERVED,), exclude_booking_id=reserved
        ) == []

    async def test_rollback_on_error(self, db: Database, hall: ResourceInfo) -> None:
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await db.insert_booking(_booking())
                raise RuntimeError("abort")

        assert await db.find_resource_bookings(hall.id, DAY, list(Status)) == []

    async def test_constraint_violation_is_storage_error(self, db: Database, hall: ResourceInfo) -> None:
        with pytest.raises(StorageError):
            async with db.transaction():
                await db.insert_booking(_booking(start_time=dt.time(11)))

    async def test_close_conflict_only_once(self, db: Database, hall: ResourceInfo) -> None:
        async with db.transaction():
            a = await db.insert_booking(_booking(status=Status.RESERVED))
            b = await db.insert_booking(_booking(priority=Priority.HIGH, status=Status.RESERVED))
            await db.insert_conflict(
                ConflictRecord(
                    conflict_code="PRIO-20250314-00001",
                    displacing_booking_id=b,
                    displaced_booking_id=a,
                    resource_id=hall.id,
                    date=DAY,
                    from_time=dt.time(9),
                    to_time=dt.time(10),
                    created_by="admin",
                )
            )

        assert await db.count_conflicts_for_date(DAY) == 1
        assert len(await db.find_open_conflicts(displaced_booking_id=a)) == 1

        async with db.transaction():
            closed = await db.close_conflict(
                "PRIO-20250314-00001", ConflictDecision.KEEP_NEW, "admin", None, dt.datetime.now()
            )
            again = await db.close_conflict(
                "PRIO-20250314-00001", ConflictDecision.KEEP_DISPLACED, "admin", None, dt.datetime.now()
            )
        assert (closed, again) == (True, False)

        record = await db.get_conflict("PRIO-20250314-00001")
        assert record is not None
        assert record.status is ConflictStatus.RESOLVED
        assert record.decision is ConflictDecision.KEEP_NEW
        assert await db.find_open_conflicts(displaced_booking_id=a) == []
        assert await db.count_conflicts_for_date(DAY) == 1

    async def test_tech_capacity_singleton(self, db: Database) -> None:
        assert await db.get_tech_capacity_config() is None

        async with db.transaction():
            await db.save_tech_capacity_config(TechCapacityConfig(block_minutes=15, slots_per_block=4))
            await db.save_tech_capacity_config(TechCapacityConfig(), overwrite=False)
        config = await db.get_tech_capacity_config()
        assert config is not None
        assert (config.block_minutes, config.slots_per_block) == (15, 4)

        async with db.transaction():
            await db.save_tech_capacity_config(TechCapacityConfig(slots_per_block=1, active=False))
        assert await db.get_tech_capacity_config() is None

    async def test_schema_is_idempotent(self, db: Database, hall: ResourceInfo) -> None:
        again = Database(db.db_path)
        await again.initialize()
        try:
            assert await again.lookup_resource(hall.id) == hall
        finally:
            await again.close()
