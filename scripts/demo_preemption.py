#!/usr/bin/env python3
"""Demo: a HIGH priority ceremony displacing a club booking in SpaceBook.

Walks one booking through the two-domain approval, lets a HIGH priority
request take the same slot, then resolves the conflict and applies the
follow-up status change.
"""

import asyncio
import datetime as dt
import sys
from pathlib import Path

# Add src to path so we can import without installing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import BookingError
from spacebook_mcp.models.actor import Actor, Authority
from spacebook_mcp.models.booking import Priority, Status
from spacebook_mcp.models.conflict import ConflictDecision
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.services.bookings import BookingService
from spacebook_mcp.services.priority_resolver import PriorityConflictResolver
from spacebook_mcp.services.status_engine import StatusTransitionEngine

DB_PATH = Path(__file__).parent.parent / "data" / "spacebook-demo.db"
DAY = dt.date.today() + dt.timedelta(days=7)


async def setup(db: Database) -> dict[str, Actor]:
    actors = {
        "dean": Actor(id="dean", authorities=frozenset({Authority.ADMIN_FULL})),
        "protocol": Actor(id="protocol", authorities=frozenset({Authority.CEREMONIAL})),
        "av-team": Actor(id="av-team", authorities=frozenset({Authority.TECHNICAL})),
        "chess-club": Actor(id="chess-club"),
    }
    async with db.transaction():
        await db.upsert_resource(ResourceInfo(id=1, name="Great Hall", default_buffer_after_min=15))
        for actor in actors.values():
            await db.upsert_actor(actor)
    return actors


async def main():
    DB_PATH.unlink(missing_ok=True)
    db = Database(DB_PATH)
    await db.initialize()
    actors = await setup(db)

    bookings = BookingService(db)
    resolver = PriorityConflictResolver(db)
    engine = StatusTransitionEngine(db, resolver=resolver)

    print("=" * 60)
    print("SpaceBook Preemption Demo")
    print("=" * 60)

    slot = {"date": DAY, "start_time": "16:00", "end_time": "18:00", "resource_id": 1}

    # --- The chess club books the hall ---
    club = await bookings.create_booking(
        {"title": "Chess tournament", "priority": Priority.LOW, **slot}, actors["chess-club"]
    )
    await engine.change_status(club.id, Status.IN_REVIEW, actors["dean"])
    pending = await engine.change_status(club.id, Status.APPROVED, actors["protocol"])
    print(f"\n[protocol] Approved #{club.id}; still missing: {pending.missing}")
    done = await engine.change_status(club.id, Status.APPROVED, actors["av-team"])
    print(f"[av-team] Approved #{club.id} -> {done.status.value}")

    # --- A MEDIUM request for the same slot is refused ---
    talk = await bookings.create_booking(
        {"title": "Guest talk", **slot}, actors["chess-club"]
    )
    await engine.change_status(talk.id, Status.IN_REVIEW, actors["dean"])
    try:
        await engine.change_status(talk.id, Status.RESERVED, actors["dean"])
    except BookingError as exc:
        print(f"\n[dean] Reserving #{talk.id} refused: {exc.code}")

    # --- The dean's ceremony displaces the club ---
    ceremony = await bookings.create_booking(
        {"title": "Honorary degree", "priority": Priority.HIGH, **slot}, actors["dean"]
    )
    await engine.change_status(ceremony.id, Status.IN_REVIEW, actors["dean"])
    result = await engine.change_status(ceremony.id, Status.APPROVED, actors["dean"])
    print(f"\n[dean] #{ceremony.id} -> {result.status.value}, opened {result.conflict_codes}")

    club = await bookings.get_booking(club.id)
    print(f"[chess-club] #{club.id} is still {club.status.value}, requires rebooking: {club.requires_rebooking}")

    # --- Resolve and apply the follow-up ---
    (code,) = result.conflict_codes
    resolution = await resolver.resolve_conflict(
        code, ConflictDecision.KEEP_NEW, actors["dean"], target=Status.REJECTED, reason="Convocation"
    )
    follow_up = resolution.follow_up
    await engine.change_status(follow_up.booking_id, follow_up.target, actors["dean"], reason=code)
    club = await bookings.get_booking(club.id)

    print("\n" + "=" * 60)
    if club.status is Status.REJECTED and not club.requires_rebooking:
        print(f"SUCCESS: {code} resolved, #{club.id} moved to {club.status.value}")
    else:
        print("FAIL: Something went wrong")
    print("=" * 60)

    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
