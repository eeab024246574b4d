from __future__ import annotations

import datetime as dt
import logging
from collections import Counter

from spacebook_mcp.db.database import Database
from spacebook_mcp.models.booking import Booking, Status, SupportMode
from spacebook_mcp.models.tech_capacity import (
    CapacityBlock,
    TechBooking,
    TechCapacityConfig,
    TechCapacityOverview,
)
from spacebook_mcp.services.time_window import TimeWindow

logger = logging.getLogger(__name__)

# Technical staff is planned as soon as a booking enters review.
TECH_STATUSES = (Status.IN_REVIEW, Status.RESERVED, Status.APPROVED)

DEFAULT_CONFIG = TechCapacityConfig(block_minutes=30, slots_per_block=10, active=True)

_MINUTES_PER_DAY = 24 * 60


def occupied_windows(
    date: dt.date,
    start: dt.time,
    end: dt.time,
    buffer_before_min: int,
    buffer_after_min: int,
    mode: SupportMode,
) -> list[TimeWindow]:
    """Windows during which technical staff is busy with a booking."""
    if mode is SupportMode.ATTENDED:
        return [TimeWindow.buffered(date, start, end, buffer_before_min, buffer_after_min)]

    event = TimeWindow.of(date, start, end)
    windows = []
    if buffer_before_min > 0:
        setup = event.with_buffers(buffer_before_min, 0)
        windows.append(TimeWindow(date, setup.start, event.start))
    if buffer_after_min > 0:
        teardown = event.with_buffers(0, buffer_after_min)
        windows.append(TimeWindow(date, event.end, teardown.end))
    return windows


def block_offsets(windows: list[TimeWindow], block_minutes: int) -> list[int]:
    """Minute offsets (from midnight) of every day-aligned block the windows touch."""
    offsets: set[int] = set()
    for window in windows:
        start_min = int((window.start - window.day_start).total_seconds() // 60)
        end_min = int((window.end - window.day_start).total_seconds() // 60)
        if end_min <= start_min:
            continue
        cursor = (start_min // block_minutes) * block_minutes
        while cursor < end_min:
            offsets.add(cursor)
            cursor += block_minutes
    return sorted(offsets)


def _offset_to_time(offset: int) -> dt.time:
    return dt.time(offset // 60, offset % 60)


def _offset_label(offset: int) -> str:
    if offset >= _MINUTES_PER_DAY:
        return "24:00"
    return f"{offset // 60:02d}:{offset % 60:02d}"


class TechCapacityGate:
    """Bounds how many technical-support bookings may share a time block.

    A point-in-time check: nothing is held between calls, so every status
    change re-evaluates it against the current bookings.
    """

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Unit-of-work API
    # ------------------------------------------------------------------

    async def active_config(self) -> TechCapacityConfig:
        return await self.db.get_tech_capacity_config() or DEFAULT_CONFIG

    async def has_capacity_for(self, booking: Booking) -> bool:
        if not booking.requires_tech:
            return True
        return await self.has_capacity(
            booking.date,
            booking.start_time,
            booking.end_time,
            booking.buffer_before_min,
            booking.buffer_after_min,
            booking.tech_support_mode,
            exclude_booking_id=booking.id,
        )

    async def has_capacity(
        self,
        date: dt.date,
        start: dt.time,
        end: dt.time,
        buffer_before_min: int,
        buffer_after_min: int,
        mode: SupportMode = SupportMode.ATTENDED,
        exclude_booking_id: int | None = None,
    ) -> bool:
        config = await self.active_config()
        usage = await self._usage(date, config, exclude_booking_id)
        required = block_offsets(
            occupied_windows(date, start, end, buffer_before_min, buffer_after_min, mode),
            config.block_minutes,
        )
        for offset in required:
            used = usage.get(offset, 0)
            if used + 1 > config.slots_per_block:
                logger.info(
                    "Tech capacity exhausted on %s at %s (%d/%d used)",
                    date,
                    _offset_label(offset),
                    used,
                    config.slots_per_block,
                )
                return False
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_capacity(self, date: dt.date) -> TechCapacityOverview:
        async with self.db.snapshot():
            config = await self.active_config()
            usage = await self._usage(date, config)

        blocks = []
        for offset in range(0, _MINUTES_PER_DAY, config.block_minutes):
            used = usage.get(offset, 0)
            blocks.append(
                CapacityBlock(
                    start=_offset_to_time(offset),
                    end=_offset_label(min(offset + config.block_minutes, _MINUTES_PER_DAY)),
                    used=used,
                    available=max(config.slots_per_block - used, 0),
                )
            )
        return TechCapacityOverview(
            date=date,
            block_minutes=config.block_minutes,
            slots_per_block=config.slots_per_block,
            blocks=blocks,
        )

    async def get_tech_bookings(self, date: dt.date) -> list[TechBooking]:
        async with self.db.snapshot():
            bookings = await self.db.find_tech_bookings(date, TECH_STATUSES)
        return [
            TechBooking(
                booking_id=b.id,
                title=b.title,
                resource_id=b.resource_id,
                start_time=b.start_time,
                end_time=b.end_time,
                status=b.status,
                tech_support_mode=b.tech_support_mode,
            )
            for b in sorted(bookings, key=lambda b: (b.start_time, b.id))
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _usage(
        self,
        date: dt.date,
        config: TechCapacityConfig,
        exclude_booking_id: int | None = None,
    ) -> Counter[int]:
        usage: Counter[int] = Counter()
        for booking in await self.db.find_tech_bookings(date, TECH_STATUSES, exclude_booking_id):
            windows = occupied_windows(
                booking.date,
                booking.start_time,
                booking.end_time,
                booking.buffer_before_min,
                booking.buffer_after_min,
                booking.tech_support_mode,
            )
            usage.update(block_offsets(windows, config.block_minutes))
        return usage


async def seed_config(db: Database, block_minutes: int, slots_per_block: int) -> None:
    """Create the capacity singleton unless one is already stored."""
    async with db.transaction():
        await db.save_tech_capacity_config(
            TechCapacityConfig(block_minutes=block_minutes, slots_per_block=slots_per_block),
            overwrite=False,
        )
