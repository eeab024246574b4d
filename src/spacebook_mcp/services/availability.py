from __future__ import annotations

import datetime as dt
import logging

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import BookingValidationError, NotFoundError
from spacebook_mcp.interfaces import ResourceCatalog
from spacebook_mcp.models.availability import (
    AvailabilityParams,
    AvailabilityResult,
    ConflictItem,
    OccupancyBlock,
    ResourceOccupancy,
)
from spacebook_mcp.models.booking import MAX_BUFFER_MINUTES, Booking, Status
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.services.time_window import TimeWindow

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = (Status.RESERVED, Status.APPROVED)

FREE_LOCATION_REASON = "free-text location: not validated against a resource"


def resolve_buffer(requested: int | None, default: int) -> int:
    value = requested if requested is not None else default
    if not 0 <= value <= MAX_BUFFER_MINUTES:
        raise BookingValidationError(
            f"Buffers must be between 0 and {MAX_BUFFER_MINUTES} minutes",
            errors=[{"loc": ["buffer"], "msg": f"out of range: {value}"}],
        )
    return value


def booking_window(booking: Booking) -> TimeWindow:
    """The window a stored booking occupies, buffers included."""
    return TimeWindow.buffered(
        booking.date,
        booking.start_time,
        booking.end_time,
        booking.buffer_before_min,
        booking.buffer_after_min,
    )


class AvailabilityChecker:
    """Reports committed bookings that overlap a requested window.

    Read-only. ``evaluate`` expects the caller to hold the database (inside
    a unit of work); ``check_availability`` and ``get_resource_occupancy``
    take a snapshot themselves.
    """

    def __init__(self, db: Database, catalog: ResourceCatalog | None = None):
        self.db = db
        self.catalog: ResourceCatalog = catalog or db

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_availability(
        self,
        resource_id: int | None,
        date: dt.date,
        start_time: dt.time,
        end_time: dt.time,
        buffer_before_min: int | None = None,
        buffer_after_min: int | None = None,
        exclude_booking_id: int | None = None,
    ) -> AvailabilityResult:
        params = AvailabilityParams(
            resource_id=resource_id,
            date=date,
            start_time=start_time,
            end_time=end_time,
            buffer_before_min=buffer_before_min,
            buffer_after_min=buffer_after_min,
            exclude_booking_id=exclude_booking_id,
        )
        async with self.db.snapshot():
            return await self.evaluate(params)

    async def get_resource_occupancy(self, resource_id: int, date: dt.date) -> ResourceOccupancy:
        async with self.db.snapshot():
            await self._active_resource(resource_id)
            bookings = await self.db.find_resource_bookings(resource_id, date, BLOCKING_STATUSES)

        blocks = []
        for booking in bookings:
            window = booking_window(booking)
            blocks.append(
                OccupancyBlock(
                    booking_id=booking.id,
                    effective_from=window.formatted_start,
                    effective_to=window.formatted_end,
                    status=booking.status,
                )
            )
        blocks.sort(key=lambda b: (b.effective_from, b.booking_id))
        return ResourceOccupancy(resource_id=resource_id, date=date, blocks=blocks)

    # ------------------------------------------------------------------
    # Unit-of-work API
    # ------------------------------------------------------------------

    async def evaluate(self, params: AvailabilityParams) -> AvailabilityResult:
        if params.start_time >= params.end_time:
            raise BookingValidationError(
                "start_time must be before end_time",
                errors=[{"loc": ["start_time"], "msg": "must be before end_time"}],
            )

        if params.resource_id is None:
            return AvailabilityResult(
                available=None,
                skipped=True,
                reason=FREE_LOCATION_REASON,
                conflicts=[],
            )

        resource = await self._active_resource(params.resource_id)
        candidate = TimeWindow.buffered(
            params.date,
            params.start_time,
            params.end_time,
            resolve_buffer(params.buffer_before_min, resource.default_buffer_before_min),
            resolve_buffer(params.buffer_after_min, resource.default_buffer_after_min),
        )

        existing = await self.db.find_resource_bookings(
            params.resource_id, params.date, BLOCKING_STATUSES, params.exclude_booking_id
        )

        conflicts: list[tuple[TimeWindow, ConflictItem]] = []
        for booking in existing:
            if booking.id == params.exclude_booking_id:
                continue
            window = booking_window(booking)
            if candidate.overlaps(window):
                conflicts.append(
                    (
                        window,
                        ConflictItem(
                            booking_id=booking.id,
                            status=booking.status,
                            title=booking.title,
                            resource_id=booking.resource_id,
                            date=booking.date,
                            effective_from=window.formatted_start,
                            effective_to=window.formatted_end,
                            buffer_before_min=booking.buffer_before_min,
                            buffer_after_min=booking.buffer_after_min,
                        ),
                    )
                )
        conflicts.sort(key=lambda pair: (pair[0].start, pair[1].booking_id))

        if conflicts:
            logger.info(
                "Resource %d busy for %s: %d conflict(s)",
                params.resource_id,
                candidate,
                len(conflicts),
            )

        return AvailabilityResult(
            available=not conflicts,
            skipped=False,
            effective_from=candidate.formatted_start,
            effective_to=candidate.formatted_end,
            conflicts=[item for _, item in conflicts],
        )

    async def evaluate_booking(self, booking: Booking) -> AvailabilityResult:
        """Re-check a stored booking against everyone else."""
        return await self.evaluate(
            AvailabilityParams(
                resource_id=booking.resource_id,
                date=booking.date,
                start_time=booking.start_time,
                end_time=booking.end_time,
                buffer_before_min=booking.buffer_before_min,
                buffer_after_min=booking.buffer_after_min,
                exclude_booking_id=booking.id,
            )
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _active_resource(self, resource_id: int) -> ResourceInfo:
        resource = await self.catalog.lookup_resource(resource_id)
        if resource is None or not resource.active:
            raise NotFoundError(f"Resource {resource_id} not found")
        return resource
