from __future__ import annotations

import datetime as dt

from mcp.server.fastmcp import FastMCP

from spacebook_mcp.errors import BookingError
from spacebook_mcp.services.availability import AvailabilityChecker
from spacebook_mcp.services.tech_capacity import TechCapacityGate


def register(
    mcp: FastMCP,
    checker: AvailabilityChecker,
    tech_gate: TechCapacityGate,
) -> None:
    """Register read-only availability and capacity MCP tools."""

    @mcp.tool()
    async def check_availability(
        date: dt.date,
        start_time: dt.time,
        end_time: dt.time,
        resource_id: int | None = None,
        buffer_before_min: int | None = None,
        buffer_after_min: int | None = None,
        exclude_booking_id: int | None = None,
    ) -> dict:
        """Check whether a resource is free for a time window.

        Only RESERVED and APPROVED bookings block a resource. Without a
        resource_id the check is skipped (free-text locations are never
        validated).

        Args:
            date: Day to check (YYYY-MM-DD)
            start_time: Start of the event (HH:MM)
            end_time: End of the event (HH:MM)
            resource_id: Resource to check
            buffer_before_min: Set-up minutes; defaults to the resource's value
            buffer_after_min: Tear-down minutes; defaults to the resource's value
            exclude_booking_id: Booking to ignore, e.g. the one being edited
        """
        try:
            result = await checker.check_availability(
                resource_id,
                date,
                start_time,
                end_time,
                buffer_before_min=buffer_before_min,
                buffer_after_min=buffer_after_min,
                exclude_booking_id=exclude_booking_id,
            )
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, **result.model_dump(mode="json")}

    @mcp.tool()
    async def get_resource_occupancy(resource_id: int, date: dt.date) -> dict:
        """List the blocked windows of a resource for one day.

        Args:
            resource_id: Resource to inspect
            date: Day to inspect (YYYY-MM-DD)
        """
        try:
            occupancy = await checker.get_resource_occupancy(resource_id, date)
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, **occupancy.model_dump(mode="json")}

    @mcp.tool()
    async def get_tech_capacity(date: dt.date) -> dict:
        """Show used and free technical-support slots per block for a day.

        Args:
            date: Day to inspect (YYYY-MM-DD)
        """
        overview = await tech_gate.get_capacity(date)
        return {"success": True, **overview.model_dump(mode="json")}

    @mcp.tool()
    async def get_tech_bookings(date: dt.date) -> dict:
        """List bookings that need technical support on a day.

        Args:
            date: Day to inspect (YYYY-MM-DD)
        """
        bookings = await tech_gate.get_tech_bookings(date)
        return {
            "success": True,
            "date": date.isoformat(),
            "bookings": [b.model_dump(mode="json") for b in bookings],
        }
