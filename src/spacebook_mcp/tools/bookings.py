from __future__ import annotations

import datetime as dt

from mcp.server.fastmcp import FastMCP

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import BookingError
from spacebook_mcp.models.booking import Priority, Status, SupportMode
from spacebook_mcp.services.bookings import BookingService
from spacebook_mcp.services.status_engine import StatusTransitionEngine
from spacebook_mcp.tools import resolve_principal


def register(
    mcp: FastMCP,
    booking_service: BookingService,
    engine: StatusTransitionEngine,
    db: Database,
) -> None:
    """Register booking intake and workflow MCP tools."""

    @mcp.tool()
    async def create_booking(
        principal: str,
        title: str,
        date: dt.date,
        start_time: dt.time,
        end_time: dt.time,
        resource_id: int | None = None,
        free_location: str | None = None,
        buffer_before_min: int | None = None,
        buffer_after_min: int | None = None,
        priority: Priority = Priority.MEDIUM,
        requires_tech: bool = False,
        tech_support_mode: SupportMode = SupportMode.ATTENDED,
    ) -> dict:
        """Submit a booking request. It starts as REQUESTED.

        Give either a resource_id or a free_location, never both. Omitted
        buffers fall back to the resource's defaults.

        Args:
            principal: Id of the person making the request
            title: Short description of the event
            date: Day of the event (YYYY-MM-DD)
            start_time: Start of the event (HH:MM)
            end_time: End of the event (HH:MM), after start_time
            resource_id: Bookable resource, if any
            free_location: Free-text location when no resource is booked
            buffer_before_min: Set-up minutes before the start (0-240)
            buffer_after_min: Tear-down minutes after the end (0-240)
            priority: LOW, MEDIUM or HIGH
            requires_tech: Whether technical staff must support the event
            tech_support_mode: ATTENDED or SETUP_ONLY
        """
        try:
            actor = await resolve_principal(db, principal)
            booking = await booking_service.create_booking(
                {
                    "title": title,
                    "date": date,
                    "start_time": start_time,
                    "end_time": end_time,
                    "resource_id": resource_id,
                    "free_location": free_location,
                    "buffer_before_min": buffer_before_min,
                    "buffer_after_min": buffer_after_min,
                    "priority": priority,
                    "requires_tech": requires_tech,
                    "tech_support_mode": tech_support_mode,
                },
                actor,
            )
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, "booking": booking.model_dump(mode="json")}

    @mcp.tool()
    async def get_booking(booking_id: int) -> dict:
        """Fetch a booking with its status, approval flags and rebooking flag.

        Args:
            booking_id: Booking to fetch
        """
        try:
            booking = await booking_service.get_booking(booking_id)
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, "booking": booking.model_dump(mode="json")}

    @mcp.tool()
    async def get_history(booking_id: int) -> dict:
        """Audit trail of a booking, oldest entry first.

        Args:
            booking_id: Booking whose history to list
        """
        try:
            entries = await booking_service.get_history(booking_id)
        except BookingError as exc:
            return exc.to_dict()
        return {
            "success": True,
            "booking_id": booking_id,
            "entries": [e.model_dump(mode="json") for e in entries],
        }

    @mcp.tool()
    async def get_status_options(booking_id: int) -> dict:
        """List the statuses a booking may move to next.

        Args:
            booking_id: Booking to inspect
        """
        try:
            options = await engine.get_status_options(booking_id)
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, **options.model_dump(mode="json")}

    @mcp.tool()
    async def change_status(
        principal: str,
        booking_id: int,
        target: Status,
        reason: str | None = None,
        note: str | None = None,
        ceremonial_ok: bool | None = None,
        technical_ok: bool | None = None,
    ) -> dict:
        """Move a booking through the approval workflow.

        Approving raises every approval flag you have authority for. While a
        flag is still missing the booking keeps its status and the result
        reports approval_pending with the missing flags. A HIGH priority
        booking may displace lower ones; the opened conflict codes are
        returned so they can be resolved later.

        Args:
            principal: Id of the person making the change
            booking_id: Booking to change
            target: IN_REVIEW, RESERVED, APPROVED or REJECTED
            reason: Why the change is made (kept in the history)
            note: Free-form note (kept in the history)
            ceremonial_ok: Set the ceremonial approval flag explicitly
            technical_ok: Set the technical approval flag explicitly
        """
        try:
            actor = await resolve_principal(db, principal)
            result = await engine.change_status(
                booking_id,
                target,
                actor,
                reason=reason,
                note=note,
                ceremonial_ok=ceremonial_ok,
                technical_ok=technical_ok,
            )
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, **result.model_dump(mode="json")}
