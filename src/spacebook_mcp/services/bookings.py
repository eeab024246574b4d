from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import BookingValidationError, NotFoundError
from spacebook_mcp.interfaces import AuditSink, ResourceCatalog
from spacebook_mcp.models.actor import Actor
from spacebook_mcp.models.audit import AuditEntry, AuditKind
from spacebook_mcp.models.booking import Booking, BookingDraft, Status
from spacebook_mcp.services.audit import DatabaseAuditSink
from spacebook_mcp.services.availability import resolve_buffer

logger = logging.getLogger(__name__)


class BookingService:
    """Booking intake and lookups.

    New bookings always start as REQUESTED with both approval flags down;
    everything after that goes through the status engine.
    """

    def __init__(
        self,
        db: Database,
        audit: AuditSink | None = None,
        catalog: ResourceCatalog | None = None,
    ):
        self.db = db
        self.audit: AuditSink = audit or DatabaseAuditSink(db)
        self.catalog: ResourceCatalog = catalog or db

    async def create_booking(self, draft: BookingDraft | dict[str, Any], actor: Actor) -> Booking:
        if not isinstance(draft, BookingDraft):
            try:
                draft = BookingDraft.model_validate(draft)
            except ValidationError as exc:
                logger.warning("Rejected booking draft from %s: %d error(s)", actor.id, exc.error_count())
                raise BookingValidationError(
                    "Invalid booking request",
                    errors=exc.errors(include_url=False, include_context=False, include_input=False),
                ) from exc

        async with self.db.transaction():
            if draft.resource_id is not None:
                resource = await self.catalog.lookup_resource(draft.resource_id)
                if resource is None or not resource.active:
                    raise NotFoundError(f"Resource {draft.resource_id} not found")
                before = resolve_buffer(draft.buffer_before_min, resource.default_buffer_before_min)
                after = resolve_buffer(draft.buffer_after_min, resource.default_buffer_after_min)
            else:
                before = resolve_buffer(draft.buffer_before_min, 0)
                after = resolve_buffer(draft.buffer_after_min, 0)

            booking = Booking(
                id=0,
                title=draft.title,
                date=draft.date,
                start_time=draft.start_time,
                end_time=draft.end_time,
                resource_id=draft.resource_id,
                free_location=draft.free_location,
                buffer_before_min=before,
                buffer_after_min=after,
                status=Status.REQUESTED,
                priority=draft.priority,
                requires_tech=draft.requires_tech,
                tech_support_mode=draft.tech_support_mode,
                created_by=actor.id,
                last_modified_by=actor.id,
            )
            booking.id = await self.db.insert_booking(booking)
            await self.audit.append(
                booking.id, actor, AuditKind.STATUS, None, Status.REQUESTED.value
            )

        logger.info(
            "Booking %d created by %s for %s %s-%s",
            booking.id,
            actor.id,
            booking.date,
            booking.start_time.strftime("%H:%M"),
            booking.end_time.strftime("%H:%M"),
        )
        return booking

    async def get_booking(self, booking_id: int) -> Booking:
        async with self.db.snapshot():
            booking = await self.db.get_booking(booking_id)
        if booking is None or not booking.active:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def get_history(self, booking_id: int) -> list[AuditEntry]:
        """Audit trail of a booking, oldest first."""
        async with self.db.snapshot():
            if await self.db.get_booking(booking_id) is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            return await self.db.get_audit_entries(booking_id)
