"""Error taxonomy for the booking engine.

Business outcomes derive from ``BookingError`` and carry a stable ``code``
plus whatever detail the caller needs to display. None of them is retried:
each reflects the state of the bookings, not a transient fault.

``StorageError`` is deliberately outside that hierarchy: it marks an
infrastructure failure that aborted the unit of work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from spacebook_mcp.models.availability import AvailabilityResult


class BookingError(Exception):
    """Base exception for all business-rule failures."""

    code = "BOOKING_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message, **self.details()}


class NotFoundError(BookingError):
    """A booking, resource, actor or conflict is missing or inactive."""

    code = "NOT_FOUND"


class BookingValidationError(BookingError):
    """Ordering, buffer range or exclusive resource/location rule violated."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    def details(self) -> dict[str, Any]:
        return {"errors": self.errors}


class AvailabilityConflictError(BookingError):
    """The requested window overlaps committed bookings on the resource."""

    code = "AVAILABILITY_CONFLICT"

    def __init__(self, result: AvailabilityResult) -> None:
        super().__init__("Availability conflict")
        self.result = result

    def details(self) -> dict[str, Any]:
        return {"availability": self.result.model_dump(mode="json")}


class PriorityTieError(BookingError):
    """Two HIGH priority bookings collide; needs manual handling."""

    code = "PRIORITY_TIE"

    def __init__(self, booking_id: int, tied_with: list[int]) -> None:
        super().__init__(f"Booking {booking_id} ties with HIGH priority bookings {tied_with}")
        self.booking_id = booking_id
        self.tied_with = tied_with

    def details(self) -> dict[str, Any]:
        return {"booking_id": self.booking_id, "tied_with": self.tied_with}


class CapacityExceededError(BookingError):
    """No technical-support slot is left for some block of the window."""

    code = "TECH_CAPACITY_EXCEEDED"


class ForbiddenError(BookingError):
    """The actor lacks the authority for the requested flag or transition."""

    code = "FORBIDDEN"


class IllegalTransitionError(BookingError):
    """The target is not reachable from the current state."""

    code = "ILLEGAL_TRANSITION"


class StorageError(Exception):
    """The database could not complete the unit of work."""
