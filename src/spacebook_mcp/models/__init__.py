from spacebook_mcp.models.actor import Action, Actor, Authority
from spacebook_mcp.models.audit import AuditEntry, AuditKind
from spacebook_mcp.models.availability import AvailabilityParams, AvailabilityResult, ConflictItem
from spacebook_mcp.models.booking import Booking, BookingDraft, Priority, Status, SupportMode
from spacebook_mcp.models.conflict import ConflictDecision, ConflictRecord, ConflictStatus
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.models.tech_capacity import TechCapacityConfig

__all__ = [
    "Action",
    "Actor",
    "Authority",
    "AuditEntry",
    "AuditKind",
    "AvailabilityParams",
    "AvailabilityResult",
    "Booking",
    "BookingDraft",
    "ConflictDecision",
    "ConflictItem",
    "ConflictRecord",
    "ConflictStatus",
    "Priority",
    "ResourceInfo",
    "Status",
    "SupportMode",
    "TechCapacityConfig",
]
