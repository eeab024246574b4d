from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from spacebook_mcp.db.database import Database
from spacebook_mcp.errors import BookingError
from spacebook_mcp.models.booking import Status
from spacebook_mcp.models.conflict import ConflictDecision
from spacebook_mcp.services.priority_resolver import PriorityConflictResolver
from spacebook_mcp.tools import resolve_principal


def register(
    mcp: FastMCP,
    resolver: PriorityConflictResolver,
    db: Database,
) -> None:
    """Register priority-conflict MCP tools."""

    @mcp.tool()
    async def get_open_conflicts(booking_id: int) -> dict:
        """List unresolved priority conflicts a booking takes part in.

        Args:
            booking_id: Booking on either side of the conflict
        """
        try:
            records = await resolver.get_open_conflicts(booking_id)
        except BookingError as exc:
            return exc.to_dict()
        return {
            "success": True,
            "booking_id": booking_id,
            "conflicts": [r.model_dump(mode="json") for r in records],
        }

    @mcp.tool()
    async def resolve_conflict(
        principal: str,
        conflict_code: str,
        decision: ConflictDecision,
        target: Status | None = None,
        reason: str | None = None,
    ) -> dict:
        """Close an open priority conflict.

        KEEP_NEW keeps the displacing booking; KEEP_DISPLACED keeps the one
        that was pushed aside. No booking status changes here: if a target is
        given it is checked against the losing booking and returned as the
        follow_up to apply with change_status.

        Args:
            principal: Id of the person deciding
            conflict_code: Code of the conflict, e.g. PRIO-20250301-00001
            decision: KEEP_NEW or KEEP_DISPLACED
            target: Status the losing booking should move to next
            reason: Why the decision was made
        """
        try:
            actor = await resolve_principal(db, principal)
            resolution = await resolver.resolve_conflict(
                conflict_code, decision, actor, target=target, reason=reason
            )
        except BookingError as exc:
            return exc.to_dict()
        return {"success": True, **resolution.model_dump(mode="json")}
