from __future__ import annotations

from spacebook_mcp.db.database import Database
from spacebook_mcp.models.actor import Actor


async def resolve_principal(db: Database, principal: str) -> Actor:
    """Map the caller-supplied principal to an active actor."""
    async with db.snapshot():
        return await db.resolve_actor(principal)
