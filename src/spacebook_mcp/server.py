from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from spacebook_mcp.db.database import Database
from spacebook_mcp.services.audit import DatabaseAuditSink
from spacebook_mcp.services.availability import AvailabilityChecker
from spacebook_mcp.services.bookings import BookingService
from spacebook_mcp.services.event_bus import EventBus
from spacebook_mcp.services.priority_resolver import PriorityConflictResolver
from spacebook_mcp.services.status_engine import StatusTransitionEngine
from spacebook_mcp.services.tech_capacity import TechCapacityGate, seed_config
from spacebook_mcp.tools import availability as availability_tools
from spacebook_mcp.tools import bookings as booking_tools
from spacebook_mcp.tools import conflicts as conflict_tools
from spacebook_mcp.utils.config import get_config
from spacebook_mcp.utils.logger import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle for SpaceBook."""
    config = get_config()

    # --- Database ---
    db = Database(config.db_path)
    await db.initialize()
    await seed_config(db, config.tech_block_minutes, config.tech_slots_per_block)

    # --- Services ---
    event_bus = EventBus()
    audit = DatabaseAuditSink(db)
    checker = AvailabilityChecker(db)
    tech_gate = TechCapacityGate(db)
    resolver = PriorityConflictResolver(db, audit, event_bus)
    engine = StatusTransitionEngine(db, checker, tech_gate, resolver, audit, event_bus)
    booking_service = BookingService(db, audit)

    # --- Register MCP tools ---
    booking_tools.register(server, booking_service, engine, db)
    availability_tools.register(server, checker, tech_gate)
    conflict_tools.register(server, resolver, db)

    # --- Register MCP resource ---
    @server.resource("spacebook://tech-capacity")
    async def get_capacity_config() -> str:
        async with db.snapshot():
            active = await tech_gate.active_config()
        return (
            "SpaceBook technical capacity:\n"
            f"- Block: {active.block_minutes} min\n"
            f"- Slots per block: {active.slots_per_block}\n"
        )

    logger.info("SpaceBook MCP Server ready (db=%s)", config.db_path)

    try:
        yield
    finally:
        await db.close()
        logger.info("SpaceBook MCP Server stopped")


def create_server() -> FastMCP:
    """Build and return the configured FastMCP server."""
    config = get_config()
    setup_logging(config.log_level)

    server = FastMCP("SpaceBook", lifespan=lifespan)
    return server


# Module-level instance used by the CLI and ``python -m``
mcp = create_server()

if __name__ == "__main__":
    mcp.run()
