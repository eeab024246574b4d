from __future__ import annotations

import asyncio

import click

from spacebook_mcp import __version__
from spacebook_mcp.models.actor import Authority


@click.group()
@click.version_option(version=__version__, prog_name="spacebook-mcp")
def main() -> None:
    """SpaceBook MCP: resource booking conflicts and approval workflow."""


@main.command()
@click.option(
    "--db-path",
    default="data/spacebook.db",
    show_default=True,
    help="Path for the SQLite database file.",
)
def init(db_path: str) -> None:
    """Initialize the SpaceBook database."""
    from spacebook_mcp.db.database import Database
    from spacebook_mcp.services.tech_capacity import seed_config
    from spacebook_mcp.utils.config import get_config

    async def _init() -> None:
        db = Database(db_path)
        await db.initialize()
        config = get_config()
        await seed_config(db, config.tech_block_minutes, config.tech_slots_per_block)
        await db.close()
        click.echo(f"Database initialized at {db_path}")

    asyncio.run(_init())


@main.command("seed-capacity")
@click.option("--db-path", default="data/spacebook.db", show_default=True)
@click.option(
    "--block-minutes",
    default=30,
    show_default=True,
    type=click.IntRange(1, 1440),
    help="Length of one capacity block.",
)
@click.option(
    "--slots",
    default=10,
    show_default=True,
    type=click.IntRange(min=0),
    help="Technical-support bookings allowed per block.",
)
@click.option("--notes", default=None, help="Free-form note stored with the config.")
def seed_capacity(db_path: str, block_minutes: int, slots: int, notes: str | None) -> None:
    """Set the technical capacity configuration, replacing any existing one."""
    from spacebook_mcp.db.database import Database
    from spacebook_mcp.models.tech_capacity import TechCapacityConfig

    async def _seed() -> None:
        db = Database(db_path)
        await db.initialize()
        try:
            async with db.transaction():
                await db.save_tech_capacity_config(
                    TechCapacityConfig(block_minutes=block_minutes, slots_per_block=slots, notes=notes)
                )
        finally:
            await db.close()
        click.echo(f"Tech capacity set to {slots} slot(s) per {block_minutes}-minute block")

    asyncio.run(_seed())


@main.command("add-resource")
@click.option("--db-path", default="data/spacebook.db", show_default=True)
@click.option("--id", "resource_id", required=True, type=int, help="Resource id.")
@click.option("--name", required=True, help="Display name.")
@click.option("--buffer-before", default=0, show_default=True, type=click.IntRange(0, 240))
@click.option("--buffer-after", default=0, show_default=True, type=click.IntRange(0, 240))
@click.option("--inactive", is_flag=True, help="Register the resource as inactive.")
def add_resource(
    db_path: str,
    resource_id: int,
    name: str,
    buffer_before: int,
    buffer_after: int,
    inactive: bool,
) -> None:
    """Add or update a bookable resource."""
    from spacebook_mcp.db.database import Database
    from spacebook_mcp.models.resource import ResourceInfo

    async def _add() -> None:
        db = Database(db_path)
        await db.initialize()
        try:
            async with db.transaction():
                await db.upsert_resource(
                    ResourceInfo(
                        id=resource_id,
                        name=name,
                        active=not inactive,
                        default_buffer_before_min=buffer_before,
                        default_buffer_after_min=buffer_after,
                    )
                )
        finally:
            await db.close()
        click.echo(f"Resource {resource_id} ({name}) saved")

    asyncio.run(_add())


@main.command("add-actor")
@click.option("--db-path", default="data/spacebook.db", show_default=True)
@click.option("--id", "actor_id", required=True, help="Principal the actor signs in as.")
@click.option("--name", default=None, help="Display name.")
@click.option(
    "--authority",
    "authorities",
    multiple=True,
    type=click.Choice([a.value for a in Authority], case_sensitive=False),
    help="Authority to grant; repeat for several.",
)
def add_actor(db_path: str, actor_id: str, name: str | None, authorities: tuple[str, ...]) -> None:
    """Add or update an actor and its authorities."""
    from spacebook_mcp.db.database import Database
    from spacebook_mcp.models.actor import Actor

    async def _add() -> None:
        db = Database(db_path)
        await db.initialize()
        try:
            async with db.transaction():
                await db.upsert_actor(
                    Actor(
                        id=actor_id,
                        display_name=name,
                        authorities=frozenset(Authority(a.upper()) for a in authorities),
                    )
                )
        finally:
            await db.close()
        granted = ", ".join(sorted(a.upper() for a in authorities)) or "none"
        click.echo(f"Actor {actor_id} saved (authorities: {granted})")

    asyncio.run(_add())


@main.command()
def start() -> None:
    """Start the SpaceBook MCP server."""
    from spacebook_mcp.server import mcp

    click.echo("Starting SpaceBook MCP Server...")
    mcp.run()


@main.command()
def version() -> None:
    """Print the version and exit."""
    click.echo(f"spacebook-mcp {__version__}")


if __name__ == "__main__":
    main()
