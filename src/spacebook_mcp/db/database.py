from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
from contextlib import asynccontextmanager
from importlib import resources
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Sequence

import aiosqlite

from spacebook_mcp.errors import NotFoundError, StorageError
from spacebook_mcp.models.actor import Actor, Authority
from spacebook_mcp.models.audit import AuditEntry, AuditKind
from spacebook_mcp.models.booking import Booking, Status
from spacebook_mcp.models.conflict import ConflictDecision, ConflictRecord, ConflictStatus
from spacebook_mcp.models.resource import ResourceInfo
from spacebook_mcp.models.tech_capacity import TechCapacityConfig

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/spacebook.db")

_BOOKING_COLUMNS = """
    id, title, resource_id, free_location, date, start_time, end_time,
    buffer_before_min, buffer_after_min, status, ceremonial_ok, technical_ok,
    priority, requires_tech, tech_support_mode, requires_rebooking, active,
    created_by, last_modified_by, created_at, updated_at
"""


def _time_str(value: dt.time) -> str:
    return value.isoformat(timespec="seconds")


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


class Database:
    """Async SQLite persistence for SpaceBook.

    Holds a single persistent connection in autocommit mode. Units of work
    are serialised on an ``asyncio.Lock`` and wrapped in ``BEGIN IMMEDIATE``
    so the check-then-write sequence of a status change cannot interleave
    with another writer, in this process or in another one sharing the file.

    Query methods never commit; callers run them inside ``transaction()``
    or ``snapshot()``.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else _DEFAULT_DB_PATH
        self._conn: aiosqlite.Connection | None = None
        self._mu = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the database file, apply the schema, and open the persistent connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        schema_sql = (
            resources.files("spacebook_mcp.db").joinpath("schema.sql").read_text()
        )

        self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        await self._conn.executescript(schema_sql)

        logger.info("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        assert self._conn is not None, "Database not initialized; call initialize() first"
        return self._conn

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Database]:
        """Run the body as one atomic unit of work.

        Any exception rolls everything back. SQLite failures surface as
        ``StorageError``; business errors propagate unchanged.
        """
        async with self._mu:
            try:
                await self.conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as exc:
                raise StorageError(f"Could not open transaction: {exc}") from exc
            try:
                yield self
            except BaseException as exc:
                await self._rollback()
                if isinstance(exc, aiosqlite.Error):
                    raise StorageError(str(exc)) from exc
                raise
            try:
                await self.conn.execute("COMMIT")
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Commit failed: {exc}") from exc

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[Database]:
        """Read-only access; waits for any unit of work in flight."""
        async with self._mu:
            try:
                yield self
            except aiosqlite.Error as exc:
                raise StorageError(str(exc)) from exc

    async def _rollback(self) -> None:
        try:
            await self.conn.execute("ROLLBACK")
        except aiosqlite.Error:
            logger.exception("Rollback failed")

    # ------------------------------------------------------------------
    # Resource catalog
    # ------------------------------------------------------------------

    async def upsert_resource(self, resource: ResourceInfo) -> None:
        await self.conn.execute(
            """
            INSERT INTO resources (id, name, active, default_buffer_before_min, default_buffer_after_min)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                active = excluded.active,
                default_buffer_before_min = excluded.default_buffer_before_min,
                default_buffer_after_min = excluded.default_buffer_after_min
            """,
            (
                resource.id,
                resource.name,
                int(resource.active),
                resource.default_buffer_before_min,
                resource.default_buffer_after_min,
            ),
        )

    async def lookup_resource(self, resource_id: int) -> ResourceInfo | None:
        cursor = await self.conn.execute(
            """
            SELECT id, name, active, default_buffer_before_min, default_buffer_after_min
            FROM resources WHERE id = ?
            """,
            (resource_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return ResourceInfo(**{**dict(row), "active": bool(row["active"])})

    # ------------------------------------------------------------------
    # Actor directory
    # ------------------------------------------------------------------

    async def upsert_actor(self, actor: Actor, active: bool = True) -> None:
        await self.conn.execute(
            """
            INSERT INTO actors (actor_id, display_name, authorities, active)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(actor_id) DO UPDATE SET
                display_name = excluded.display_name,
                authorities = excluded.authorities,
                active = excluded.active
            """,
            (
                actor.id,
                actor.display_name,
                json.dumps(sorted(a.value for a in actor.authorities)),
                int(active),
            ),
        )

    async def resolve_actor(self, principal: str) -> Actor:
        cursor = await self.conn.execute(
            "SELECT actor_id, display_name, authorities FROM actors WHERE actor_id = ? AND active = 1",
            (principal,),
        )
        row = await cursor.fetchone()
        if not row:
            raise NotFoundError(f"Actor {principal!r} not found")
        return Actor(
            id=row["actor_id"],
            display_name=row["display_name"],
            authorities=frozenset(Authority(a) for a in json.loads(row["authorities"])),
        )

    # ------------------------------------------------------------------
    # Booking operations
    # ------------------------------------------------------------------

    async def insert_booking(self, booking: Booking) -> int:
        cursor = await self.conn.execute(
            """
            INSERT INTO bookings (
                title, resource_id, free_location, date, start_time, end_time,
                buffer_before_min, buffer_after_min, status, ceremonial_ok, technical_ok,
                priority, requires_tech, tech_support_mode, requires_rebooking, active,
                created_by, last_modified_by, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.title,
                booking.resource_id,
                booking.free_location,
                booking.date.isoformat(),
                _time_str(booking.start_time),
                _time_str(booking.end_time),
                booking.buffer_before_min,
                booking.buffer_after_min,
                booking.status.value,
                int(booking.ceremonial_ok),
                int(booking.technical_ok),
                booking.priority.value,
                int(booking.requires_tech),
                booking.tech_support_mode.value,
                int(booking.requires_rebooking),
                int(booking.active),
                booking.created_by,
                booking.last_modified_by,
                booking.created_at.isoformat(),
                booking.updated_at.isoformat(),
            ),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_booking(self, booking_id: int) -> Booking | None:
        cursor = await self.conn.execute(
            f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = ?", (booking_id,)
        )
        row = await cursor.fetchone()
        return self._booking_from_row(row) if row else None

    async def get_bookings(self, booking_ids: Sequence[int]) -> list[Booking]:
        if not booking_ids:
            return []
        cursor = await self.conn.execute(
            f"""
            SELECT {_BOOKING_COLUMNS} FROM bookings
            WHERE id IN ({_placeholders(booking_ids)})
            ORDER BY id
            """,
            tuple(booking_ids),
        )
        rows = await cursor.fetchall()
        return [self._booking_from_row(row) for row in rows]

    async def find_resource_bookings(
        self,
        resource_id: int,
        date: dt.date,
        statuses: Iterable[Status],
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        status_values = [s.value for s in statuses]
        cursor = await self.conn.execute(
            f"""
            SELECT {_BOOKING_COLUMNS} FROM bookings
            WHERE active = 1
              AND resource_id = ?
              AND date = ?
              AND status IN ({_placeholders(status_values)})
              AND (? IS NULL OR id <> ?)
            ORDER BY start_time, id
            """,
            (resource_id, date.isoformat(), *status_values, exclude_booking_id, exclude_booking_id),
        )
        rows = await cursor.fetchall()
        return [self._booking_from_row(row) for row in rows]

    async def find_tech_bookings(
        self,
        date: dt.date,
        statuses: Iterable[Status],
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        status_values = [s.value for s in statuses]
        cursor = await self.conn.execute(
            f"""
            SELECT {_BOOKING_COLUMNS} FROM bookings
            WHERE active = 1
              AND requires_tech = 1
              AND date = ?
              AND status IN ({_placeholders(status_values)})
              AND (? IS NULL OR id <> ?)
            ORDER BY start_time, id
            """,
            (date.isoformat(), *status_values, exclude_booking_id, exclude_booking_id),
        )
        rows = await cursor.fetchall()
        return [self._booking_from_row(row) for row in rows]

    async def update_booking_workflow(
        self,
        booking_id: int,
        status: Status,
        ceremonial_ok: bool,
        technical_ok: bool,
        modified_by: str,
    ) -> None:
        await self.conn.execute(
            """
            UPDATE bookings
            SET status = ?, ceremonial_ok = ?, technical_ok = ?,
                last_modified_by = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                status.value,
                int(ceremonial_ok),
                int(technical_ok),
                modified_by,
                dt.datetime.now().isoformat(),
                booking_id,
            ),
        )

    async def set_requires_rebooking(self, booking_id: int, value: bool) -> None:
        await self.conn.execute(
            "UPDATE bookings SET requires_rebooking = ?, updated_at = ? WHERE id = ?",
            (int(value), dt.datetime.now().isoformat(), booking_id),
        )

    async def deactivate_booking(self, booking_id: int) -> bool:
        cursor = await self.conn.execute(
            "UPDATE bookings SET active = 0, updated_at = ? WHERE id = ? AND active = 1",
            (dt.datetime.now().isoformat(), booking_id),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Priority conflict ledger
    # ------------------------------------------------------------------

    async def insert_conflict(self, record: ConflictRecord) -> int:
        cursor = await self.conn.execute(
            """
            INSERT INTO priority_conflicts (
                conflict_code, displacing_booking_id, displaced_booking_id, resource_id,
                date, from_time, to_time, status, created_by, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.conflict_code,
                record.displacing_booking_id,
                record.displaced_booking_id,
                record.resource_id,
                record.date.isoformat(),
                _time_str(record.from_time),
                _time_str(record.to_time),
                record.status.value,
                record.created_by,
                record.created_at.isoformat(),
            ),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_conflict(self, conflict_code: str) -> ConflictRecord | None:
        cursor = await self.conn.execute(
            "SELECT * FROM priority_conflicts WHERE conflict_code = ?", (conflict_code,)
        )
        row = await cursor.fetchone()
        return self._conflict_from_row(row) if row else None

    async def find_open_conflicts(
        self,
        displacing_booking_id: int | None = None,
        displaced_booking_id: int | None = None,
    ) -> list[ConflictRecord]:
        cursor = await self.conn.execute(
            """
            SELECT * FROM priority_conflicts
            WHERE status = 'OPEN'
              AND (? IS NULL OR displacing_booking_id = ?)
              AND (? IS NULL OR displaced_booking_id = ?)
            ORDER BY id
            """,
            (
                displacing_booking_id,
                displacing_booking_id,
                displaced_booking_id,
                displaced_booking_id,
            ),
        )
        rows = await cursor.fetchall()
        return [self._conflict_from_row(row) for row in rows]

    async def count_conflicts_for_date(self, date: dt.date) -> int:
        cursor = await self.conn.execute(
            "SELECT COUNT(*) AS n FROM priority_conflicts WHERE date = ?", (date.isoformat(),)
        )
        row = await cursor.fetchone()
        return int(row["n"]) if row else 0

    async def close_conflict(
        self,
        conflict_code: str,
        decision: ConflictDecision,
        decision_by: str,
        reason: str | None,
        closed_at: dt.datetime,
    ) -> bool:
        cursor = await self.conn.execute(
            """
            UPDATE priority_conflicts
            SET status = 'RESOLVED', decision = ?, decision_by = ?, reason = ?, closed_at = ?
            WHERE conflict_code = ? AND status = 'OPEN'
            """,
            (decision.value, decision_by, reason, closed_at.isoformat(), conflict_code),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Technical capacity singleton
    # ------------------------------------------------------------------

    async def get_tech_capacity_config(self) -> TechCapacityConfig | None:
        cursor = await self.conn.execute(
            """
            SELECT block_minutes, slots_per_block, active, timezone, notes
            FROM tech_capacity_config WHERE id = 1 AND active = 1
            """
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return TechCapacityConfig(**{**dict(row), "active": bool(row["active"])})

    async def save_tech_capacity_config(
        self, config: TechCapacityConfig, overwrite: bool = True
    ) -> None:
        conflict_clause = (
            """
            ON CONFLICT(id) DO UPDATE SET
                block_minutes = excluded.block_minutes,
                slots_per_block = excluded.slots_per_block,
                active = excluded.active,
                timezone = excluded.timezone,
                notes = excluded.notes
            """
            if overwrite
            else "ON CONFLICT(id) DO NOTHING"
        )
        await self.conn.execute(
            f"""
            INSERT INTO tech_capacity_config (id, block_minutes, slots_per_block, active, timezone, notes)
            VALUES (1, ?, ?, ?, ?, ?)
            {conflict_clause}
            """,
            (
                config.block_minutes,
                config.slots_per_block,
                int(config.active),
                config.timezone,
                config.notes,
            ),
        )

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditEntry) -> int:
        cursor = await self.conn.execute(
            """
            INSERT INTO audit_log
                (booking_id, actor_id, kind, from_value, to_value, reason, note, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.booking_id,
                entry.actor_id,
                entry.kind.value,
                entry.from_value,
                entry.to_value,
                entry.reason,
                entry.note,
                entry.details,
                entry.created_at.isoformat(),
            ),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_audit_entries(
        self, booking_id: int, kind: AuditKind | None = None
    ) -> list[AuditEntry]:
        cursor = await self.conn.execute(
            """
            SELECT id, booking_id, actor_id, kind, from_value, to_value, reason, note, details, created_at
            FROM audit_log
            WHERE booking_id = ? AND (? IS NULL OR kind = ?)
            ORDER BY id
            """,
            (booking_id, kind.value if kind else None, kind.value if kind else None),
        )
        rows = await cursor.fetchall()
        return [AuditEntry(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _booking_from_row(row: aiosqlite.Row) -> Booking:
        d = dict(row)
        for flag in ("ceremonial_ok", "technical_ok", "requires_tech", "requires_rebooking", "active"):
            d[flag] = bool(d[flag])
        return Booking(**d)

    @staticmethod
    def _conflict_from_row(row: aiosqlite.Row) -> ConflictRecord:
        d = dict(row)
        d["status"] = ConflictStatus(d["status"])
        return ConflictRecord(**d)
