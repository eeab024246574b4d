"""Collaborators the booking engine consumes but does not own.

``Database`` satisfies ``ResourceCatalog`` and ``ActorDirectory``;
``DatabaseAuditSink`` and ``EventBus`` are the default audit and
notification sinks.
"""

from __future__ import annotations

from typing import Any, Protocol

from spacebook_mcp.models.actor import Actor
from spacebook_mcp.models.audit import AuditKind
from spacebook_mcp.models.resource import ResourceInfo


class ResourceCatalog(Protocol):
    async def lookup_resource(self, resource_id: int) -> ResourceInfo | None: ...


class ActorDirectory(Protocol):
    async def resolve_actor(self, principal: str) -> Actor: ...


class AuditSink(Protocol):
    """Must write inside the caller's unit of work; a failure aborts it."""

    async def append(
        self,
        subject_id: int,
        actor: Actor | None,
        kind: AuditKind,
        from_value: str | None,
        to_value: str | None,
        reason: str | None = None,
        note: str | None = None,
        details: str | None = None,
    ) -> None: ...


class NotificationSink(Protocol):
    async def publish(self, event_type: str, data: dict[str, Any]) -> None: ...
