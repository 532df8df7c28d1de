"""Event store — append-only activity log.

Learn: Every mutation a handler performs also appends one event row
{type: "agent.updated", data: {...}, meta: {actor_id: ...}}. Events are
never updated or deleted; they are what GET /activity reads back.

Each event carries the org it happened in, so the log is scoped exactly
like every other org-owned table.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.db.models import Event


class EventStore:
    """Append-only event store, one per request session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        org_id: Optional[uuid.UUID],
        stream_id: str,
        event_type: str,
        data: dict,
        actor: Optional[str] = None,
    ) -> Event:
        """Append an event to a stream. Flushed, not committed."""
        event = Event(
            org_id=org_id,
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta={"actor_id": actor} if actor else {},
        )
        self.db.add(event)
        await self.db.flush()  # get the auto-generated id
        return event

    async def read_org(
        self,
        org_id: uuid.UUID,
        actor: Optional[str] = None,
        event_types: Optional[list[str]] = None,
        limit: int = 50,
    ) -> list[Event]:
        """Most recent events of one org, newest first."""
        query = (
            select(Event)
            .where(Event.org_id == org_id)
            .order_by(Event.id.desc())
            .limit(limit)
        )
        if actor is not None:
            query = query.where(Event.meta["actor_id"].as_string() == actor)
        if event_types:
            query = query.where(Event.type.in_(event_types))
        result = await self.db.execute(query)
        return list(result.scalars().all())
