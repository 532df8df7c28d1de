"""Activity feed — the org's event log, newest first.

Learn: Admins see everything that happened in the org. Members see only
the events they caused themselves.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import OrgContext, member_context
from actionchat.db.engine import get_db
from actionchat.events.store import EventStore
from actionchat.schemas.team import ActivityResponse

router = APIRouter()


@router.get("/activity", response_model=ActivityResponse)
async def list_activity(
    event_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=100),
    ctx: OrgContext = Depends(member_context),
    db: AsyncSession = Depends(get_db),
):
    events = await EventStore(db).read_org(
        ctx.org_id,
        actor=None if ctx.caps.is_admin else ctx.actor,
        event_types=[event_type] if event_type else None,
        limit=limit,
    )
    return {
        "ok": True,
        "events": [
            {
                "id": e.id,
                "stream_id": e.stream_id,
                "type": e.type,
                "data": e.data,
                "actor_id": (e.meta or {}).get("actor_id"),
                "created_at": e.created_at,
            }
            for e in events
        ],
    }
