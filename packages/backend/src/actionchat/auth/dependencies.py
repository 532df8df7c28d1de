"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

Two auth mechanisms:
1. Bearer JWT token (for users)
2. API key, either ``Authorization: Bearer ac_...`` or ``X-API-Key: ac_...``
   (for programmatic callers)

A request with neither is unauthenticated; the required variant rejects
it with 401 before the handler runs.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.api_keys import hash_api_key, looks_like_api_key
from actionchat.auth.jwt import TokenError, verify_token
from actionchat.db.engine import get_db
from actionchat.db.models import ApiKey
from actionchat.errors import Unauthenticated

logger = structlog.get_logger()


class CurrentIdentity:
    """Represents the authenticated principal making the request.

    Learn: Either a user (JWT) or an API key. A user identity has no org
    yet; the org is resolved from the ``org_id`` cookie hint and the
    user's memberships. An API key identity is pinned to the key's org
    and, optionally, to a list of agents.
    """

    def __init__(
        self,
        user_id: Optional[uuid.UUID] = None,
        org_id: Optional[uuid.UUID] = None,
        identity_type: str = "user",  # "user" or "api_key"
        api_key_id: Optional[uuid.UUID] = None,
        agent_ids: Optional[list[str]] = None,
    ):
        self.user_id = user_id
        self.org_id = org_id
        self.identity_type = identity_type
        self.api_key_id = api_key_id
        self.agent_ids = agent_ids

    @property
    def is_api_key(self) -> bool:
        return self.identity_type == "api_key"

    def can_access_agent(self, agent_id: uuid.UUID) -> bool:
        """Agent-scoped keys only see their agents; everything else sees all."""
        if not self.agent_ids:
            return True
        return str(agent_id) in self.agent_ids


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[7:].strip()

    if bearer and looks_like_api_key(bearer):
        return await authenticate_api_key(bearer, db)
    if x_api_key and looks_like_api_key(x_api_key):
        return await authenticate_api_key(x_api_key, db)
    if bearer:
        return _authenticate_jwt(bearer)
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise Unauthenticated("Unauthorized")
    return identity


async def get_current_human(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Like get_current_user, but API keys are not accepted (self-service routes)."""
    if identity.is_api_key:
        raise Unauthenticated("This endpoint requires a user session")
    return identity


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT access token."""
    try:
        payload = verify_token(token)
        user_id = uuid.UUID(payload["sub"])
    except (TokenError, ValueError) as e:
        raise Unauthenticated(str(e))
    return CurrentIdentity(user_id=user_id, identity_type="user")


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def authenticate_api_key(raw_key: str, db: AsyncSession) -> CurrentIdentity:
    """Authenticate via API key: lookup by hash, then active and expiry checks."""
    result = await db.execute(
        select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key))
    )
    api_key = result.scalars().first()

    if not api_key:
        raise Unauthenticated("Invalid API key")
    if not api_key.is_active:
        raise Unauthenticated("API key has been revoked")

    now = datetime.now(timezone.utc)
    if api_key.expires_at and _aware(api_key.expires_at) < now:
        raise Unauthenticated("API key has expired")

    api_key.last_used_at = now
    await db.commit()

    logger.debug("auth.api_key_used", api_key_id=str(api_key.id))
    return CurrentIdentity(
        org_id=api_key.org_id,
        identity_type="api_key",
        api_key_id=api_key.id,
        agent_ids=api_key.agent_ids or None,
    )
