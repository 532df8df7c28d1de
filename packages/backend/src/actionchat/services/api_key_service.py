"""API key service — mint, list, revoke.

Learn: The raw key is generated here, hashed, and handed back to the
caller exactly once. Nothing that can reproduce it is stored: only the
SHA-256 digest (for lookup) and a short display prefix.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.api_keys import display_prefix, generate_api_key, hash_api_key
from actionchat.db.models import Agent, ApiKey
from actionchat.errors import NotFound, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import API_KEY_CREATED, API_KEY_REVOKED

logger = structlog.get_logger()


class ApiKeyService:
    """Business logic for org API keys."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def list_keys(self, org_id: uuid.UUID) -> list[ApiKey]:
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.org_id == org_id)
            .order_by(ApiKey.created_at.desc(), ApiKey.id)
        )
        return list(result.scalars().all())

    async def create_key(
        self,
        org_id: uuid.UUID,
        created_by: uuid.UUID,
        name: Optional[str],
        agent_ids: Optional[list[uuid.UUID]] = None,
        expires_at: Optional[datetime] = None,
    ) -> tuple[ApiKey, str]:
        """Mint a key. Returns (row, raw_key); the raw key is never persisted."""
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("name is required")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= datetime.now(timezone.utc):
                raise ValidationFailed("expires_at must be in the future")

        scope = None
        if agent_ids:
            result = await self.db.execute(
                select(Agent.id).where(
                    Agent.org_id == org_id, Agent.id.in_(agent_ids)
                )
            )
            found = set(result.scalars().all())
            missing = [str(a) for a in agent_ids if a not in found]
            if missing:
                raise ValidationFailed("Unknown agent_ids", details=missing)
            scope = [str(a) for a in dict.fromkeys(agent_ids)]

        raw_key = generate_api_key()
        api_key = ApiKey(
            org_id=org_id,
            name=name,
            key_hash=hash_api_key(raw_key),
            key_prefix=display_prefix(raw_key),
            agent_ids=scope,
            is_active=True,
            expires_at=expires_at,
            created_by=created_by,
        )
        self.db.add(api_key)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"api_key:{api_key.id}",
            event_type=API_KEY_CREATED,
            data={"name": name, "key_prefix": api_key.key_prefix},
            actor=str(created_by),
        )
        await self.db.commit()

        logger.info("api_key.created", api_key_id=str(api_key.id), org_id=str(org_id))
        return api_key, raw_key

    async def revoke_key(
        self, org_id: uuid.UUID, key_id: Optional[uuid.UUID], actor: str
    ) -> ApiKey:
        """Soft revoke: the row stays for auditing, is_active goes false."""
        if key_id is None:
            raise ValidationFailed("key_id is required")
        result = await self.db.execute(
            select(ApiKey).where(ApiKey.id == key_id, ApiKey.org_id == org_id)
        )
        api_key = result.scalars().first()
        if not api_key:
            raise NotFound("API key not found")

        api_key.is_active = False
        await self.events.append(
            org_id=org_id,
            stream_id=f"api_key:{api_key.id}",
            event_type=API_KEY_REVOKED,
            data={"name": api_key.name},
            actor=actor,
        )
        await self.db.commit()

        logger.info("api_key.revoked", api_key_id=str(api_key.id), org_id=str(org_id))
        return api_key
