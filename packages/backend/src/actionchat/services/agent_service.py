"""Agent service — agents and their links to API sources.

Learn: Every query here is filtered by org_id. A row from another org is
indistinguishable from a missing row (404), so IDs from other tenants
leak nothing.

Source linking at creation is best-effort: the agent is committed first,
links are written afterwards, and a failed link write is logged and
reflected in source_count instead of undoing the agent.

Owners and admins see every agent in the org. Plain members see only the
agents they hold a MemberAgentAccess grant for; the routes decide which
list applies and pass it down as agent_ids.
"""

import math
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.config import settings
from actionchat.auth.permissions import Role
from actionchat.db.models import (
    Agent,
    AgentSource,
    ApiSource,
    MemberAgentAccess,
    Organization,
    OrgMember,
    User,
)
from actionchat.errors import NotFound, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import (
    AGENT_ACCESS_GRANTED,
    AGENT_ACCESS_REVOKED,
    AGENT_CREATED,
    AGENT_DELETED,
    AGENT_SOURCE_LINKED,
    AGENT_SOURCE_UNLINKED,
    AGENT_UPDATED,
)
from actionchat.llm.provider import ProviderError, select_provider
from actionchat.schemas.agent import AgentCreate, SourceLinkIn

logger = structlog.get_logger()

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

ACCESS_LEVELS = ("operator", "viewer")

UPDATABLE_FIELDS = (
    "name",
    "description",
    "system_prompt",
    "model_provider",
    "model_name",
    "temperature",
    "is_active",
    "settings",
)


def clamp_temperature(value: Any, default: Optional[float] = None) -> float:
    """Coerce to float and clamp into [0, 2]. Non-numeric input → default.

    Idempotent: any value already in range comes back unchanged.
    """
    fallback = settings.default_temperature if default is None else default
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(number):
        return fallback
    return min(MAX_TEMPERATURE, max(MIN_TEMPERATURE, number))


class AgentService:
    """Business logic for agents."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    # ─── Reads ──────────────────────────────────────────

    async def list_agents(
        self,
        org_id: uuid.UUID,
        agent_ids: Optional[list] = None,
    ) -> list[tuple[Agent, int]]:
        """Org agents newest first, each paired with its linked-source count.

        agent_ids=None lists every agent; a list (even an empty one) limits
        the result to those ids.
        """
        counts = (
            select(AgentSource.agent_id, func.count(AgentSource.id).label("n"))
            .group_by(AgentSource.agent_id)
            .subquery()
        )
        query = (
            select(Agent, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.agent_id == Agent.id)
            .where(Agent.org_id == org_id)
            .order_by(Agent.created_at.desc(), Agent.id)
        )
        if agent_ids is not None:
            scoped = [a if isinstance(a, uuid.UUID) else uuid.UUID(a) for a in agent_ids]
            query = query.where(Agent.id.in_(scoped))
        result = await self.db.execute(query)
        return [(agent, int(count)) for agent, count in result.all()]

    async def count_sources(self, agent_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(AgentSource.id)).where(AgentSource.agent_id == agent_id)
        )
        return int(result.scalar_one())

    async def get_agent(self, org_id: uuid.UUID, agent_id: uuid.UUID) -> Agent:
        result = await self.db.execute(
            select(Agent).where(Agent.id == agent_id, Agent.org_id == org_id)
        )
        agent = result.scalars().first()
        if not agent:
            raise NotFound("Agent not found")
        return agent

    async def get_detail(self, org_id: uuid.UUID, agent_id: uuid.UUID) -> dict:
        """Agent plus linked sources, linkable sources, and provider readiness."""
        agent = await self.get_agent(org_id, agent_id)

        linked = await self.db.execute(
            select(AgentSource, ApiSource)
            .join(ApiSource, ApiSource.id == AgentSource.source_id)
            .where(AgentSource.agent_id == agent.id, ApiSource.org_id == org_id)
            .order_by(AgentSource.created_at)
        )
        linked_sources = [
            {
                "id": source.id,
                "link_id": link.id,
                "permission": link.permission,
                "linked_at": link.created_at,
                "name": source.name,
                "description": source.description,
                "base_url": source.base_url,
                "source_type": source.source_type,
                "is_active": source.is_active,
            }
            for link, source in linked.all()
        ]

        available = await self.db.execute(
            select(ApiSource)
            .where(ApiSource.org_id == org_id, ApiSource.is_active.is_(True))
            .order_by(ApiSource.name)
        )

        org = await self.db.get(Organization, org_id)
        try:
            select_provider(agent, org.settings if org else {})
            provider = {"ready": True, "error": None}
        except ProviderError as e:
            provider = {"ready": False, "error": str(e)}

        return {
            "agent": agent,
            "linked_sources": linked_sources,
            "available_sources": list(available.scalars().all()),
            "provider": provider,
        }

    # ─── Writes ─────────────────────────────────────────

    async def create_agent(
        self, org_id: uuid.UUID, body: AgentCreate, actor: str
    ) -> tuple[Agent, int]:
        """Create an agent, then link sources best-effort.

        Returns (agent, linked_count). The agent is committed before any
        link is attempted, so a failed link write never undoes it. Whether
        creation should instead be all-or-nothing is an open product question.
        """
        name = (body.name or "").strip()
        if not name:
            raise ValidationFailed("Name is required")

        agent = Agent(
            org_id=org_id,
            name=name,
            description=body.description or "",
            system_prompt=body.system_prompt or settings.default_system_prompt,
            model_provider=body.model_provider or settings.default_model_provider,
            model_name=body.model_name or settings.default_model_name,
            temperature=clamp_temperature(body.temperature),
            settings=body.settings or {},
        )
        self.db.add(agent)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_CREATED,
            data={
                "name": agent.name,
                "model_provider": agent.model_provider,
                "model_name": agent.model_name,
            },
            actor=actor,
        )
        await self.db.commit()

        linked = 0
        if body.source_links:
            linked = await self._link_sources_best_effort(
                org_id, agent.id, body.source_links
            )
            # A failed link write rolls the session back, which expires the agent.
            await self.db.refresh(agent)

        logger.info(
            "agent.created",
            agent_id=str(agent.id),
            org_id=str(org_id),
            linked_sources=linked,
        )
        return agent, linked

    async def _link_sources_best_effort(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        links: list[SourceLinkIn],
    ) -> int:
        wanted = {link.source_id: link.permission for link in links}
        result = await self.db.execute(
            select(ApiSource.id).where(
                ApiSource.org_id == org_id, ApiSource.id.in_(list(wanted))
            )
        )
        in_org = set(result.scalars().all())
        skipped = len(wanted) - len(in_org)
        if skipped:
            logger.warning(
                "agent.source_link_skipped",
                agent_id=str(agent_id),
                skipped=skipped,
            )
        if not in_org:
            return 0

        try:
            for source_id in in_org:
                self.db.add(
                    AgentSource(
                        agent_id=agent_id,
                        source_id=source_id,
                        permission=wanted[source_id],
                    )
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "agent.source_link_failed",
                agent_id=str(agent_id),
                error=str(e),
            )
            return 0
        return len(in_org)

    async def update_agent(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        updates: dict,
        actor: str,
    ) -> Agent:
        """Apply a partial update restricted to UPDATABLE_FIELDS."""
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        if not changes:
            raise ValidationFailed("No fields to update")

        if "temperature" in changes:
            changes["temperature"] = clamp_temperature(changes["temperature"])
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationFailed("Name is required")
            changes["name"] = name
        for required in ("system_prompt", "model_provider", "model_name", "is_active"):
            if required in changes and changes[required] is None:
                raise ValidationFailed(f"{required} cannot be null")
        if "settings" in changes and changes["settings"] is None:
            changes["settings"] = {}

        agent = await self.get_agent(org_id, agent_id)
        for key, value in changes.items():
            setattr(agent, key, value)

        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_UPDATED,
            data={"fields": sorted(changes)},
            actor=actor,
        )
        await self.db.commit()
        await self.db.refresh(agent)
        return agent

    async def delete_agent(
        self, org_id: uuid.UUID, agent_id: uuid.UUID, actor: str
    ) -> None:
        agent = await self.get_agent(org_id, agent_id)
        await self.db.execute(
            delete(AgentSource).where(AgentSource.agent_id == agent.id)
        )
        await self.db.execute(
            delete(MemberAgentAccess).where(MemberAgentAccess.agent_id == agent.id)
        )
        await self.db.delete(agent)
        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent_id}",
            event_type=AGENT_DELETED,
            data={"name": agent.name},
            actor=actor,
        )
        await self.db.commit()

    # ─── Source links ───────────────────────────────────

    async def _get_source(self, org_id: uuid.UUID, source_id: uuid.UUID) -> ApiSource:
        result = await self.db.execute(
            select(ApiSource).where(
                ApiSource.id == source_id, ApiSource.org_id == org_id
            )
        )
        source = result.scalars().first()
        if not source:
            raise NotFound("Source not found")
        return source

    async def link_source(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        source_id: Optional[uuid.UUID],
        permission: str,
        actor: str,
    ) -> AgentSource:
        """Link a source, or change the permission of an existing link."""
        agent = await self.get_agent(org_id, agent_id)
        if source_id is None:
            raise ValidationFailed("source_id is required")
        await self._get_source(org_id, source_id)

        result = await self.db.execute(
            select(AgentSource).where(
                AgentSource.agent_id == agent.id,
                AgentSource.source_id == source_id,
            )
        )
        link = result.scalars().first()
        if link:
            link.permission = permission
        else:
            link = AgentSource(
                agent_id=agent.id, source_id=source_id, permission=permission
            )
            self.db.add(link)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_SOURCE_LINKED,
            data={"source_id": str(source_id), "permission": permission},
            actor=actor,
        )
        await self.db.commit()
        return link

    async def unlink_source(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        source_id: Optional[uuid.UUID],
        actor: str,
    ) -> None:
        agent = await self.get_agent(org_id, agent_id)
        if source_id is None:
            raise ValidationFailed("source_id is required")

        await self.db.execute(
            delete(AgentSource).where(
                AgentSource.agent_id == agent.id,
                AgentSource.source_id == source_id,
            )
        )
        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_SOURCE_UNLINKED,
            data={"source_id": str(source_id)},
            actor=actor,
        )
        await self.db.commit()

    # ─── Member access ──────────────────────────────────

    async def granted_agent_ids(self, member_id: Optional[uuid.UUID]) -> list[uuid.UUID]:
        """Agents a plain member holds a grant for."""
        if member_id is None:
            return []
        result = await self.db.execute(
            select(MemberAgentAccess.agent_id).where(
                MemberAgentAccess.member_id == member_id
            )
        )
        return list(result.scalars().all())

    async def list_access(self, org_id: uuid.UUID, agent_id: uuid.UUID) -> dict:
        """Current grants plus every plain member who could be granted.

        Owners and admins are left out of available_members: they see all
        agents without a grant.
        """
        agent = await self.get_agent(org_id, agent_id)

        granted = await self.db.execute(
            select(MemberAgentAccess, OrgMember, User)
            .join(OrgMember, OrgMember.id == MemberAgentAccess.member_id)
            .join(User, User.id == OrgMember.user_id)
            .where(MemberAgentAccess.agent_id == agent.id, OrgMember.org_id == org_id)
            .order_by(MemberAgentAccess.created_at, MemberAgentAccess.id)
        )
        access = [
            {
                "id": grant.id,
                "member_id": grant.member_id,
                "access_level": grant.access_level,
                "created_at": grant.created_at,
                "user_id": member.user_id,
                "role": member.role,
                "email": user.email,
            }
            for grant, member, user in granted.all()
        ]
        has_access = {entry["member_id"] for entry in access}

        members = await self.db.execute(
            select(OrgMember, User)
            .join(User, User.id == OrgMember.user_id)
            .where(
                OrgMember.org_id == org_id,
                OrgMember.role.not_in([Role.OWNER.value, Role.ADMIN.value]),
            )
            .order_by(OrgMember.created_at, OrgMember.id)
        )
        available = [
            {
                "member_id": member.id,
                "user_id": member.user_id,
                "role": member.role,
                "email": user.email,
                "has_access": member.id in has_access,
            }
            for member, user in members.all()
        ]
        return {"access": access, "available_members": available}

    async def _get_member(self, org_id: uuid.UUID, member_id: uuid.UUID) -> OrgMember:
        result = await self.db.execute(
            select(OrgMember).where(
                OrgMember.id == member_id, OrgMember.org_id == org_id
            )
        )
        member = result.scalars().first()
        if not member:
            raise NotFound("Member not found")
        return member

    async def grant_access(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        member_id: Optional[uuid.UUID],
        access_level: Optional[str],
        actor: str,
    ) -> MemberAgentAccess:
        """Grant a member access to the agent, or change the grant's level."""
        agent = await self.get_agent(org_id, agent_id)
        if member_id is None:
            raise ValidationFailed("member_id is required")
        level = access_level or "operator"
        if level not in ACCESS_LEVELS:
            raise ValidationFailed("access_level must be operator or viewer")
        await self._get_member(org_id, member_id)

        result = await self.db.execute(
            select(MemberAgentAccess).where(
                MemberAgentAccess.member_id == member_id,
                MemberAgentAccess.agent_id == agent.id,
            )
        )
        grant = result.scalars().first()
        if grant:
            grant.access_level = level
        else:
            grant = MemberAgentAccess(
                member_id=member_id, agent_id=agent.id, access_level=level
            )
            self.db.add(grant)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_ACCESS_GRANTED,
            data={"member_id": str(member_id), "access_level": level},
            actor=actor,
        )
        await self.db.commit()

        logger.info(
            "agent.access_granted",
            agent_id=str(agent.id),
            member_id=str(member_id),
            access_level=level,
        )
        return grant

    async def revoke_access(
        self,
        org_id: uuid.UUID,
        agent_id: uuid.UUID,
        member_id: Optional[uuid.UUID],
        actor: str,
    ) -> None:
        agent = await self.get_agent(org_id, agent_id)
        if member_id is None:
            raise ValidationFailed("member_id is required")

        await self.db.execute(
            delete(MemberAgentAccess).where(
                MemberAgentAccess.member_id == member_id,
                MemberAgentAccess.agent_id == agent.id,
            )
        )
        await self.events.append(
            org_id=org_id,
            stream_id=f"agent:{agent.id}",
            event_type=AGENT_ACCESS_REVOKED,
            data={"member_id": str(member_id)},
            actor=actor,
        )
        await self.db.commit()
