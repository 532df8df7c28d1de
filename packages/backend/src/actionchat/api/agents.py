"""Agent API routes.

Learn: Every route names its guard in its signature. member_context and
admin_context resolve the caller's org and role before the handler runs,
so a body that reaches the service is already authorized. Members read,
owners and admins write.

What a reader may see depends on who they are: owners and admins see
every agent, API keys see the agents in their scope, and plain members
see the agents they were granted through /agents/{id}/access.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import OrgContext, admin_context, member_context
from actionchat.db.engine import get_db
from actionchat.errors import Forbidden, NotFound
from actionchat.schemas.agent import (
    AccessGrantRequest,
    AccessRevokeRequest,
    AgentAccessListResponse,
    AgentAccessResponse,
    AgentCreate,
    AgentDetailResponse,
    AgentListResponse,
    AgentRead,
    AgentResponse,
    AgentSourceResponse,
    AgentSummary,
    AgentUpdate,
    SourceLinkRequest,
    SourceUnlinkRequest,
)
from actionchat.schemas.team import OkResponse
from actionchat.services.agent_service import AgentService

router = APIRouter(prefix="/agents")


def _svc(db: AsyncSession = Depends(get_db)) -> AgentService:
    return AgentService(db)


def _summary(agent, source_count: int) -> AgentSummary:
    return AgentSummary(
        **AgentRead.model_validate(agent).model_dump(), source_count=source_count
    )


async def _visible_agent_ids(ctx: OrgContext, svc: AgentService) -> Optional[list]:
    """None means every agent in the org."""
    if ctx.identity.is_api_key:
        return ctx.identity.agent_ids
    if ctx.caps.is_admin:
        return None
    return await svc.granted_agent_ids(ctx.caps.member_id)


@router.get("", response_model=AgentListResponse)
async def list_agents(
    ctx: OrgContext = Depends(member_context),
    svc: AgentService = Depends(_svc),
):
    """List the org's agents with linked-source counts."""
    rows = await svc.list_agents(
        ctx.org_id, agent_ids=await _visible_agent_ids(ctx, svc)
    )
    return AgentListResponse(agents=[_summary(a, n) for a, n in rows])


@router.post("", response_model=AgentResponse, status_code=201)
async def create_agent(
    body: AgentCreate,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    agent, linked = await svc.create_agent(ctx.org_id, body, actor=ctx.actor)
    return AgentResponse(agent=_summary(agent, linked))


@router.get("/{agent_id}", response_model=AgentDetailResponse)
async def get_agent(
    agent_id: uuid.UUID,
    ctx: OrgContext = Depends(member_context),
    svc: AgentService = Depends(_svc),
):
    """Agent detail with linked and linkable sources."""
    if not ctx.identity.can_access_agent(agent_id):
        raise Forbidden("API key does not have access to this agent")
    if not ctx.identity.is_api_key and not ctx.caps.is_admin:
        if agent_id not in await svc.granted_agent_ids(ctx.caps.member_id):
            raise NotFound("Agent not found")
    return await svc.get_detail(ctx.org_id, agent_id)


@router.put("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: uuid.UUID,
    body: AgentUpdate,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    agent = await svc.update_agent(
        ctx.org_id, agent_id, body.model_dump(exclude_unset=True), actor=ctx.actor
    )
    return AgentResponse(agent=_summary(agent, await svc.count_sources(agent.id)))


@router.delete("/{agent_id}", response_model=OkResponse)
async def delete_agent(
    agent_id: uuid.UUID,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    await svc.delete_agent(ctx.org_id, agent_id, actor=ctx.actor)
    return OkResponse()


# ─── Source links ───────────────────────────────────────


@router.post("/{agent_id}/sources", response_model=AgentSourceResponse)
async def link_source(
    agent_id: uuid.UUID,
    body: SourceLinkRequest,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    """Link a source to the agent, or change the link's permission."""
    link = await svc.link_source(
        ctx.org_id, agent_id, body.source_id, body.permission, actor=ctx.actor
    )
    return AgentSourceResponse(link=link)


@router.delete("/{agent_id}/sources", response_model=OkResponse)
async def unlink_source(
    agent_id: uuid.UUID,
    body: SourceUnlinkRequest,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    await svc.unlink_source(ctx.org_id, agent_id, body.source_id, actor=ctx.actor)
    return OkResponse()


# ─── Member access ──────────────────────────────────────


@router.get("/{agent_id}/access", response_model=AgentAccessListResponse)
async def list_access(
    agent_id: uuid.UUID,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    """Members granted this agent, and the members who could be."""
    return await svc.list_access(ctx.org_id, agent_id)


@router.post("/{agent_id}/access", response_model=AgentAccessResponse, status_code=201)
async def grant_access(
    agent_id: uuid.UUID,
    body: AccessGrantRequest,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    grant = await svc.grant_access(
        ctx.org_id, agent_id, body.member_id, body.access_level, actor=ctx.actor
    )
    return AgentAccessResponse(access=grant)


@router.delete("/{agent_id}/access", response_model=OkResponse)
async def revoke_access(
    agent_id: uuid.UUID,
    body: AccessRevokeRequest,
    ctx: OrgContext = Depends(admin_context),
    svc: AgentService = Depends(_svc),
):
    await svc.revoke_access(ctx.org_id, agent_id, body.member_id, actor=ctx.actor)
    return OkResponse()
