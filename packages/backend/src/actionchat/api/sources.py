"""Source and tool API routes.

Learn: Sources and tools share one router because tools only exist under
a source: /sources/{id}/tools. Tool updates and deletes name the tool in
the request body (tool_id), keeping the URL space to one level.

Credentials are per user, so they need a user session: an API key acts for
the org, not for a person, and is refused.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import OrgContext, admin_context, member_context
from actionchat.db.engine import get_db
from actionchat.errors import Forbidden
from actionchat.schemas.source import (
    CredentialsIn,
    CredentialStatus,
    SourceCreate,
    SourceDetailResponse,
    SourceListResponse,
    SourceResponse,
    SourceSyncRequest,
    SourceSyncResponse,
    SourceUpdate,
    ToolCreate,
    ToolDelete,
    ToolListResponse,
    ToolResponse,
    ToolUpdate,
)
from actionchat.schemas.team import OkResponse
from actionchat.services.source_service import (
    SourceService,
    active_tool_count,
    source_view,
)

router = APIRouter(prefix="/sources")


def _svc(db: AsyncSession = Depends(get_db)) -> SourceService:
    return SourceService(db)


# ─── Sources ────────────────────────────────────────────


@router.get("", response_model=SourceListResponse)
async def list_sources(
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    rows = await svc.list_sources(ctx.org_id)
    return {
        "ok": True,
        "sources": [
            source_view(s, n, include_auth_config=ctx.caps.is_admin) for s, n in rows
        ],
    }


@router.post("", response_model=SourceResponse, status_code=201)
async def create_source(
    body: SourceCreate,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    """Register a source. OpenAPI documents are parsed into tools."""
    source, tool_count = await svc.create_source(ctx.org_id, body, actor=ctx.actor)
    return {"ok": True, "source": source_view(source, tool_count, include_auth_config=True)}


@router.get("/{source_id}", response_model=SourceDetailResponse)
async def get_source(
    source_id: uuid.UUID,
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    source = await svc.get_source(ctx.org_id, source_id)
    tools = await svc.list_tools(ctx.org_id, source_id)
    return {
        "ok": True,
        "source": source_view(
            source, active_tool_count(tools), include_auth_config=ctx.caps.is_admin
        ),
        "tools": tools,
    }


@router.put("/{source_id}", response_model=SourceResponse)
async def update_source(
    source_id: uuid.UUID,
    body: SourceUpdate,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    source = await svc.update_source(
        ctx.org_id, source_id, body.model_dump(exclude_unset=True), actor=ctx.actor
    )
    tools = await svc.list_tools(ctx.org_id, source_id)
    return {
        "ok": True,
        "source": source_view(source, active_tool_count(tools), include_auth_config=True),
    }


@router.delete("/{source_id}", response_model=OkResponse)
async def delete_source(
    source_id: uuid.UUID,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    """Delete a source with its tools and agent links."""
    await svc.delete_source(ctx.org_id, source_id, actor=ctx.actor)
    return OkResponse()


# ─── Tools ──────────────────────────────────────────────


@router.get("/{source_id}/tools", response_model=ToolListResponse)
async def list_tools(
    source_id: uuid.UUID,
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    return {"ok": True, "tools": await svc.list_tools(ctx.org_id, source_id)}


@router.post("/{source_id}/tools", response_model=ToolResponse, status_code=201)
async def create_tool(
    source_id: uuid.UUID,
    body: ToolCreate,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    """Add a tool by hand (manual sources only)."""
    tool = await svc.create_tool(ctx.org_id, source_id, body, actor=ctx.actor)
    return {"ok": True, "tool": tool}


@router.put("/{source_id}/tools", response_model=ToolResponse)
async def update_tool(
    source_id: uuid.UUID,
    body: ToolUpdate,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    updates = body.model_dump(exclude_unset=True)
    tool_id = updates.pop("tool_id", None)
    tool = await svc.update_tool(ctx.org_id, source_id, tool_id, updates, actor=ctx.actor)
    return {"ok": True, "tool": tool}


@router.delete("/{source_id}/tools", response_model=OkResponse)
async def delete_tool(
    source_id: uuid.UUID,
    body: ToolDelete,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    await svc.delete_tool(ctx.org_id, source_id, body.tool_id, actor=ctx.actor)
    return OkResponse()


# ─── Sync ───────────────────────────────────────────────


@router.post("/{source_id}/sync", response_model=SourceSyncResponse)
async def sync_source(
    source_id: uuid.UUID,
    body: Optional[SourceSyncRequest] = None,
    ctx: OrgContext = Depends(admin_context),
    svc: SourceService = Depends(_svc),
):
    """Re-parse an OpenAPI source and reconcile its tools."""
    spec_content = body.spec_content if body else None
    return await svc.sync_source(ctx.org_id, source_id, spec_content, actor=ctx.actor)


# ─── Per-user credentials ───────────────────────────────


def _require_user(ctx: OrgContext) -> uuid.UUID:
    if ctx.user_id is None:
        raise Forbidden("Credentials belong to a user session")
    return ctx.user_id


@router.get("/{source_id}/credentials", response_model=CredentialStatus)
async def get_credentials(
    source_id: uuid.UUID,
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    return await svc.credential_status(ctx.org_id, source_id, _require_user(ctx))


@router.post("/{source_id}/credentials", response_model=OkResponse)
async def save_credentials(
    source_id: uuid.UUID,
    body: CredentialsIn,
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    """Store the caller's own credentials, shaped by the source's auth_type."""
    await svc.save_credentials(
        ctx.org_id, source_id, _require_user(ctx), body, actor=ctx.actor
    )
    return OkResponse()


@router.delete("/{source_id}/credentials", response_model=OkResponse)
async def delete_credentials(
    source_id: uuid.UUID,
    ctx: OrgContext = Depends(member_context),
    svc: SourceService = Depends(_svc),
):
    await svc.delete_credentials(ctx.org_id, source_id, _require_user(ctx), actor=ctx.actor)
    return OkResponse()
