"""API key routes — admin only.

Learn: The creation response is the only place a raw key ever appears.
Listing returns ApiKeyRead, which has no field that could hold the raw
key or its hash.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import OrgContext, admin_context
from actionchat.db.engine import get_db
from actionchat.errors import Forbidden
from actionchat.schemas.api_key import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyListResponse,
    ApiKeyRevoke,
)
from actionchat.schemas.team import OkResponse
from actionchat.services.api_key_service import ApiKeyService

router = APIRouter(prefix="/api-keys")


def _svc(db: AsyncSession = Depends(get_db)) -> ApiKeyService:
    return ApiKeyService(db)


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys(
    ctx: OrgContext = Depends(admin_context),
    svc: ApiKeyService = Depends(_svc),
):
    return {"ok": True, "keys": await svc.list_keys(ctx.org_id)}


@router.post("", response_model=ApiKeyCreated, status_code=201)
async def create_api_key(
    body: ApiKeyCreate,
    ctx: OrgContext = Depends(admin_context),
    svc: ApiKeyService = Depends(_svc),
):
    """Mint a key. The raw key is in this response and nowhere else, ever."""
    if ctx.user_id is None:
        raise Forbidden("API keys cannot mint API keys")
    api_key, raw_key = await svc.create_key(
        ctx.org_id,
        created_by=ctx.user_id,
        name=body.name,
        agent_ids=body.agent_ids,
        expires_at=body.expires_at,
    )
    return {"ok": True, "key": api_key, "raw_key": raw_key}


@router.delete("", response_model=OkResponse)
async def revoke_api_key(
    body: ApiKeyRevoke,
    ctx: OrgContext = Depends(admin_context),
    svc: ApiKeyService = Depends(_svc),
):
    """Soft-revoke a key in the caller's org."""
    await svc.revoke_key(ctx.org_id, body.key_id, actor=ctx.actor)
    return OkResponse()
