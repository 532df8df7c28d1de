"""Org settings routes.

Learn: Any member may read settings (secrets masked), only owners and
admins may change them. can_edit in the GET response tells a client
which of the two it is.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import OrgContext, admin_context, member_context
from actionchat.db.engine import get_db
from actionchat.schemas.settings import SettingsResponse, SettingsUpdate, SettingsUpdated
from actionchat.services.settings_service import SettingsService, masked_settings

router = APIRouter(prefix="/settings")


def _svc(db: AsyncSession = Depends(get_db)) -> SettingsService:
    return SettingsService(db)


@router.get("", response_model=SettingsResponse)
async def get_settings(
    ctx: OrgContext = Depends(member_context),
    svc: SettingsService = Depends(_svc),
):
    org = await svc.get_org(ctx.org_id)
    return {
        "ok": True,
        "org_name": org.name,
        "settings": masked_settings(org.settings),
        "can_edit": ctx.caps.is_admin,
        "role": ctx.caps.role.value if ctx.caps.role else None,
    }


@router.post("", response_model=SettingsUpdated)
async def update_settings(
    body: SettingsUpdate,
    ctx: OrgContext = Depends(admin_context),
    svc: SettingsService = Depends(_svc),
):
    """Merge allowlisted settings; unknown keys are ignored."""
    fields = body.model_dump(exclude_unset=True)
    await svc.update(
        ctx.org_id,
        org_name=fields.get("org_name"),
        incoming=fields.get("settings"),
        actor=ctx.actor,
    )
    return SettingsUpdated()
