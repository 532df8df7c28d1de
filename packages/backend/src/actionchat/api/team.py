"""Team routes — members, roles, domain auto-join.

Learn: Three different guards on one router. Any member can see the
team, only admins can change the auto-join domain or manage invite links,
and only owners can change roles or add people by email.

POST /team/join is the exception: the caller is by definition not yet a
member, so it only needs a signed-in user.
"""

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.dependencies import CurrentIdentity, get_current_user
from actionchat.auth.permissions import (
    OrgContext,
    admin_context,
    member_context,
    owner_context,
)
from actionchat.config import settings
from actionchat.db.engine import get_db
from actionchat.errors import Forbidden
from actionchat.schemas.team import (
    DomainUpdate,
    DomainUpdated,
    InviteCreate,
    InviteListResponse,
    InviteResponse,
    InviteRevoke,
    JoinRequest,
    JoinResponse,
    MemberAdd,
    MemberAdded,
    MessageResponse,
    OkResponse,
    RoleUpdate,
    TeamResponse,
)
from actionchat.services.team_service import TeamService

router = APIRouter(prefix="/team")


def _svc(db: AsyncSession = Depends(get_db)) -> TeamService:
    return TeamService(db)


def _require_user(ctx: OrgContext) -> uuid.UUID:
    if ctx.user_id is None:
        raise Forbidden("This action requires a user session")
    return ctx.user_id


@router.get("", response_model=TeamResponse)
async def get_team(
    ctx: OrgContext = Depends(member_context),
    svc: TeamService = Depends(_svc),
):
    team = await svc.get_team(ctx.org_id, _require_user(ctx))
    return {
        "ok": True,
        **team,
        "can_edit": ctx.caps.is_admin,
        "is_owner": ctx.caps.is_owner,
    }


@router.put("/members/{member_id}", response_model=MessageResponse)
async def update_member_role(
    member_id: uuid.UUID,
    body: RoleUpdate,
    ctx: OrgContext = Depends(owner_context),
    svc: TeamService = Depends(_svc),
):
    member = await svc.update_role(
        ctx.org_id, member_id, body.role, _require_user(ctx), actor=ctx.actor
    )
    return MessageResponse(message=f"Role updated to {member.role}")


@router.put("/domain", response_model=DomainUpdated)
async def update_domain(
    body: DomainUpdate,
    ctx: OrgContext = Depends(admin_context),
    svc: TeamService = Depends(_svc),
):
    """Set or clear the email domain whose users auto-join on signup."""
    domain = await svc.update_domain(
        ctx.org_id, body.domain, _require_user(ctx), actor=ctx.actor
    )
    return DomainUpdated(
        allowed_domain=domain,
        message=(
            f"Users with @{domain} email will automatically join on signup"
            if domain
            else "Domain auto-join disabled"
        ),
    )


@router.post("/members", response_model=MemberAdded)
async def add_member(
    body: MemberAdd,
    ctx: OrgContext = Depends(owner_context),
    svc: TeamService = Depends(_svc),
):
    """Add an existing account to the team by email."""
    result = await svc.add_member_by_email(ctx.org_id, body.email, actor=ctx.actor)
    return MemberAdded(**result)


# ─── Invite links ───────────────────────────────────────


@router.get("/invites", response_model=InviteListResponse)
async def list_invites(
    ctx: OrgContext = Depends(admin_context),
    svc: TeamService = Depends(_svc),
):
    return {"ok": True, "invites": await svc.list_invites(ctx.org_id)}


@router.post("/invites", response_model=InviteResponse, status_code=201)
async def create_invite(
    body: InviteCreate,
    ctx: OrgContext = Depends(admin_context),
    svc: TeamService = Depends(_svc),
):
    invite = await svc.create_invite(
        ctx.org_id,
        _require_user(ctx),
        body.expires_in_days,
        body.max_uses,
        actor=ctx.actor,
    )
    return {"ok": True, "invite": invite}


@router.delete("/invites", response_model=OkResponse)
async def revoke_invite(
    body: InviteRevoke,
    ctx: OrgContext = Depends(admin_context),
    svc: TeamService = Depends(_svc),
):
    """Deactivate an invite link. The row stays for the activity log."""
    await svc.revoke_invite(ctx.org_id, body.invite_id, actor=ctx.actor)
    return OkResponse()


@router.post("/join", response_model=JoinResponse)
async def join_team(
    body: JoinRequest,
    response: Response,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    """Redeem an invite link and switch the org cookie to the joined org."""
    if identity.user_id is None:
        raise Forbidden("This action requires a user session")
    result = await svc.join(identity.user_id, body.token)
    response.set_cookie(
        settings.org_cookie_name,
        str(result["org_id"]),
        max_age=settings.org_cookie_max_age,
        httponly=True,
        samesite="lax",
        path="/",
    )
    return JoinResponse(**result)
