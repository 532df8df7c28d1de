"""Self-service routes — the caller's own profile, onboarding, org status.

Learn: These act on the authenticated user rather than on an org
resource, so they take a user session (API keys are refused) and at most
an unguarded org context: a user with no membership can still read their
profile and org status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.dependencies import CurrentIdentity, get_current_human
from actionchat.auth.permissions import OrgContext, org_context
from actionchat.db.engine import get_db
from actionchat.schemas.user import (
    OnboardingResponse,
    OnboardingSubmit,
    OrgListResponse,
    OrgStatus,
    ProfileRead,
    ProfileUpdate,
    ProfileUpdated,
)
from actionchat.services.user_service import UserService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


# ─── Profile ────────────────────────────────────────────


@router.get("/user/profile", response_model=ProfileRead)
async def get_profile(
    identity: CurrentIdentity = Depends(get_current_human),
    svc: UserService = Depends(_svc),
):
    return await svc.get_user(identity.user_id)


@router.post("/user/profile", response_model=ProfileUpdated)
async def update_profile(
    body: ProfileUpdate,
    identity: CurrentIdentity = Depends(get_current_human),
    svc: UserService = Depends(_svc),
):
    user = await svc.update_profile(identity.user_id, body.first_name, body.last_name)
    return ProfileUpdated(first_name=user.first_name, last_name=user.last_name)


# ─── Onboarding ─────────────────────────────────────────


@router.post("/user/onboarding", response_model=OnboardingResponse)
async def submit_onboarding(
    body: OnboardingSubmit,
    identity: CurrentIdentity = Depends(get_current_human),
    ctx: OrgContext = Depends(org_context),
    svc: UserService = Depends(_svc),
):
    """One survey per user; an owner's submission marks the org onboarded."""
    onboarding = await svc.submit_onboarding(
        identity.user_id,
        ctx.org_id,
        body.heard_about,
        body.main_problem,
        is_owner=ctx.caps.is_owner,
    )
    return {"success": True, "onboarding": onboarding}


@router.get("/user/org-status", response_model=OrgStatus)
async def org_status(
    identity: CurrentIdentity = Depends(get_current_human),
    ctx: OrgContext = Depends(org_context),
    svc: UserService = Depends(_svc),
):
    return await svc.org_status(identity.user_id, ctx.org_id)


# ─── Orgs ───────────────────────────────────────────────


@router.get("/orgs", response_model=OrgListResponse)
async def list_orgs(
    identity: CurrentIdentity = Depends(get_current_human),
    svc: UserService = Depends(_svc),
):
    """Every org the caller belongs to, earliest membership first."""
    return {"ok": True, "orgs": await svc.list_memberships(identity.user_id)}
