"""Org-scoped permissions: roles, capabilities, guards.

Learn: Authorization is a function of exactly one membership row.

    identity → org (cookie hint + memberships) → evaluate → guard → handler

- ``evaluate(db, user_id, org_id)`` does at most one lookup and never
  raises for missing data: no org or no membership simply means every
  predicate is False.
- ``require_member`` / ``require_admin`` / ``require_owner`` turn a
  Capabilities value into a pass/fail decision (Forbidden on fail).
- ``member_context`` / ``admin_context`` / ``owner_context`` chain it all
  together as FastAPI dependencies so a handler body never runs for a
  caller that lacks the role.

Nothing here is cached; a role change is visible on the very next request.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.dependencies import CurrentIdentity, get_current_user
from actionchat.config import settings
from actionchat.db.engine import get_db
from actionchat.db.models import OrgMember
from actionchat.errors import Forbidden

logger = structlog.get_logger()


class Role(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class Capabilities:
    """What the caller may do inside one org."""

    is_member: bool = False
    is_admin: bool = False
    is_owner: bool = False
    role: Optional[Role] = None
    member_id: Optional[uuid.UUID] = None


NO_CAPABILITIES = Capabilities()


def capabilities_for_role(
    role: Optional[Role], member_id: Optional[uuid.UUID] = None
) -> Capabilities:
    """Pure role → capability mapping. ``None`` means a member row with an unknown role."""
    return Capabilities(
        is_member=True,
        is_admin=role in (Role.OWNER, Role.ADMIN),
        is_owner=role == Role.OWNER,
        role=role,
        member_id=member_id,
    )


def _parse_role(value: str) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


async def evaluate(
    db: AsyncSession,
    user_id: Optional[uuid.UUID],
    org_id: Optional[uuid.UUID],
) -> Capabilities:
    """Look up (org, user) once and derive the caller's capabilities."""
    if user_id is None or org_id is None:
        return NO_CAPABILITIES

    result = await db.execute(
        select(OrgMember.id, OrgMember.role).where(
            OrgMember.org_id == org_id,
            OrgMember.user_id == user_id,
        )
    )
    row = result.first()
    if row is None:
        return NO_CAPABILITIES

    role = _parse_role(row.role)
    if role is None:
        logger.warning(
            "permissions.unknown_role",
            org_id=str(org_id),
            user_id=str(user_id),
            role=row.role,
        )
    return capabilities_for_role(role, member_id=row.id)


# ─── Guards ─────────────────────────────────────────────────


def require_member(caps: Capabilities) -> None:
    if not caps.is_member:
        raise Forbidden("Not a member of this organization")


def require_admin(caps: Capabilities) -> None:
    if not caps.is_admin:
        raise Forbidden("Only owners and admins can perform this action")


def require_owner(caps: Capabilities) -> None:
    if not caps.is_owner:
        raise Forbidden("Only owners can perform this action")


# ─── Org resolution ─────────────────────────────────────────


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


async def resolve_org_id(
    db: AsyncSession,
    user_id: uuid.UUID,
    hint: Optional[str] = None,
) -> Optional[uuid.UUID]:
    """Pick the org a user is acting in.

    Learn: The ``org_id`` cookie is only a hint. It wins when the user
    really is a member of that org; a stale or forged cookie falls back
    to the user's earliest membership. No membership at all → None.
    """
    hinted = _parse_uuid(hint)
    if hinted is not None:
        result = await db.execute(
            select(OrgMember.org_id).where(
                OrgMember.org_id == hinted,
                OrgMember.user_id == user_id,
            )
        )
        if result.scalar_one_or_none() is not None:
            return hinted

    result = await db.execute(
        select(OrgMember.org_id)
        .where(OrgMember.user_id == user_id)
        .order_by(OrgMember.created_at, OrgMember.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


# ─── Route dependencies ─────────────────────────────────────


@dataclass
class OrgContext:
    """Everything a guarded handler needs: who, where, and what they may do."""

    identity: CurrentIdentity
    org_id: Optional[uuid.UUID]
    caps: Capabilities

    @property
    def user_id(self) -> Optional[uuid.UUID]:
        return self.identity.user_id

    @property
    def actor(self) -> str:
        """Stable actor string for the activity log."""
        if self.identity.is_api_key:
            return f"api_key:{self.identity.api_key_id}"
        return str(self.identity.user_id)


async def org_context(
    request: Request,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> OrgContext:
    """Resolve org + capabilities without applying a guard."""
    if identity.is_api_key:
        # Keys act as a plain member of their own org, never as admin.
        caps = capabilities_for_role(Role.MEMBER) if identity.org_id else NO_CAPABILITIES
        return OrgContext(identity=identity, org_id=identity.org_id, caps=caps)

    hint = request.cookies.get(settings.org_cookie_name)
    org_id = await resolve_org_id(db, identity.user_id, hint)
    caps = await evaluate(db, identity.user_id, org_id)
    return OrgContext(identity=identity, org_id=org_id, caps=caps)


async def member_context(ctx: OrgContext = Depends(org_context)) -> OrgContext:
    require_member(ctx.caps)
    return ctx


async def admin_context(ctx: OrgContext = Depends(org_context)) -> OrgContext:
    require_admin(ctx.caps)
    return ctx


async def owner_context(ctx: OrgContext = Depends(org_context)) -> OrgContext:
    require_owner(ctx.caps)
    return ctx
