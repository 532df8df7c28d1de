"""Team service — members, roles, and domain auto-join.

Learn: Roles change only through here, and only an owner can change them.
The one structural rule is that an org never loses its last owner by
self-demotion.

People get in three ways: domain auto-join at signup (user_service), an
owner adding an existing account by email, or redeeming an invite link.
All three create a plain member; promotion is a separate step.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.permissions import Role
from actionchat.db.models import Organization, OrgInvite, OrgMember, User
from actionchat.errors import NotFound, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import (
    INVITE_CREATED,
    INVITE_REVOKED,
    MEMBER_ADDED,
    MEMBER_JOINED,
    MEMBER_ROLE_CHANGED,
    ORG_DOMAIN_CHANGED,
)

logger = structlog.get_logger()

# Consumer mail providers: sharing one of these says nothing about belonging
# to the same company, so they can never drive auto-join.
BLOCKED_EMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "yahoo.com", "yahoo.co.uk",
    "hotmail.com", "hotmail.co.uk", "outlook.com", "outlook.co.uk",
    "live.com", "msn.com", "icloud.com", "me.com", "mac.com",
    "aol.com", "protonmail.com", "proton.me", "zoho.com", "mail.com",
    "yandex.com", "gmx.com", "gmx.net", "fastmail.com", "tutanota.com", "hey.com",
})


def email_domain(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return None
    return email.rsplit("@", 1)[1].lower() or None


def display_name(user: User) -> str:
    full = f"{user.first_name} {user.last_name}".strip()
    return full or user.email.split("@")[0]


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TeamService:
    """Business logic for org membership."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def get_team(self, org_id: uuid.UUID, current_user_id: uuid.UUID) -> dict:
        org = await self.db.get(Organization, org_id)
        if not org:
            raise NotFound("Organization not found")

        result = await self.db.execute(
            select(OrgMember, User)
            .join(User, User.id == OrgMember.user_id)
            .where(OrgMember.org_id == org_id)
            .order_by(OrgMember.created_at, OrgMember.id)
        )
        members = [
            {
                "id": member.id,
                "user_id": member.user_id,
                "role": member.role,
                "email": user.email,
                "name": display_name(user),
                "joined_at": member.created_at,
                "is_current_user": member.user_id == current_user_id,
            }
            for member, user in result.all()
        ]

        me = await self.db.get(User, current_user_id)
        user_domain = email_domain(me.email if me else None)
        return {
            "members": members,
            "allowed_domain": org.allowed_domain,
            "user_domain": user_domain,
            "is_blocked_domain": user_domain in BLOCKED_EMAIL_DOMAINS,
        }

    async def update_role(
        self,
        org_id: uuid.UUID,
        member_id: uuid.UUID,
        role: Optional[str],
        current_user_id: uuid.UUID,
        actor: str,
    ) -> OrgMember:
        if role is None:
            raise ValidationFailed("Invalid memberId or role")
        new_role = Role(role)

        result = await self.db.execute(
            select(OrgMember).where(
                OrgMember.id == member_id, OrgMember.org_id == org_id
            )
        )
        member = result.scalars().first()
        if not member:
            raise NotFound("Member not found")

        if member.user_id == current_user_id and new_role != Role.OWNER:
            owners = await self.db.execute(
                select(func.count(OrgMember.id)).where(
                    OrgMember.org_id == org_id, OrgMember.role == Role.OWNER.value
                )
            )
            if owners.scalar_one() <= 1:
                raise ValidationFailed(
                    "Cannot demote yourself - you are the only owner"
                )

        previous = member.role
        member.role = new_role.value
        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=MEMBER_ROLE_CHANGED,
            data={
                "member_id": str(member.id),
                "user_id": str(member.user_id),
                "from": previous,
                "to": new_role.value,
            },
            actor=actor,
        )
        await self.db.commit()

        logger.info(
            "team.role_changed",
            org_id=str(org_id),
            member_id=str(member.id),
            role=new_role.value,
        )
        return member

    async def update_domain(
        self,
        org_id: uuid.UUID,
        domain: Optional[str],
        current_user_id: uuid.UUID,
        actor: str,
    ) -> Optional[str]:
        """Set or clear the auto-join domain. Returns the stored value."""
        normalized = (domain or "").strip().lower() or None
        if normalized:
            me = await self.db.get(User, current_user_id)
            user_domain = email_domain(me.email if me else None)
            if not user_domain or normalized != user_domain:
                raise ValidationFailed(
                    "You can only set the domain to match your own email domain"
                )
            if normalized in BLOCKED_EMAIL_DOMAINS:
                raise ValidationFailed(
                    "Domain auto-join is not available for generic email providers"
                )

        org = await self.db.get(Organization, org_id)
        if not org:
            raise NotFound("Organization not found")
        org.allowed_domain = normalized

        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=ORG_DOMAIN_CHANGED,
            data={"allowed_domain": normalized},
            actor=actor,
        )
        await self.db.commit()
        return normalized

    # ─── Members by email ───────────────────────────────

    async def add_member_by_email(
        self, org_id: uuid.UUID, email: Optional[str], actor: str
    ) -> dict:
        """Add an existing account to the org as a member.

        Only accounts that already exist can be added this way; anyone else
        gets an invite link.
        """
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValidationFailed("Email is required")

        result = await self.db.execute(
            select(User).where(func.lower(User.email) == normalized)
        )
        user = result.scalars().first()
        if not user:
            raise NotFound("No account uses that email. Share an invite link instead.")

        if await self._membership(org_id, user.id) is not None:
            return {
                "message": f"{normalized} is already on your team",
                "already_member": True,
            }

        self.db.add(OrgMember(org_id=org_id, user_id=user.id, role=Role.MEMBER.value))
        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=MEMBER_ADDED,
            data={"user_id": str(user.id), "role": Role.MEMBER.value},
            actor=actor,
        )
        await self.db.commit()
        logger.info("team.member_added", org_id=str(org_id), user_id=str(user.id))
        return {"message": f"Added {normalized} to your team", "already_member": False}

    async def _membership(
        self, org_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[OrgMember]:
        result = await self.db.execute(
            select(OrgMember).where(
                OrgMember.org_id == org_id, OrgMember.user_id == user_id
            )
        )
        return result.scalars().first()

    # ─── Invite links ───────────────────────────────────

    async def create_invite(
        self,
        org_id: uuid.UUID,
        created_by: uuid.UUID,
        expires_in_days: Optional[int],
        max_uses: Optional[int],
        actor: str,
    ) -> OrgInvite:
        invite = OrgInvite(
            org_id=org_id,
            token=secrets.token_hex(16),
            created_by=created_by,
            expires_at=(
                datetime.now(timezone.utc) + timedelta(days=expires_in_days)
                if expires_in_days
                else None
            ),
            max_uses=max_uses,
        )
        self.db.add(invite)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=INVITE_CREATED,
            data={
                "invite_id": str(invite.id),
                "expires_at": invite.expires_at.isoformat() if invite.expires_at else None,
                "max_uses": max_uses,
            },
            actor=actor,
        )
        await self.db.commit()
        return invite

    async def list_invites(self, org_id: uuid.UUID) -> list[OrgInvite]:
        """Every invite of the org, newest first, revoked ones included."""
        result = await self.db.execute(
            select(OrgInvite)
            .where(OrgInvite.org_id == org_id)
            .order_by(OrgInvite.created_at.desc(), OrgInvite.id)
        )
        return list(result.scalars().all())

    async def revoke_invite(
        self, org_id: uuid.UUID, invite_id: Optional[uuid.UUID], actor: str
    ) -> None:
        if invite_id is None:
            raise ValidationFailed("invite_id is required")
        result = await self.db.execute(
            select(OrgInvite).where(
                OrgInvite.id == invite_id, OrgInvite.org_id == org_id
            )
        )
        invite = result.scalars().first()
        if not invite:
            raise NotFound("Invite not found")

        invite.is_active = False
        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=INVITE_REVOKED,
            data={"invite_id": str(invite.id)},
            actor=actor,
        )
        await self.db.commit()

    async def join(self, user_id: uuid.UUID, token: Optional[str]) -> dict:
        """Redeem an invite link for the calling user.

        Learn: The checks run in a fixed order (unknown, deactivated,
        expired, used up) so the caller always learns the first reason.
        Redeeming a link for an org you already belong to is not an error
        and does not consume a use.
        """
        if not token:
            raise ValidationFailed("Token is required")

        result = await self.db.execute(select(OrgInvite).where(OrgInvite.token == token))
        invite = result.scalars().first()
        if not invite:
            raise NotFound("Invalid invite link")
        if not invite.is_active:
            raise ValidationFailed("This invite link has been deactivated")
        if invite.expires_at and _aware(invite.expires_at) < datetime.now(timezone.utc):
            raise ValidationFailed("This invite link has expired")
        if invite.max_uses is not None and invite.use_count >= invite.max_uses:
            raise ValidationFailed("This invite link has reached its maximum uses")

        org = await self.db.get(Organization, invite.org_id)
        org_name = org.name if org else "the organization"

        if await self._membership(invite.org_id, user_id) is not None:
            return {
                "message": f"You're already a member of {org_name}",
                "org_id": invite.org_id,
                "org_name": org_name,
                "already_member": True,
            }

        self.db.add(
            OrgMember(org_id=invite.org_id, user_id=user_id, role=Role.MEMBER.value)
        )
        invite.use_count += 1
        await self.events.append(
            org_id=invite.org_id,
            stream_id=f"org:{invite.org_id}",
            event_type=MEMBER_JOINED,
            data={
                "user_id": str(user_id),
                "role": Role.MEMBER.value,
                "invite_id": str(invite.id),
            },
            actor=str(user_id),
        )
        await self.db.commit()

        logger.info(
            "team.joined",
            org_id=str(invite.org_id),
            user_id=str(user_id),
            invite_id=str(invite.id),
        )
        return {
            "message": f"Successfully joined {org_name}!",
            "org_id": invite.org_id,
            "org_name": org_name,
            "already_member": False,
        }
