"""User service — accounts, profile, onboarding, and org status.

Learn: Registration is where a user gets their first membership:
- if some org auto-admits the user's email domain, they join it as a member;
- otherwise a fresh org is created with the user as its owner.

Onboarding is a one-shot survey per user. When the org's owner submits
it, the org itself is marked onboarded, which is what unlocks access for
everyone else (see org_status).
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.password import hash_password, verify_password
from actionchat.auth.permissions import Role
from actionchat.db.models import Organization, OrgMember, User, UserOnboarding
from actionchat.errors import Conflict, Unauthenticated, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import MEMBER_JOINED, ORG_CREATED, ORG_ONBOARDED
from actionchat.schemas.user import RegisterRequest
from actionchat.services.team_service import BLOCKED_EMAIL_DOMAINS, email_domain

logger = structlog.get_logger()

MAX_NAME_LENGTH = 100


class UserService:
    """Business logic for users and their own data."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    # ─── Accounts ───────────────────────────────────────

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise Unauthenticated("Not authenticated")
        return user

    async def register(self, body: RegisterRequest) -> User:
        email = body.email.strip().lower()
        existing = await self.db.execute(select(User).where(User.email == email))
        if existing.scalars().first():
            raise Conflict("Email already registered")

        user = User(
            email=email,
            first_name=body.first_name.strip(),
            last_name=body.last_name.strip(),
            password_hash=hash_password(body.password),
        )
        self.db.add(user)
        await self.db.flush()

        org = await self._auto_join_org(email)
        if org is not None:
            role = Role.MEMBER
        else:
            role = Role.OWNER
            org_name = (body.org_name or "").strip() or (
                f"{user.first_name or email.split('@')[0]}'s Organization"
            )
            org = Organization(name=org_name)
            self.db.add(org)
            await self.db.flush()
            await self.events.append(
                org_id=org.id,
                stream_id=f"org:{org.id}",
                event_type=ORG_CREATED,
                data={"name": org.name},
                actor=str(user.id),
            )

        self.db.add(OrgMember(org_id=org.id, user_id=user.id, role=role.value))
        await self.events.append(
            org_id=org.id,
            stream_id=f"org:{org.id}",
            event_type=MEMBER_JOINED,
            data={"user_id": str(user.id), "role": role.value},
            actor=str(user.id),
        )
        await self.db.commit()

        logger.info(
            "user.registered",
            user_id=str(user.id),
            org_id=str(org.id),
            role=role.value,
        )
        return user

    async def _auto_join_org(self, email: str) -> Optional[Organization]:
        domain = email_domain(email)
        if not domain or domain in BLOCKED_EMAIL_DOMAINS:
            return None
        result = await self.db.execute(
            select(Organization)
            .where(Organization.allowed_domain == domain)
            .order_by(Organization.created_at)
            .limit(1)
        )
        return result.scalars().first()

    async def authenticate(self, email: str, password: str) -> User:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        user = result.scalars().first()
        if not user or not user.password_hash:
            raise Unauthenticated("Invalid email or password")
        if not verify_password(password, user.password_hash):
            raise Unauthenticated("Invalid email or password")
        return user

    async def list_memberships(self, user_id: uuid.UUID) -> list[dict]:
        result = await self.db.execute(
            select(OrgMember, Organization)
            .join(Organization, Organization.id == OrgMember.org_id)
            .where(OrgMember.user_id == user_id)
            .order_by(OrgMember.created_at, OrgMember.id)
        )
        return [
            {
                "org_id": org.id,
                "org_name": org.name,
                "role": member.role,
                "is_onboarded": org.is_onboarded,
            }
            for member, org in result.all()
        ]

    # ─── Profile ────────────────────────────────────────

    async def update_profile(
        self, user_id: uuid.UUID, first_name: object, last_name: object
    ) -> User:
        if not isinstance(first_name, str) or not isinstance(last_name, str):
            raise ValidationFailed("Invalid input")
        first, last = first_name.strip(), last_name.strip()
        if len(first) > MAX_NAME_LENGTH or len(last) > MAX_NAME_LENGTH:
            raise ValidationFailed("Name too long")

        user = await self.get_user(user_id)
        user.first_name = first
        user.last_name = last
        await self.db.commit()
        return user

    # ─── Onboarding ─────────────────────────────────────

    async def submit_onboarding(
        self,
        user_id: uuid.UUID,
        org_id: Optional[uuid.UUID],
        heard_about: Optional[str],
        main_problem: Optional[str],
        is_owner: bool,
    ) -> UserOnboarding:
        if org_id is None:
            raise ValidationFailed("No organization found")
        if not (heard_about or "").strip() or not (main_problem or "").strip():
            raise ValidationFailed("Both fields are required")

        existing = await self.db.execute(
            select(UserOnboarding.id).where(UserOnboarding.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise Conflict("You have already submitted onboarding")

        onboarding = UserOnboarding(
            user_id=user_id,
            org_id=org_id,
            heard_about=heard_about.strip(),
            main_problem=main_problem.strip(),
        )
        self.db.add(onboarding)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent submission for the same user.
            await self.db.rollback()
            raise Conflict("You have already submitted onboarding")

        if is_owner:
            org = await self.db.get(Organization, org_id)
            if org and not org.is_onboarded:
                org.is_onboarded = True
                await self.events.append(
                    org_id=org_id,
                    stream_id=f"org:{org_id}",
                    event_type=ORG_ONBOARDED,
                    data={"by": str(user_id)},
                    actor=str(user_id),
                )
        await self.db.commit()
        return onboarding

    async def org_status(
        self, user_id: uuid.UUID, org_id: Optional[uuid.UUID]
    ) -> dict:
        org = await self.db.get(Organization, org_id) if org_id else None
        result = await self.db.execute(
            select(UserOnboarding.id).where(UserOnboarding.user_id == user_id)
        )
        has_completed_form = result.scalar_one_or_none() is not None
        is_onboarded = bool(org and org.is_onboarded)
        return {
            "org_id": org_id,
            "can_access": is_onboarded,
            "show_onboarding_form": not is_onboarded and not has_completed_form,
            "show_waiting_message": not is_onboarded and has_completed_form,
        }
