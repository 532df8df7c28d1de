"""Pydantic schemas for team membership, domain auto-join, and activity."""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

RoleName = Literal["owner", "admin", "member"]


class TeamMember(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    role: str
    email: str
    name: str
    joined_at: datetime
    is_current_user: bool


class TeamResponse(BaseModel):
    ok: bool = True
    members: list[TeamMember]
    allowed_domain: Optional[str] = None
    user_domain: Optional[str] = None
    can_edit: bool
    is_owner: bool
    is_blocked_domain: bool


class RoleUpdate(BaseModel):
    role: Optional[RoleName] = None


class DomainUpdate(BaseModel):
    domain: Optional[str] = None


class DomainUpdated(BaseModel):
    ok: bool = True
    allowed_domain: Optional[str] = None
    message: str


class MessageResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class MemberAdd(BaseModel):
    email: Optional[str] = None


class MemberAdded(BaseModel):
    ok: bool = True
    message: str
    already_member: bool


# ─── Invites ────────────────────────────────────────────

class InviteCreate(BaseModel):
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)
    max_uses: Optional[int] = Field(default=None, ge=1)


class InviteRevoke(BaseModel):
    invite_id: Optional[uuid.UUID] = None


class InviteRead(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    token: str
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class InviteResponse(BaseModel):
    ok: bool = True
    invite: InviteRead


class InviteListResponse(BaseModel):
    ok: bool = True
    invites: list[InviteRead]


class JoinRequest(BaseModel):
    token: Optional[str] = None


class JoinResponse(BaseModel):
    ok: bool = True
    message: str
    org_id: uuid.UUID
    org_name: str
    already_member: bool


# ─── Activity ───────────────────────────────────────────

class EventRead(BaseModel):
    id: int
    stream_id: str
    type: str
    data: dict = Field(default_factory=dict)
    actor_id: Optional[str] = None
    created_at: datetime


class ActivityResponse(BaseModel):
    ok: bool = True
    events: list[EventRead]


class OkResponse(BaseModel):
    ok: bool = True
    details: Optional[Any] = None
