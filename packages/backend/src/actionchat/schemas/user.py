"""Pydantic schemas for auth, user profile, onboarding, and org status."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ─── Auth ───────────────────────────────────────────────

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    org_name: Optional[str] = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MembershipRead(BaseModel):
    org_id: uuid.UUID
    org_name: str
    role: str
    is_onboarded: bool


class OrgListResponse(BaseModel):
    ok: bool = True
    orgs: list[MembershipRead]


# ─── Profile ────────────────────────────────────────────

class ProfileRead(BaseModel):
    email: str
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    # Typed as Any so a non-string is reported as "Invalid input".
    first_name: Any = None
    last_name: Any = None


class ProfileUpdated(BaseModel):
    message: str = "Profile updated"
    first_name: str
    last_name: str


# ─── Onboarding ─────────────────────────────────────────

class OnboardingSubmit(BaseModel):
    heard_about: Optional[str] = None
    main_problem: Optional[str] = None


class OnboardingRead(BaseModel):
    id: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class OnboardingResponse(BaseModel):
    success: bool = True
    onboarding: OnboardingRead


class OrgStatus(BaseModel):
    org_id: Optional[uuid.UUID] = None
    can_access: bool
    show_onboarding_form: bool
    show_waiting_message: bool
