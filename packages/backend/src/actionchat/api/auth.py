"""Auth API — registration, login, token refresh, current identity.

Learn: Routes for user authentication:
- POST /auth/register → create a user (and their first org membership)
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → who am I (user or API key)

API keys are minted under /api-keys, scoped to the caller's org.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.auth.dependencies import CurrentIdentity, get_current_user
from actionchat.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from actionchat.db.engine import get_db
from actionchat.errors import Unauthenticated
from actionchat.schemas.user import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from actionchat.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def _tokens(user_id: str) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account."""
    return await UserService(db).register(body)


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    user = await UserService(db).authenticate(body.email, body.password)
    logger.info("auth.login", user_id=str(user.id))
    return _tokens(str(user.id))


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except TokenError as e:
        raise Unauthenticated(str(e))
    return _tokens(payload["sub"])


# ─── Current identity ───────────────────────────────────


@router.get("/me")
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated principal."""
    if identity.is_api_key:
        return {
            "type": "api_key",
            "api_key_id": str(identity.api_key_id),
            "org_id": str(identity.org_id),
            "agent_ids": identity.agent_ids,
        }

    user = await UserService(db).get_user(identity.user_id)
    return {
        "type": "user",
        "id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }
