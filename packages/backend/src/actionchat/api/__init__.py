"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Authentication is applied at the include_router level using
FastAPI's dependencies parameter, so every protected route answers 401
before anything else runs. Authorization is finer grained and lives in
each route's signature (member_context / admin_context / owner_context).
Health and auth routers are open.
"""

from fastapi import APIRouter, Depends

from actionchat.api.activity import router as activity_router
from actionchat.api.agents import router as agents_router
from actionchat.api.api_keys import router as api_keys_router
from actionchat.api.auth import router as auth_router
from actionchat.api.health import router as health_router
from actionchat.api.settings import router as settings_router
from actionchat.api.sources import router as sources_router
from actionchat.api.team import router as team_router
from actionchat.api.user import router as user_router
from actionchat.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes — require valid JWT or API key
api_router.include_router(agents_router, tags=["agents"], dependencies=_auth)
api_router.include_router(sources_router, tags=["sources", "tools"], dependencies=_auth)
api_router.include_router(api_keys_router, tags=["api-keys"], dependencies=_auth)
api_router.include_router(settings_router, tags=["settings"], dependencies=_auth)
api_router.include_router(team_router, tags=["team"], dependencies=_auth)
api_router.include_router(user_router, tags=["user", "orgs"], dependencies=_auth)
api_router.include_router(activity_router, tags=["activity"], dependencies=_auth)
