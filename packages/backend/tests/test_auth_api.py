"""Auth tests: registration, login, refresh, /me.

Learn: Tests cover:
1. User registration + duplicate prevention + first org membership
2. Domain auto-join on signup
3. Login → JWT tokens
4. Token refresh
5. Protected /me endpoint for users and API keys
"""

import uuid

import pytest
from sqlalchemy import select

from actionchat.db.models import Organization, OrgMember

from conftest import TEST_PASSWORD


async def _register(client, email: str, password: str = "password_123", **extra):
    return await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password, **extra},
    )


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(client, db_session):
    """A new user gets their own org as owner."""
    email = f"test-{uuid.uuid4().hex[:8]}@startup.dev"
    r = await _register(client, email, first_name="Test", last_name="User")
    assert r.status_code == 201
    user = r.json()
    assert user["email"] == email
    assert user["first_name"] == "Test"
    assert "password_hash" not in user

    result = await db_session.execute(
        select(OrgMember).where(OrgMember.user_id == uuid.UUID(user["id"]))
    )
    membership = result.scalars().one()
    assert membership.role == "owner"
    org = await db_session.get(Organization, membership.org_id)
    assert org.name == "Test's Organization"


@pytest.mark.asyncio
async def test_register_with_org_name(client, db_session):
    r = await _register(client, "founder@newco.dev", org_name="  NewCo  ")
    assert r.status_code == 201
    result = await db_session.execute(select(Organization).where(Organization.name == "NewCo"))
    assert result.scalars().first() is not None


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    """Can't register with the same email twice (case-insensitive)."""
    email = f"dup-{uuid.uuid4().hex[:8]}@example.com"
    r1 = await _register(client, email)
    assert r1.status_code == 201

    r2 = await _register(client, email.upper())
    assert r2.status_code == 409
    assert r2.json()["error"] == "Email already registered"


@pytest.mark.asyncio
async def test_register_short_password(client):
    """Password must be at least 8 characters."""
    r = await _register(client, "short@example.com", password="abc")
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Validation failed"
    assert any(d["field"] == "password" for d in body["details"])


@pytest.mark.asyncio
async def test_register_invalid_email(client):
    r = await _register(client, "not-an-email")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_auto_joins_domain_org(client, db_session, tenant):
    """A matching allowed_domain makes the new user a plain member."""
    tenant.org.allowed_domain = "acme.com"
    await db_session.commit()

    r = await _register(client, "newhire@acme.com")
    assert r.status_code == 201

    result = await db_session.execute(
        select(OrgMember).where(OrgMember.user_id == uuid.UUID(r.json()["id"]))
    )
    membership = result.scalars().one()
    assert membership.org_id == tenant.org.id
    assert membership.role == "member"


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success(client, tenant):
    """Login with valid credentials returns tokens."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "owner@acme.com", "password": TEST_PASSWORD},
    )
    assert r.status_code == 200
    tokens = r.json()
    assert "access_token" in tokens
    assert "refresh_token" in tokens
    assert tokens["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_login_wrong_password(client, tenant):
    """Login with wrong password returns 401."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "owner@acme.com", "password": "wrong_password"},
    )
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_nonexistent_user(client):
    """Login with nonexistent email returns 401."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "nobody@example.com", "password": "whatever"},
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Token Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_token(client, tenant):
    """Refresh token returns new access + refresh tokens."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "member@acme.com", "password": TEST_PASSWORD},
    )
    refresh = r.json()["refresh_token"]

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    assert r.status_code == 200
    assert "access_token" in r.json()
    assert "refresh_token" in r.json()


@pytest.mark.asyncio
async def test_refresh_with_access_token_fails(client, tenant):
    """Can't use access token as refresh token."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "member@acme.com", "password": TEST_PASSWORD},
    )
    access = r.json()["access_token"]

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_is_not_an_access_token(client, tenant):
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "member@acme.com", "password": TEST_PASSWORD},
    )
    refresh = r.json()["refresh_token"]

    r = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Protected Endpoint (/me)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(client, tenant):
    """Access /me with valid JWT token."""
    r = await client.get("/api/v1/auth/me", headers=tenant.headers(tenant.admin))
    assert r.status_code == 200
    assert r.json()["email"] == "admin@acme.com"
    assert r.json()["type"] == "user"


@pytest.mark.asyncio
async def test_me_without_token(client):
    """Access /me without token returns 401."""
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_me_with_invalid_token(client):
    """Access /me with invalid token returns 401."""
    r = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": "Bearer invalid_token_here"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_protected_routes_require_auth(client):
    for path in ("/api/v1/agents", "/api/v1/sources", "/api/v1/settings", "/api/v1/team"):
        r = await client.get(path)
        assert r.status_code == 401, path


@pytest.mark.asyncio
async def test_api_key_invalid(client):
    """Invalid API key returns 401."""
    r = await client.get(
        "/api/v1/auth/me",
        headers={"X-API-Key": "ac_invalid_key_12345"},
    )
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid API key"
