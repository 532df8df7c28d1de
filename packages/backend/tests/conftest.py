"""Test fixtures — an isolated in-memory database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite engine (aiosqlite, StaticPool) so the
   in-memory database survives across connections within that test.
2. The schema is built with Base.metadata.create_all; migrations are not
   involved.
3. The app's get_db dependency is overridden to hand out that session.
4. Auth is NOT mocked: seeded users get real JWTs, API keys are minted
   through the real endpoint. Permission checks run exactly as in prod.
"""

import os

# Must be set before actionchat.config is imported anywhere.
os.environ.setdefault("ACTIONCHAT_ENVIRONMENT", "test")
os.environ.setdefault("ACTIONCHAT_DATABASE_URL", "sqlite+aiosqlite://")

from dataclasses import dataclass, field  # noqa: E402
from typing import Optional  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from actionchat.auth.jwt import create_access_token  # noqa: E402
from actionchat.auth.password import hash_password  # noqa: E402
from actionchat.config import settings  # noqa: E402
from actionchat.db.engine import get_db  # noqa: E402
from actionchat.db.models import Base, Organization, OrgMember, User  # noqa: E402
from actionchat.main import app  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


@pytest_asyncio.fixture()
async def db_session():
    """Fresh in-memory database + session, dropped after the test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def client(db_session):
    """HTTP client with only get_db overridden — real auth pipeline."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════
# Seed data
# ═══════════════════════════════════════════════════════════


async def create_user(
    db: AsyncSession, email: str, first_name: str = "", last_name: str = ""
) -> User:
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=hash_password(TEST_PASSWORD),
    )
    db.add(user)
    await db.flush()
    return user


async def create_org(db: AsyncSession, name: str, **kwargs) -> Organization:
    org = Organization(name=name, **kwargs)
    db.add(org)
    await db.flush()
    return org


async def add_member(
    db: AsyncSession, org: Organization, user: User, role: str
) -> OrgMember:
    member = OrgMember(org_id=org.id, user_id=user.id, role=role)
    db.add(member)
    await db.flush()
    return member


def auth_headers(user: User, org: Optional[Organization] = None) -> dict:
    """Bearer JWT for the user, plus the org cookie hint when given."""
    headers = {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
    if org is not None:
        headers["Cookie"] = f"{settings.org_cookie_name}={org.id}"
    return headers


@dataclass
class Tenant:
    """One org with a user per role, plus a user who belongs nowhere."""

    org: Organization
    owner: User
    admin: User
    member: User
    outsider: User
    members: dict = field(default_factory=dict)

    def headers(self, user: User) -> dict:
        return auth_headers(user, self.org)


@pytest_asyncio.fixture()
async def tenant(db_session) -> Tenant:
    org = await create_org(db_session, "Acme")
    owner = await create_user(db_session, "owner@acme.com", "Olivia", "Owner")
    admin = await create_user(db_session, "admin@acme.com", "Adam", "Admin")
    member = await create_user(db_session, "member@acme.com", "Mia", "Member")
    outsider = await create_user(db_session, "outsider@elsewhere.io")

    members = {
        "owner": await add_member(db_session, org, owner, "owner"),
        "admin": await add_member(db_session, org, admin, "admin"),
        "member": await add_member(db_session, org, member, "member"),
    }
    await db_session.commit()
    return Tenant(
        org=org,
        owner=owner,
        admin=admin,
        member=member,
        outsider=outsider,
        members=members,
    )


@pytest_asyncio.fixture()
async def other_tenant(db_session) -> Tenant:
    """A second, unrelated org for cross-tenant isolation checks."""
    org = await create_org(db_session, "Globex")
    owner = await create_user(db_session, "owner@globex.com")
    admin = await create_user(db_session, "admin@globex.com")
    member = await create_user(db_session, "member@globex.com")
    outsider = await create_user(db_session, "nobody@globex.com")
    members = {
        "owner": await add_member(db_session, org, owner, "owner"),
        "admin": await add_member(db_session, org, admin, "admin"),
        "member": await add_member(db_session, org, member, "member"),
    }
    await db_session.commit()
    return Tenant(
        org=org,
        owner=owner,
        admin=admin,
        member=member,
        outsider=outsider,
        members=members,
    )


# ═══════════════════════════════════════════════════════════
# Sample OpenAPI document
# ═══════════════════════════════════════════════════════════

PETSTORE = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.2.0", "description": "Pets, mostly"},
    "servers": [{"url": "https://petstore.example.com/v1"}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List pets",
                "tags": ["pets"],
                "parameters": [
                    {
                        "name": "limit",
                        "in": "query",
                        "description": "Max items",
                        "schema": {"type": "integer"},
                    }
                ],
            },
            "post": {
                "operationId": "createPet",
                "summary": "Create a pet",
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "properties": {
                                    "name": {"type": "string"},
                                    "owner": {"type": None},
                                }
                            }
                        }
                    }
                },
            },
        },
        "/pets/{petId}": {
            "parameters": [
                {"name": "petId", "in": "path", "required": True, "schema": {"type": "string"}}
            ],
            "get": {"summary": "Get a pet"},
            "delete": {"operationId": "deletePet"},
        },
    },
}
