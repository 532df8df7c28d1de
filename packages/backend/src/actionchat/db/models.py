"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic auto-generates migrations by comparing these models to the actual DB.

Key concepts:
- UUID primary keys, portable Uuid type (native uuid on PostgreSQL)
- JSON columns that become JSONB on PostgreSQL
- Python-side defaults mirrored by server_default so values are readable
  right after flush without a refresh round-trip
- Every org-owned table carries org_id (directly or through its parent)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonDoc = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


# ══════════════════════════════════════════════════════════════
# Tenancy: organizations, users, memberships
# ══════════════════════════════════════════════════════════════


class Organization(Base):
    """Multi-tenant root. Owns agents, sources, settings, and API keys.

    Learn: `settings` holds provider credentials (OpenAI/Anthropic keys,
    Ollama base URL). It is only ever written through the settings API by
    an owner or admin, and only ever read back masked.
    """

    __tablename__ = "org"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    allowed_domain: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # email domain for auto-join, e.g. "acme.com"
    is_onboarded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    settings: Mapped[dict] = mapped_column(
        JsonDoc, nullable=False, default=dict, server_default="{}"
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class User(Base):
    """A human user. Can belong to several orgs through OrgMember."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default="", server_default=""
    )
    last_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default="", server_default=""
    )
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # nullable for OAuth
    created_at: Mapped[datetime] = _created_at()


class OrgMember(Base):
    """Org membership — links users to orgs with a role.

    Learn: One row per (org, user). The role (owner, admin, member) is the
    only authorization signal in the system; see auth/permissions.py.
    """

    __tablename__ = "org_members"
    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_members"),
        Index("idx_org_members_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # owner, admin, member
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    user: Mapped["User"] = relationship()


class OrgInvite(Base):
    """Shareable invite link into an org.

    Learn: The token is the whole credential, so it is random and unique.
    An invite stops working once deactivated, past expires_at, or when
    use_count reaches max_uses (None means unlimited on both).
    """

    __tablename__ = "org_invites"
    __table_args__ = (Index("idx_org_invites_org", "org_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    use_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    created_at: Mapped[datetime] = _created_at()


# ══════════════════════════════════════════════════════════════
# Sources and tools
# ══════════════════════════════════════════════════════════════


class ApiSource(Base):
    """A registered external API — the origin of callable tools.

    Learn: spec_content can be a full OpenAPI document and is never
    returned by the API; responses carry has_spec instead.
    """

    __tablename__ = "api_sources"
    __table_args__ = (Index("idx_api_sources_org", "org_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="openapi"
    )  # openapi, manual, mcp
    spec_content: Mapped[Optional[dict]] = mapped_column(JsonDoc, nullable=True)
    spec_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    spec_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    base_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auth_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="passthrough"
    )  # bearer, api_key, basic, passthrough, none, header
    auth_config: Mapped[dict] = mapped_column(
        JsonDoc, nullable=False, default=dict, server_default="{}"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Tool(Base):
    """A single callable operation derived from a source."""

    __tablename__ = "tools"
    __table_args__ = (Index("idx_tools_source", "source_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False
    )
    operation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # stable key for re-sync
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    parameters: Mapped[Optional[dict]] = mapped_column(
        JsonDoc, nullable=True, default=dict
    )
    request_body: Mapped[Optional[dict]] = mapped_column(JsonDoc, nullable=True)
    risk_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default="safe"
    )  # safe, moderate, dangerous
    requires_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    tags: Mapped[list] = mapped_column(
        JsonDoc, nullable=False, default=list, server_default="[]"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class SourceCredential(Base):
    """One user's own credentials for one source.

    Learn: The shape of `credentials` follows the source's auth_type
    ({token}, {api_key, header_name}, {username, password} or
    {header_name, header_value}). Rows are written and deleted only by
    their owner and never returned by the API.
    """

    __tablename__ = "source_credentials"
    __table_args__ = (
        UniqueConstraint("user_id", "source_id", name="uq_source_credentials"),
        Index("idx_source_credentials_source", "source_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False
    )
    label: Mapped[str] = mapped_column(
        String(100), nullable=False, default="Default", server_default="Default"
    )
    credentials: Mapped[dict] = mapped_column(
        JsonDoc, nullable=False, default=dict, server_default="{}"
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


# ══════════════════════════════════════════════════════════════
# Agents
# ══════════════════════════════════════════════════════════════


class Agent(Base):
    """An LLM-backed agent configured for an org.

    Learn: temperature is clamped to [0, 2] by the service layer before
    it ever reaches this table.
    """

    __tablename__ = "agents"
    __table_args__ = (Index("idx_agents_org", "org_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    model_provider: Mapped[str] = mapped_column(
        String(20), nullable=False, default="openai"
    )  # openai, anthropic, ollama
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    temperature: Mapped[float] = mapped_column(
        Numeric(3, 2, asdecimal=False), nullable=False, default=0.1
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    settings: Mapped[dict] = mapped_column(
        JsonDoc, nullable=False, default=dict, server_default="{}"
    )  # max_tokens, top_p, tool_choice, ...
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class AgentSource(Base):
    """Agent ↔ source link with a permission level (read, read_write)."""

    __tablename__ = "agent_sources"
    __table_args__ = (
        UniqueConstraint("agent_id", "source_id", name="uq_agent_sources"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False
    )
    permission: Mapped[str] = mapped_column(
        String(20), nullable=False, default="read"
    )
    created_at: Mapped[datetime] = _created_at()


class MemberAgentAccess(Base):
    """Grants a plain member access to one agent.

    Learn: Owners and admins see every agent in their org and never need
    a row here. Members only see the agents they hold a grant for.
    """

    __tablename__ = "member_agent_access"
    __table_args__ = (
        UniqueConstraint("member_id", "agent_id", name="uq_member_agent_access"),
        Index("idx_member_agent_access_agent", "agent_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org_members.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    access_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default="operator", server_default="operator"
    )  # operator, viewer
    created_at: Mapped[datetime] = _created_at()


# ══════════════════════════════════════════════════════════════
# API keys
# ══════════════════════════════════════════════════════════════


class ApiKey(Base):
    """API key for programmatic access.

    Learn: The raw key is only shown once (on creation). We store the
    SHA-256 hash and a display prefix. Revocation is soft (is_active=false)
    so the row stays for auditing. agent_ids=None means every agent in
    the org.
    """

    __tablename__ = "api_keys"
    __table_args__ = (Index("idx_api_keys_org", "org_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # e.g. "ac_1a2b3c4..."
    agent_ids: Mapped[Optional[list]] = mapped_column(JsonDoc, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = _created_at()


# ══════════════════════════════════════════════════════════════
# Onboarding + activity
# ══════════════════════════════════════════════════════════════


class UserOnboarding(Base):
    """One onboarding survey per user (unique on user_id)."""

    __tablename__ = "user_onboarding"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("org.id", ondelete="CASCADE"), nullable=False
    )
    heard_about: Mapped[str] = mapped_column(Text, nullable=False)
    main_problem: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created_at()


class Event(Base):
    """Append-only activity log, scoped to an org.

    stream_id examples: "agent:<uuid>", "org:<uuid>", "api_key:<uuid>"
    type examples: "agent.created", "settings.updated", "api_key.revoked"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_org", "org_id", "id"),
        Index("idx_events_stream", "stream_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JsonDoc, nullable=False, default=dict)
    meta: Mapped[dict] = mapped_column(
        "metadata", JsonDoc, nullable=False, default=dict, server_default="{}"
    )  # actor_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = _created_at()
