"""Initial schema: tenancy, sources/tools, agents, API keys, onboarding, events

Learn: JSON columns are JSONB on PostgreSQL. Booleans and JSON carry
server defaults so rows inserted outside the ORM stay valid.

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-17 07:40:12.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonDoc = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]
    if updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())
        )
    return cols


def upgrade() -> None:
    # ─── Tenancy ─────────────────────────────────────────
    op.create_table(
        "org",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("allowed_domain", sa.String(255), nullable=True),
        sa.Column("is_onboarded", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("settings", JsonDoc, nullable=False, server_default="{}"),
        *_timestamps(),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_table(
        "org_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "user_id", name="uq_org_members"),
    )
    op.create_index("idx_org_members_user", "org_members", ["user_id"])

    # ─── Sources and tools ───────────────────────────────
    op.create_table(
        "api_sources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("spec_content", JsonDoc, nullable=True),
        sa.Column("spec_url", sa.Text(), nullable=True),
        sa.Column("spec_hash", sa.String(64), nullable=True),
        sa.Column("base_url", sa.Text(), nullable=True),
        sa.Column("auth_type", sa.String(20), nullable=False),
        sa.Column("auth_config", JsonDoc, nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_api_sources_org", "api_sources", ["org_id"])

    op.create_table(
        "tools",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("source_id", sa.Uuid(), sa.ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("operation_id", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("parameters", JsonDoc, nullable=True),
        sa.Column("request_body", JsonDoc, nullable=True),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("requires_confirmation", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("tags", JsonDoc, nullable=False, server_default="[]"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
    )
    op.create_index("idx_tools_source", "tools", ["source_id"])

    # ─── Agents ──────────────────────────────────────────
    op.create_table(
        "agents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("model_provider", sa.String(20), nullable=False),
        sa.Column("model_name", sa.String(100), nullable=False),
        sa.Column("temperature", sa.Numeric(3, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("settings", JsonDoc, nullable=False, server_default="{}"),
        *_timestamps(),
    )
    op.create_index("idx_agents_org", "agents", ["org_id"])

    op.create_table(
        "agent_sources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("agent_id", sa.Uuid(), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_id", sa.Uuid(), sa.ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission", sa.String(20), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("agent_id", "source_id", name="uq_agent_sources"),
    )

    # ─── API keys ────────────────────────────────────────
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("key_prefix", sa.String(20), nullable=False),
        sa.Column("agent_ids", JsonDoc, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_api_keys_org", "api_keys", ["org_id"])

    # ─── Onboarding + activity ───────────────────────────
    op.create_table(
        "user_onboarding",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("heard_about", sa.Text(), nullable=False),
        sa.Column("main_problem", sa.Text(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", sa.Uuid(), nullable=True),
        sa.Column("stream_id", sa.String(200), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("data", JsonDoc, nullable=False),
        sa.Column("metadata", JsonDoc, nullable=False, server_default="{}"),
        *_timestamps(updated=False),
    )
    op.create_index("idx_events_org", "events", ["org_id", "id"])
    op.create_index("idx_events_stream", "events", ["stream_id", "id"])


def downgrade() -> None:
    op.drop_index("idx_events_stream", table_name="events")
    op.drop_index("idx_events_org", table_name="events")
    op.drop_table("events")
    op.drop_table("user_onboarding")
    op.drop_index("idx_api_keys_org", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_table("agent_sources")
    op.drop_index("idx_agents_org", table_name="agents")
    op.drop_table("agents")
    op.drop_index("idx_tools_source", table_name="tools")
    op.drop_table("tools")
    op.drop_index("idx_api_sources_org", table_name="api_sources")
    op.drop_table("api_sources")
    op.drop_index("idx_org_members_user", table_name="org_members")
    op.drop_table("org_members")
    op.drop_table("users")
    op.drop_table("org")
