"""Member agent access, org invites, per-user source credentials

Revision ID: 8d2e4b6a1c35
Revises: 3f1c9a7e2b10
Create Date: 2026-10-17 14:02:51.604117
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '8d2e4b6a1c35'
down_revision: Union[str, None] = '3f1c9a7e2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonDoc = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "member_agent_access",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("member_id", sa.Uuid(), sa.ForeignKey("org_members.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Uuid(), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("access_level", sa.String(20), nullable=False, server_default="operator"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("member_id", "agent_id", name="uq_member_agent_access"),
    )
    op.create_index("idx_member_agent_access_agent", "member_agent_access", ["agent_id"])

    op.create_table(
        "org_invites",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("org.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(64), nullable=False, unique=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("use_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_org_invites_org", "org_invites", ["org_id"])

    op.create_table(
        "source_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_id", sa.Uuid(), sa.ForeignKey("api_sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("label", sa.String(100), nullable=False, server_default="Default"),
        sa.Column("credentials", JsonDoc, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "source_id", name="uq_source_credentials"),
    )
    op.create_index("idx_source_credentials_source", "source_credentials", ["source_id"])


def downgrade() -> None:
    op.drop_index("idx_source_credentials_source", table_name="source_credentials")
    op.drop_table("source_credentials")
    op.drop_index("idx_org_invites_org", table_name="org_invites")
    op.drop_table("org_invites")
    op.drop_index("idx_member_agent_access_agent", table_name="member_agent_access")
    op.drop_table("member_agent_access")
