"""Create accounts, joydrops and memberships tables

Revision ID: 5e2c7a19b0d4
Revises:
Create Date: 2026-10-19 10:12:31.418207

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e2c7a19b0d4'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the account store, event log and membership audit trail."""

    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("slug", sa.String(30), nullable=False, unique=True),
        sa.Column("email", sa.String(254), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("event_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "organization_id", sa.String(36),
            sa.ForeignKey("accounts.id"), nullable=True,
        ),
        sa.Column(
            "consent_to_join_org", sa.Boolean, nullable=False, server_default=sa.false(),
        ),
        sa.Column("member_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("name_key", sa.String(200), nullable=True, unique=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state_province", sa.String(100), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("profile", postgresql.JSONB, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_accounts_kind_count", "accounts", ["kind", "event_count"])
    op.create_index("ix_accounts_organization_id", "accounts", ["organization_id"])

    # --- joydrops ---
    op.create_table(
        "joydrops",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "actor_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=False,
        ),
        sa.Column(
            "organization_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=True,
        ),
        sa.Column("source", sa.String(30), nullable=False, server_default="web"),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("actor_count", sa.Integer, nullable=True),
        sa.Column("url", sa.Text, nullable=True),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state_province", sa.String(100), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_joydrops_idempotency_key", "joydrops", ["idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )
    op.create_index("ix_joydrops_actor_time", "joydrops", ["actor_id", "created_at"])
    op.create_index("ix_joydrops_created_at", "joydrops", ["created_at"])

    # --- memberships ---
    op.create_table(
        "memberships",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "organization_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=False,
        ),
        sa.Column(
            "individual_id", sa.String(36), sa.ForeignKey("accounts.id"),
            nullable=False, unique=True,
        ),
        sa.Column(
            "joined_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_memberships_org_joined", "memberships", ["organization_id", "joined_at"],
    )


def downgrade() -> None:
    op.drop_table("memberships")
    op.drop_index("ix_joydrops_created_at", table_name="joydrops")
    op.drop_index("ix_joydrops_actor_time", table_name="joydrops")
    op.drop_index("ix_joydrops_idempotency_key", table_name="joydrops")
    op.drop_table("joydrops")
    op.drop_table("accounts")
