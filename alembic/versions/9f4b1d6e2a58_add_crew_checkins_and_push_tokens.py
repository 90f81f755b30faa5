"""Add crew_checkins and notification_tokens tables

Revision ID: 9f4b1d6e2a58
Revises: 7c2e9a41b0d3
Create Date: 2026-03-04 16:40:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "9f4b1d6e2a58"
down_revision: str | Sequence[str] | None = "7c2e9a41b0d3"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Time-limited venue check-ins and Farcaster mini-app push tokens."""
    op.create_table(
        "crew_checkins",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("venue_name", sa.String(300), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_crew_checkins_group_expires", "crew_checkins", ["group_id", "expires_at"],
    )

    op.create_table(
        "notification_tokens",
        sa.Column("fid", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("token", sa.String(500), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("notification_tokens")
    op.drop_index("ix_crew_checkins_group_expires", table_name="crew_checkins")
    op.drop_table("crew_checkins")
