"""Create identity, social graph, attendance and notification tables

Revision ID: 7c2e9a41b0d3
Revises:
Create Date: 2026-02-20 10:15:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c2e9a41b0d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    """Create every table the core needs (check-ins and push tokens come later)."""
    # -- identities ---------------------------------------------------------
    op.create_table(
        "identities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("canonical_id", sa.String(128), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("platform_user_id", sa.String(128), nullable=False, unique=True),
        sa.Column("federation_id", sa.String(128), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_identities_canonical_id", "identities", ["canonical_id"])

    # -- friends ------------------------------------------------------------
    op.create_table(
        "connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("friend_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _ts("created_at"),
        _ts("accepted_at", nullable=True),
        sa.UniqueConstraint("user_id", "friend_id", name="uq_connection_pair"),
    )
    op.create_index("ix_connections_user_id", "connections", ["user_id"])

    op.create_table(
        "flow_invite_codes",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        _ts("created_at"),
    )

    # -- crews --------------------------------------------------------------
    op.create_table(
        "crews",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("emoji", sa.String(16), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("join_code", sa.String(16), nullable=False, unique=True),
        sa.Column("join_mode", sa.String(20), nullable=False, server_default="open"),
        sa.Column("max_members", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("expires_at", nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "crew_members",
        sa.Column("group_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("joined_at"),
    )
    op.create_index("ix_crew_members_user_id", "crew_members", ["user_id"])

    op.create_table(
        "crew_join_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _ts("requested_at"),
        sa.Column("reviewed_by", sa.String(128), nullable=True),
        _ts("reviewed_at", nullable=True),
    )
    op.create_index("ix_crew_join_requests_group_id", "crew_join_requests", ["group_id"])
    op.create_index(
        "uq_join_request_pending",
        "crew_join_requests",
        ["group_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "crew_invites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(36), nullable=False),
        sa.Column("inviter_id", sa.String(128), nullable=False),
        sa.Column("invite_code", sa.String(16), nullable=False, unique=True),
        sa.Column("uses", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
        sa.UniqueConstraint("group_id", "inviter_id", name="uq_crew_invite_inviter"),
    )

    # -- attendance ---------------------------------------------------------
    op.create_table(
        "event_attendance",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("event_name", sa.String(300), nullable=True),
        _ts("event_date", nullable=True),
        sa.Column("event_venue", sa.String(300), nullable=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="going"),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="friends"),
        _ts("updated_at"),
        sa.UniqueConstraint("user_id", "event_id", name="uq_attendance_user_event"),
    )
    op.create_index("ix_attendance_event", "event_attendance", ["event_id"])

    # -- notifications ------------------------------------------------------
    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.String(128), nullable=False),
        sa.Column("notification_type", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(300), nullable=False),
        sa.Column("triggered_by", sa.String(128), nullable=False),
        _ts("sent_at"),
        sa.UniqueConstraint(
            "recipient_id", "notification_type", "reference_id", "triggered_by",
            name="uq_notification_dedup",
        ),
    )
    op.create_index(
        "ix_notification_log_recipient_sent", "notification_log", ["recipient_id", "sent_at"],
    )

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("notify_crew_checkins", sa.Boolean(), server_default=sa.true()),
        sa.Column("notify_friend_rsvps", sa.Boolean(), server_default=sa.true()),
        sa.Column("notify_crew_rsvps", sa.Boolean(), server_default=sa.true()),
        sa.Column("notify_event_reminders", sa.Boolean(), server_default=sa.true()),
        sa.Column("notify_daily_digest", sa.Boolean(), server_default=sa.true()),
        sa.Column("daily_notification_limit", sa.Integer(), server_default="10"),
        sa.Column("quiet_hours_enabled", sa.Boolean(), server_default=sa.false()),
        sa.Column("quiet_hours_start", sa.Integer(), server_default="22"),
        sa.Column("quiet_hours_end", sa.Integer(), server_default="8"),
        sa.Column("timezone", sa.String(64), server_default="America/Denver"),
        sa.Column("reminder_defaults", sa.JSON(), nullable=True),
        _ts("updated_at"),
    )

    op.create_table(
        "event_reminders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("event_source_id", sa.String(128), nullable=False),
        sa.Column("remind_minutes_before", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("sent_at", nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint(
            "user_id", "event_source_id", "remind_minutes_before", name="uq_event_reminder",
        ),
    )
    op.create_index("ix_event_reminders_unsent", "event_reminders", ["sent"])


def downgrade() -> None:
    """Drop everything created above, dependents first."""
    op.drop_index("ix_event_reminders_unsent", table_name="event_reminders")
    op.drop_table("event_reminders")
    op.drop_table("notification_preferences")
    op.drop_index("ix_notification_log_recipient_sent", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_index("ix_attendance_event", table_name="event_attendance")
    op.drop_table("event_attendance")
    op.drop_table("crew_invites")
    op.drop_index("uq_join_request_pending", table_name="crew_join_requests")
    op.drop_index("ix_crew_join_requests_group_id", table_name="crew_join_requests")
    op.drop_table("crew_join_requests")
    op.drop_index("ix_crew_members_user_id", table_name="crew_members")
    op.drop_table("crew_members")
    op.drop_table("crews")
    op.drop_table("flow_invite_codes")
    op.drop_index("ix_connections_user_id", table_name="connections")
    op.drop_table("connections")
    op.drop_index("ix_identities_canonical_id", table_name="identities")
    op.drop_table("identities")
