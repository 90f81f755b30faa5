"""
crewflow.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- identities               — Platform handle → canonical person id
- connections              — Directional friend rows (two per friendship)
- flow_invite_codes        — Per-user personal "join my flow" code
- crews                    — Named groups with a join policy
- crew_members             — Membership + role + per-member mute
- crew_join_requests       — Pending/approved/denied requests for approval crews
- crew_invites             — Personal tracked crew invite codes
- event_attendance         — RSVP rows (going / maybe)
- notification_log         — Append-only dedup ledger
- notification_preferences — Per-user toggles, caps, quiet hours
- event_reminders          — Per-event reminder offsets, consumed once
- crew_checkins            — Time-limited venue check-ins
- notification_tokens      — Farcaster mini-app push tokens

Every timestamp column is timezone-aware and written in UTC.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(UTC)


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Crewflow tables."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NotificationType(enum.StrEnum):
    """Every kind of message the fan-out engine can send."""
    CHECKIN = "checkin"
    FRIEND_RSVP = "friend_rsvp"
    CREW_RSVP = "crew_rsvp"
    CREW_JOIN = "crew_join"
    LOCATE = "locate"
    EVENT_REMINDER = "event_reminder"
    DAILY_DIGEST = "daily_digest"


class ConnectionStatus(enum.StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    MUTED = "muted"
    BLOCKED = "blocked"


class JoinMode(enum.StrEnum):
    OPEN = "open"
    APPROVAL = "approval"
    CLOSED = "closed"


class CrewRole(enum.StrEnum):
    MEMBER = "member"
    ADMIN = "admin"
    CREATOR = "creator"


class RequestStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class RsvpStatus(enum.StrEnum):
    GOING = "going"
    MAYBE = "maybe"


# ---------------------------------------------------------------------------
# Identities — many rows may share one canonical id
# ---------------------------------------------------------------------------
class Identity(Base):
    __tablename__ = "identities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    canonical_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    platform_user_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    federation_id: Mapped[str | None] = mapped_column(String(128), default=None)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return f"<Identity {self.platform_user_id} → {self.canonical_id}>"


# ---------------------------------------------------------------------------
# Social graph — friends
# ---------------------------------------------------------------------------
class Connection(Base):
    __tablename__ = "connections"
    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_connection_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    friend_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def __repr__(self) -> str:
        return f"<Connection {self.user_id} → {self.friend_id} {self.status}>"


class FlowInviteCode(Base):
    __tablename__ = "flow_invite_codes"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ---------------------------------------------------------------------------
# Social graph — crews
# ---------------------------------------------------------------------------
class Crew(Base):
    __tablename__ = "crews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), default=None)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    join_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    join_mode: Mapped[str] = mapped_column(String(20), nullable=False, default=JoinMode.OPEN.value)
    max_members: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_temporary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return f"<Crew {self.emoji} {self.name} ({self.join_mode})>"


class CrewMember(Base):
    __tablename__ = "crew_members"

    group_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=CrewRole.MEMBER.value)
    muted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return f"<CrewMember {self.user_id} in {self.group_id} ({self.role})>"


class CrewJoinRequest(Base):
    __tablename__ = "crew_join_requests"
    __table_args__ = (
        # At most one pending request per (crew, user).
        Index(
            "uq_join_request_pending",
            "group_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestStatus.PENDING.value,
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), default=None)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)


class CrewInvite(Base):
    __tablename__ = "crew_invites"
    __table_args__ = (
        UniqueConstraint("group_id", "inviter_id", name="uq_crew_invite_inviter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(36), nullable=False)
    inviter_id: Mapped[str] = mapped_column(String(128), nullable=False)
    invite_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------
class EventAttendance(Base):
    __tablename__ = "event_attendance"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_attendance_user_event"),
        Index("ix_attendance_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_name: Mapped[str | None] = mapped_column(String(300), default=None)
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    event_venue: Mapped[str | None] = mapped_column(String(300), default=None)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default=RsvpStatus.GOING.value)
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="friends")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now,
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
class NotificationLog(Base):
    """Append-only dedup ledger.  Never updated, never deleted."""

    __tablename__ = "notification_log"
    __table_args__ = (
        UniqueConstraint(
            "recipient_id", "notification_type", "reference_id", "triggered_by",
            name="uq_notification_dedup",
        ),
        Index("ix_notification_log_recipient_sent", "recipient_id", "sent_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(300), nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(128), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return (
            f"<NotificationLog {self.notification_type} → {self.recipient_id} "
            f"ref={self.reference_id} by={self.triggered_by}>"
        )


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    notify_crew_checkins: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_friend_rsvps: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_crew_rsvps: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_event_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_daily_digest: Mapped[bool] = mapped_column(Boolean, default=True)
    daily_notification_limit: Mapped[int] = mapped_column(Integer, default=10)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    quiet_hours_start: Mapped[int] = mapped_column(Integer, default=22)
    quiet_hours_end: Mapped[int] = mapped_column(Integer, default=8)
    timezone: Mapped[str] = mapped_column(String(64), default="America/Denver")
    reminder_defaults: Mapped[list] = mapped_column(JSON, default=lambda: [30])
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now,
    )


class EventReminder(Base):
    __tablename__ = "event_reminders"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "event_source_id", "remind_minutes_before",
            name="uq_event_reminder",
        ),
        Index("ix_event_reminders_unsent", "sent"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_source_id: Mapped[str] = mapped_column(String(128), nullable=False)
    remind_minutes_before: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class CrewCheckin(Base):
    __tablename__ = "crew_checkins"
    __table_args__ = (
        Index("ix_crew_checkins_group_expires", "group_id", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    venue_name: Mapped[str] = mapped_column(String(300), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NotificationToken(Base):
    __tablename__ = "notification_tokens"

    fid: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    token: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now,
    )
