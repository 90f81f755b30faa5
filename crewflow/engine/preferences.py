"""
crewflow.engine.preferences — Notification Preferences
=======================================================

A fixed struct with explicit defaults.  A user with no stored row gets
``NotificationPreferences()``; a row with some columns NULL gets the
defaults for exactly those columns.  Nothing downstream ever checks for a
missing key.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewflow.database.models import NotificationType

DEFAULT_TIMEZONE = "America/Denver"

MIN_DAILY_LIMIT = 1
MAX_DAILY_LIMIT = 50
MAX_REMINDER_MINUTES = 24 * 60

# Which toggle gates which notification type.  Types absent here are
# always allowed.
TYPE_TOGGLES: dict[str, str] = {
    NotificationType.CHECKIN: "notify_crew_checkins",
    NotificationType.LOCATE: "notify_crew_checkins",
    NotificationType.FRIEND_RSVP: "notify_friend_rsvps",
    NotificationType.CREW_RSVP: "notify_crew_rsvps",
    NotificationType.EVENT_REMINDER: "notify_event_reminders",
    NotificationType.DAILY_DIGEST: "notify_daily_digest",
}


@dataclass(frozen=True, slots=True)
class NotificationPreferences:
    notify_crew_checkins: bool = True
    notify_friend_rsvps: bool = True
    notify_crew_rsvps: bool = True
    notify_event_reminders: bool = True
    notify_daily_digest: bool = True
    daily_notification_limit: int = 10
    quiet_hours_enabled: bool = False
    quiet_hours_start: int = 22
    quiet_hours_end: int = 8
    timezone: str = DEFAULT_TIMEZONE
    reminder_defaults: tuple[int, ...] = (30,)

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None) -> NotificationPreferences:
        """Build from a stored row, falling back per column to defaults."""
        if not row:
            return cls()
        values = {}
        for f in fields(cls):
            raw = row.get(f.name)
            if raw is None:
                continue
            values[f.name] = tuple(raw) if f.name == "reminder_defaults" else raw
        return cls(**values)

    def allows(self, notification_type: str) -> bool:
        toggle = TYPE_TOGGLES.get(notification_type)
        return True if toggle is None else bool(getattr(self, toggle))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reminder_defaults"] = list(self.reminder_defaults)
        return data


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _clamp(value: Any, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def clean_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Validate and clamp a partial preference update.

    Unknown keys are dropped.  ``daily_notification_limit`` is clamped to
    1..50, quiet-hour bounds to 0..23.  An unknown ``timezone`` raises
    ``ValueError``; reminder offsets are de-duplicated, sorted, and kept
    within one day.
    """
    known = {f.name for f in fields(NotificationPreferences)}
    cleaned: dict[str, Any] = {}
    for key, value in updates.items():
        if key not in known or value is None:
            continue
        if key == "daily_notification_limit":
            cleaned[key] = _clamp(value, MIN_DAILY_LIMIT, MAX_DAILY_LIMIT)
        elif key in ("quiet_hours_start", "quiet_hours_end"):
            cleaned[key] = _clamp(value, 0, 23)
        elif key == "timezone":
            if not is_valid_timezone(str(value)):
                raise ValueError(f"Unknown timezone: {value}")
            cleaned[key] = str(value)
        elif key == "reminder_defaults":
            minutes = sorted({int(m) for m in value if 0 < int(m) <= MAX_REMINDER_MINUTES})
            cleaned[key] = minutes
        else:
            cleaned[key] = bool(value)
    return cleaned
