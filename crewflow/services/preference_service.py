"""
crewflow.services.preference_service — Notification Preferences CRUD
=====================================================================
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from crewflow.database.models import utc_now
from crewflow.database.store import DataStore
from crewflow.engine.outcome import Outcome, guarded
from crewflow.engine.preferences import NotificationPreferences, clean_updates

logger = logging.getLogger(__name__)


def load_preferences(store: DataStore, user_id: str) -> NotificationPreferences:
    """Stored preferences for *user_id*, defaults for anything missing."""
    rows = store.query("notification_preferences", {"user_id": user_id}, limit=1)
    return NotificationPreferences.from_row(rows[0] if rows else None)


@guarded
def get_preferences(store: DataStore, user_id: str) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    prefs = load_preferences(store, user_id)
    return Outcome.success(_describe(prefs), preferences=prefs.to_dict())


@guarded
def update_preferences(store: DataStore, user_id: str, updates: Mapping[str, Any]) -> Outcome:
    """Apply a partial update.  Limits and hours are clamped, timezones validated."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    try:
        cleaned = clean_updates(updates)
    except (TypeError, ValueError) as exc:
        return Outcome.invalid(str(exc) or "Invalid preference value.")
    if not cleaned:
        prefs = load_preferences(store, user_id)
        return Outcome.noop("Nothing to update.", preferences=prefs.to_dict())

    store.upsert(
        "notification_preferences",
        {"user_id": user_id, **cleaned, "updated_at": utc_now()},
        ["user_id"],
    )
    prefs = load_preferences(store, user_id)
    logger.info("Preferences updated for %s: %s", user_id, sorted(cleaned))
    return Outcome.success(_describe(prefs), preferences=prefs.to_dict())


def _describe(prefs: NotificationPreferences) -> str:
    def flag(on: bool) -> str:
        return "on" if on else "off"

    quiet = (
        f"{prefs.quiet_hours_start:02d}:00–{prefs.quiet_hours_end:02d}:00"
        if prefs.quiet_hours_enabled
        else "off"
    )
    return "\n".join([
        "**Notification settings**",
        f"Crew check-ins: {flag(prefs.notify_crew_checkins)}",
        f"Friend RSVPs: {flag(prefs.notify_friend_rsvps)}",
        f"Crew RSVPs: {flag(prefs.notify_crew_rsvps)}",
        f"Event reminders: {flag(prefs.notify_event_reminders)}",
        f"Daily digest: {flag(prefs.notify_daily_digest)}",
        f"Daily limit: {prefs.daily_notification_limit}",
        f"Quiet hours: {quiet} ({prefs.timezone})",
    ])
