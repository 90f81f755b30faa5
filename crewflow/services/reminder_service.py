"""
crewflow.services.reminder_service — Periodic Event-Reminder Sweep
===================================================================

Run every ``reminder_sweep_minutes`` by the bot's task loop (or any other
scheduler).  Each unsent ``event_reminders`` row is joined to the owner's
attendance row for the event start time; rows whose fire time lands in the
current window go through the regular dispatch path and are then marked
``sent`` whatever the outcome.  A reminder suppressed by preferences or
quiet hours is consumed once rather than re-evaluated every sweep, and one
whose window has already passed is retired unsent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from crewflow.database.models import NotificationType
from crewflow.database.store import DataStore, StoreError, in_
from crewflow.engine.reminders import REMINDER_WINDOW, fire_time, format_reminder, is_reminder_due
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.notification_service import dispatch
from crewflow.services.preference_service import load_preferences

logger = logging.getLogger(__name__)

SYSTEM_TRIGGER = "system"


@dataclass(slots=True)
class SweepResult:
    checked: int = 0
    due: int = 0
    sent: int = 0
    expired: int = 0


def send_event_reminders(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    *,
    now: datetime | None = None,
) -> SweepResult:
    now = now or datetime.now(UTC)
    result = SweepResult()

    pending = store.query("event_reminders", {"sent": False})
    result.checked = len(pending)
    if not pending:
        return result

    attendance = store.query(
        "event_attendance",
        {
            "user_id": in_(sorted({r["user_id"] for r in pending})),
            "event_id": in_(sorted({r["event_source_id"] for r in pending})),
        },
    )
    events = {(a["user_id"], a["event_id"]): a for a in attendance}

    for reminder in pending:
        event = events.get((reminder["user_id"], reminder["event_source_id"]))
        if event is None or event["event_date"] is None:
            continue
        minutes = reminder["remind_minutes_before"]
        if fire_time(event["event_date"], minutes) < now - REMINDER_WINDOW:
            # Missed its window (late RSVP or skipped sweeps): retire it unsent.
            result.expired += 1
            _mark_sent(store, reminder, now)
            continue
        if not is_reminder_due(event["event_date"], minutes, now, REMINDER_WINDOW):
            continue
        result.due += 1

        try:
            prefs = load_preferences(store, reminder["user_id"])
            text = format_reminder(
                event["event_name"] or "Your event",
                event["event_date"],
                event["event_venue"],
                prefs.timezone,
            )
            report = dispatch(
                store, dispatcher, NotificationType.EVENT_REMINDER, SYSTEM_TRIGGER,
                f"{reminder['event_source_id']}:{minutes}",
                [(reminder["user_id"], text)], now=now,
            )
            result.sent += report.sent_count
        except StoreError:
            logger.warning("Reminder %s could not be evaluated", reminder["id"], exc_info=True)
            continue

        _mark_sent(store, reminder, now)

    if result.due or result.expired:
        logger.debug(
            "Reminder sweep: %d pending, %d due, %d sent, %d expired",
            result.checked, result.due, result.sent, result.expired,
        )
    return result


def _mark_sent(store: DataStore, reminder: dict, now: datetime) -> None:
    try:
        store.patch("event_reminders", {"id": reminder["id"]}, {"sent": True, "sent_at": now})
    except StoreError:
        logger.warning("Reminder %s could not be marked sent", reminder["id"], exc_info=True)
