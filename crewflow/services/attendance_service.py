"""
crewflow.services.attendance_service — RSVPs & "Who's Going"
=============================================================

Attendance rows are keyed on ``(user_id, event_id)``: an RSVP upserts, a
cancel deletes.  "Who's going" answers from the caller's *flow*: active
(non-muted) friends plus every co-member of the caller's non-muted crews.

An RSVP also schedules reminder rows from the user's
``reminder_defaults``; cancelling removes the unsent ones.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from crewflow.database.models import RsvpStatus, utc_now
from crewflow.database.store import DataStore, gte, in_
from crewflow.engine.outcome import Outcome, guarded
from crewflow.services.connection_service import active_friend_ids
from crewflow.services.crew_service import crews_for_user, member_ids
from crewflow.services.identity_service import label, resolve_display_names
from crewflow.services.preference_service import load_preferences

logger = logging.getLogger(__name__)

UPCOMING_LIMIT = 20


# ---------------------------------------------------------------------------
# Flow membership
# ---------------------------------------------------------------------------
def flow_member_ids(store: DataStore, user_id: str) -> set[str]:
    """Active friends ∪ co-members of non-muted crews, minus the caller."""
    ids = set(active_friend_ids(store, user_id))
    for crew in crews_for_user(store, user_id, include_muted=False):
        ids.update(member_ids(store, crew["group_id"]))
    ids.discard(user_id)
    return ids


# ---------------------------------------------------------------------------
# RSVP
# ---------------------------------------------------------------------------
@guarded
def rsvp(
    store: DataStore,
    user_id: str,
    event_id: str,
    status: str = RsvpStatus.GOING,
    *,
    event_name: str | None = None,
    event_date: datetime | None = None,
    event_venue: str | None = None,
) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not event_id:
        return Outcome.invalid("Event ID required.")
    if status not in set(RsvpStatus):
        return Outcome.invalid("Status must be going or maybe.")

    row: dict[str, Any] = {
        "user_id": user_id,
        "event_id": event_id,
        "status": str(status),
        "updated_at": utc_now(),
    }
    # Re-RSVPing without metadata keeps what an earlier RSVP stored.
    if event_name is not None:
        row["event_name"] = event_name
    if event_date is not None:
        row["event_date"] = event_date
    if event_venue is not None:
        row["event_venue"] = event_venue
    attendance = store.upsert("event_attendance", row, ["user_id", "event_id"])

    reminders: list[int] = []
    if attendance and attendance.get("event_date"):
        prefs = load_preferences(store, user_id)
        for minutes in prefs.reminder_defaults:
            store.upsert(
                "event_reminders",
                {"user_id": user_id, "event_source_id": event_id, "remind_minutes_before": minutes},
                ["user_id", "event_source_id", "remind_minutes_before"],
                ignore_duplicates=True,
            )
            reminders.append(minutes)

    title = event_name or (attendance or {}).get("event_name") or "this event"
    message = (
        f"You're going to {title}!" if status == RsvpStatus.GOING
        else f"Marked as maybe for {title}."
    )
    return Outcome.success(message, attendance=attendance, reminders=reminders)


@guarded
def cancel(store: DataStore, user_id: str, event_id: str) -> Outcome:
    """Drop the RSVP and its unsent reminders.  Idempotent."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not event_id:
        return Outcome.invalid("Event ID required.")
    store.delete("event_attendance", {"user_id": user_id, "event_id": event_id})
    store.delete(
        "event_reminders", {"user_id": user_id, "event_source_id": event_id, "sent": False},
    )
    return Outcome.success("RSVP cancelled.", event_id=event_id)


def _attendees(store: DataStore, ids: Iterable[str], filters: dict[str, Any], **kwargs) -> list[dict]:
    ids = list(ids)
    if not ids:
        return []
    return store.query(
        "event_attendance",
        {
            **filters,
            "user_id": in_(ids),
            "status": in_([RsvpStatus.GOING.value, RsvpStatus.MAYBE.value]),
        },
        **kwargs,
    )


@guarded
def flow_attendance(store: DataStore, user_id: str, event_id: str) -> Outcome:
    """Raw going / maybe id lists for one event, from the caller's flow."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not event_id:
        return Outcome.invalid("Event ID required.")
    rows = _attendees(store, flow_member_ids(store, user_id), {"event_id": event_id})
    going = sorted(r["user_id"] for r in rows if r["status"] == RsvpStatus.GOING)
    maybe = sorted(r["user_id"] for r in rows if r["status"] == RsvpStatus.MAYBE)
    return Outcome.success(f"{len(going)} going, {len(maybe)} maybe", going=going, maybe=maybe)


@guarded
def who_is_going(store: DataStore, user_id: str, event_id: str) -> Outcome:
    result = flow_attendance(store, user_id, event_id)
    if not result.ok:
        return result
    going, maybe = result.data["going"], result.data["maybe"]
    if not going and not maybe:
        return Outcome.success("Nobody from your flow is going yet.", going=[], maybe=[])

    names = resolve_display_names(store, going + maybe)
    lines = []
    if going:
        lines.append(f"**Going** ({len(going)}): " + ", ".join(label(names, u) for u in going))
    if maybe:
        lines.append(f"**Maybe** ({len(maybe)}): " + ", ".join(label(names, u) for u in maybe))
    return Outcome.success("\n".join(lines), going=going, maybe=maybe)


@guarded
def upcoming_for_flow(
    store: DataStore,
    user_id: str,
    *,
    now: datetime | None = None,
    limit: int = UPCOMING_LIMIT,
) -> Outcome:
    """Future events the caller's flow is attending, soonest first."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    now = now or datetime.now(UTC)
    rows = _attendees(
        store,
        flow_member_ids(store, user_id),
        {"event_date": gte(now)},
        order_by="event_date",
        limit=limit,
    )

    events: dict[str, dict[str, Any]] = {}
    for r in rows:
        event = events.setdefault(r["event_id"], {
            "event_id": r["event_id"],
            "event_name": r["event_name"],
            "event_date": r["event_date"],
            "event_venue": r["event_venue"],
            "going": [],
            "maybe": [],
        })
        event[r["status"]].append(r["user_id"])

    if not events:
        return Outcome.success("No upcoming plans in your flow.", events=[])
    lines = [
        f"{e['event_name'] or e['event_id']}: {len(e['going'])} going, {len(e['maybe'])} maybe"
        for e in events.values()
    ]
    return Outcome.success("\n".join(lines), events=list(events.values()))


@guarded
def my_schedule(store: DataStore, user_id: str, *, now: datetime | None = None) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    now = now or datetime.now(UTC)
    rows = store.query(
        "event_attendance",
        {"user_id": user_id, "event_date": gte(now)},
        order_by="event_date",
        limit=UPCOMING_LIMIT,
    )
    if not rows:
        return Outcome.success("No upcoming RSVPs.", schedule=[])
    lines = [
        f"{r['event_name'] or r['event_id']} ({r['status']})"
        + (f" at {r['event_venue']}" if r["event_venue"] else "")
        for r in rows
    ]
    return Outcome.success("\n".join(lines), schedule=rows)


# ---------------------------------------------------------------------------
# Per-event reminders
# ---------------------------------------------------------------------------
@guarded
def set_reminders(store: DataStore, user_id: str, event_id: str, minutes: Iterable[int]) -> Outcome:
    """Replace the caller's unsent reminders for *event_id*."""
    if not user_id or not event_id:
        return Outcome.invalid("User ID and event ID required.")
    try:
        offsets = sorted({int(m) for m in minutes if 0 < int(m) <= 24 * 60})
    except (TypeError, ValueError):
        return Outcome.invalid("Reminder times must be minutes before the event.")

    store.delete(
        "event_reminders", {"user_id": user_id, "event_source_id": event_id, "sent": False},
    )
    for m in offsets:
        store.upsert(
            "event_reminders",
            {"user_id": user_id, "event_source_id": event_id, "remind_minutes_before": m},
            ["user_id", "event_source_id", "remind_minutes_before"],
            ignore_duplicates=True,
        )
    if not offsets:
        return Outcome.success("Reminders cleared.", minutes=[])
    return Outcome.success(
        "Reminders set: " + ", ".join(f"{m} min" for m in offsets) + " before.",
        minutes=offsets,
    )


@guarded
def get_reminders(store: DataStore, user_id: str, event_id: str) -> Outcome:
    rows = store.query(
        "event_reminders",
        {"user_id": user_id, "event_source_id": event_id, "sent": False},
        order_by="remind_minutes_before",
    )
    return Outcome.success(
        f"{len(rows)} reminder(s) pending.",
        minutes=[r["remind_minutes_before"] for r in rows],
    )


def clear_reminders(store: DataStore, user_id: str, event_id: str) -> Outcome:
    return set_reminders(store, user_id, event_id, [])
