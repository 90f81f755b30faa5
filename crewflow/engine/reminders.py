"""
crewflow.engine.reminders — Reminder Window Maths
==================================================

A reminder for an event starting at ``start`` with offset ``m`` minutes
fires at ``start - m``.  The sweep runs every ~10 minutes, so a reminder is
due when its fire time lands in ``[now - 10m, now + 10m)``: the look-back
absorbs sweep jitter, the look-ahead means a reminder may go out up to one
sweep early but never one sweep late.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from crewflow.engine.quiet_hours import resolve_zone

REMINDER_WINDOW = timedelta(minutes=10)


def fire_time(start: datetime, minutes_before: int) -> datetime:
    return start - timedelta(minutes=minutes_before)


def is_reminder_due(
    start: datetime,
    minutes_before: int,
    now: datetime,
    window: timedelta = REMINDER_WINDOW,
) -> bool:
    fire = fire_time(start, minutes_before)
    return now - window <= fire < now + window


def format_reminder(title: str, start: datetime, venue: str | None, timezone: str | None) -> str:
    """``"Salsa Night starts at 7:30 PM at The Loft"`` in the recipient's zone."""
    local = start.astimezone(resolve_zone(timezone))
    clock = local.strftime("%I:%M %p").lstrip("0")
    where = f" at {venue}" if venue else ""
    return f"{title} starts at {clock}{where}"
