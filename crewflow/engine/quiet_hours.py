"""
crewflow.engine.quiet_hours — Timezone-Local Time Helpers
==========================================================

Pure functions: quiet-hours membership (with wrap-around past midnight) and
"local midnight" for the daily rate cap.  All inputs and outputs are aware
datetimes; an unknown timezone name falls back to the default zone.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewflow.engine.preferences import DEFAULT_TIMEZONE, NotificationPreferences

logger = logging.getLogger(__name__)


def resolve_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def is_quiet_hour(hour: int, start: int, end: int) -> bool:
    """Is *hour* inside ``[start, end)``?

    ``start > end`` spans midnight (22→8 covers 22..23 and 0..7).
    ``start == end`` is an empty window.
    """
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def in_quiet_hours(prefs: NotificationPreferences, now: datetime) -> bool:
    if not prefs.quiet_hours_enabled:
        return False
    local = now.astimezone(resolve_zone(prefs.timezone))
    return is_quiet_hour(local.hour, prefs.quiet_hours_start, prefs.quiet_hours_end)


def local_midnight(now: datetime, timezone: str | None) -> datetime:
    """Start of *now*'s local day in *timezone*, returned in UTC."""
    zone = resolve_zone(timezone)
    local = now.astimezone(zone)
    midnight = datetime(local.year, local.month, local.day, tzinfo=zone)
    return midnight.astimezone(UTC)


def local_date(now: datetime, timezone: str | None) -> date:
    return now.astimezone(resolve_zone(timezone)).date()
