"""
crewflow.services.checkin_service — Crew Check-ins & Locate Pings
==================================================================

A check-in says "I'm at <venue>" to one crew and stays visible for
``checkin_ttl_minutes``.  A locate ping asks every crew-mate *without* an
active check-in where they are.

Recording a check-in and fanning it out are separate steps: the bot calls
both inline, the API schedules :func:`~crewflow.services.notification_service.notify_checkin`
as a background task.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from crewflow.config import DEFAULT_CONFIG, CrewflowConfig
from crewflow.database.store import DataStore, gt
from crewflow.engine.outcome import Outcome, guarded
from crewflow.services.crew_service import crew_label, get_crew, get_membership, member_ids
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.identity_service import label, resolve_display_names
from crewflow.services.notification_service import notify_locate

logger = logging.getLogger(__name__)

MAX_VENUE_LENGTH = 300


def active_checkins(store: DataStore, crew_id: str, now: datetime) -> list[dict[str, Any]]:
    """Unexpired check-ins for the crew, newest first."""
    return store.query(
        "crew_checkins",
        {"group_id": crew_id, "expires_at": gt(now)},
        order_by="created_at",
        descending=True,
    )


@guarded
def checkin(
    store: DataStore,
    user_id: str,
    crew_id: str,
    venue_name: str,
    *,
    cfg: CrewflowConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not crew_id:
        return Outcome.invalid("Crew ID required.")
    venue_name = (venue_name or "").strip()
    if not venue_name:
        return Outcome.invalid("Where are you? Example: /checkin The Loft")
    if len(venue_name) > MAX_VENUE_LENGTH:
        return Outcome.invalid(f"Venue names are limited to {MAX_VENUE_LENGTH} characters.")

    crew = get_crew(store, crew_id)
    if crew is None:
        return Outcome.not_found("Crew not found.")
    if get_membership(store, user_id, crew_id) is None:
        return Outcome.forbidden("You're not in this crew.")

    now = now or datetime.now(UTC)
    row = store.insert("crew_checkins", {
        "group_id": crew_id,
        "user_id": user_id,
        "venue_name": venue_name,
        "created_at": now,
        "expires_at": now + timedelta(minutes=cfg.checkin_ttl_minutes),
    })
    logger.info("%s checked in at %r for crew %s", user_id, venue_name, crew_id)
    return Outcome.success(
        f"Checked in at **{venue_name}**. {crew_label(crew)} will see where you are.",
        checkin=row,
        crew=crew,
    )


@guarded
def crew_locations(
    store: DataStore,
    user_id: str,
    crew_id: str,
    *,
    now: datetime | None = None,
) -> Outcome:
    """Where crew-mates have checked in recently (latest check-in per person)."""
    if get_membership(store, user_id, crew_id) is None:
        return Outcome.forbidden("You're not in this crew.")
    now = now or datetime.now(UTC)

    latest: dict[str, dict[str, Any]] = {}
    for row in active_checkins(store, crew_id, now):
        latest.setdefault(row["user_id"], row)
    if not latest:
        return Outcome.success("Nobody has checked in yet.", locations=[])

    names = resolve_display_names(store, list(latest))
    locations = [
        {"user_id": uid, "name": label(names, uid), "venue_name": row["venue_name"],
         "created_at": row["created_at"]}
        for uid, row in latest.items()
    ]
    lines = [f"{loc['name']}: {loc['venue_name']}" for loc in locations]
    return Outcome.success("\n".join(lines), locations=locations)


@guarded
def locate(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    user_id: str,
    crew_id: str,
    *,
    now: datetime | None = None,
) -> Outcome:
    """Ping crew-mates who haven't checked in."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    crew = get_crew(store, crew_id) if crew_id else None
    if crew is None:
        return Outcome.not_found("Crew not found.")
    if get_membership(store, user_id, crew_id) is None:
        return Outcome.forbidden("You're not in this crew.")

    now = now or datetime.now(UTC)
    checked_in = {row["user_id"] for row in active_checkins(store, crew_id, now)}
    missing = [uid for uid in member_ids(store, crew_id) if uid != user_id and uid not in checked_in]
    if not missing:
        return Outcome.noop("Everyone in the crew has checked in.", pinged=[])

    report = notify_locate(store, dispatcher, user_id, crew_id, missing, now=now)
    return Outcome.success(
        f"Pinged {report.sent_count} of {len(missing)} crew-mates in {crew_label(crew)}.",
        pinged=report.sent,
        missing=missing,
    )
