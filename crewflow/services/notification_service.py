"""
crewflow.services.notification_service — Targeting, Dispatch & Dedup Ledger
============================================================================

**Pipeline per recipient** (any stage short-circuits to "skip this one",
never aborting the batch)::

    candidate → not actor → not already seen in this batch → hasn't muted actor
              → preference toggle on → under daily cap → outside quiet hours
              → not in dedup ledger → channel send → ledger entry

A failed send writes no ledger entry, so the next trigger of the same event
can retry.  Ledger writes are ignore-on-conflict upserts on
``(recipient, type, reference, triggered_by)``: two racing dispatches can at
worst both send once, never double-log.

**Dedup families.**  ``friend_rsvp`` and ``crew_rsvp`` share one family: a
recipient who is both a friend and a crew-mate of the actor gets one message
per RSVP, whichever path reaches them first.

**Broad addressing.**  When the recipient id's own platform can't deliver,
:func:`deliver` retries over the other platform handles linked to the same
canonical identity.

All notify functions are synchronous and return a :class:`DispatchReport`.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from crewflow.constants import display_handle
from crewflow.database.models import ConnectionStatus, NotificationType
from crewflow.database.store import DataStore, StoreError, gte, in_
from crewflow.engine.quiet_hours import in_quiet_hours, local_midnight
from crewflow.services.connection_service import active_friend_ids
from crewflow.services.crew_service import crews_for_user, get_crew, member_ids
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.identity_service import get_linked_ids
from crewflow.services.preference_service import load_preferences

logger = logging.getLogger(__name__)

RSVP_FAMILY: tuple[str, ...] = (NotificationType.FRIEND_RSVP, NotificationType.CREW_RSVP)


def dedup_family(notification_type: str) -> tuple[str, ...]:
    if notification_type in RSVP_FAMILY:
        return RSVP_FAMILY
    return (notification_type,)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
class SkipReason(enum.StrEnum):
    ACTOR = "actor"
    SEEN = "seen_in_batch"
    MUTED = "muted_actor"
    PREFERENCE = "preference_off"
    RATE_LIMIT = "daily_limit"
    QUIET_HOURS = "quiet_hours"
    DUPLICATE = "already_notified"
    ERROR = "store_error"


@dataclass(slots=True)
class DispatchReport:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: dict[str, SkipReason] = field(default_factory=dict)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    def merge(self, other: DispatchReport) -> DispatchReport:
        self.sent += other.sent
        self.failed += other.failed
        self.skipped.update(other.skipped)
        for uid in self.sent:
            self.skipped.pop(uid, None)
        return self


@dataclass(frozen=True, slots=True)
class CrewTargets:
    group_id: str
    group_name: str
    group_emoji: str
    user_ids: list[str]


@dataclass(frozen=True, slots=True)
class NotifyTargets:
    friends: list[str]
    crews: list[CrewTargets]


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
def log_notification(
    store: DataStore,
    recipient_id: str,
    notification_type: str,
    reference_id: str,
    triggered_by: str,
    *,
    sent_at: datetime | None = None,
) -> bool:
    """Record a delivered notification.  Conflicts are no-ops; failures are logged."""
    try:
        store.upsert(
            "notification_log",
            {
                "recipient_id": recipient_id,
                "notification_type": str(notification_type),
                "reference_id": reference_id,
                "triggered_by": triggered_by,
                "sent_at": sent_at or datetime.now(UTC),
            },
            ["recipient_id", "notification_type", "reference_id", "triggered_by"],
            ignore_duplicates=True,
        )
    except StoreError:
        logger.warning(
            "Ledger write failed: %s %s → %s", notification_type, reference_id, recipient_id,
            exc_info=True,
        )
        return False
    return True


def is_already_notified(
    store: DataStore,
    recipient_id: str,
    notification_type: str,
    reference_id: str,
    triggered_by: str,
) -> bool:
    rows = store.query(
        "notification_log",
        {
            "recipient_id": recipient_id,
            "notification_type": in_(dedup_family(notification_type)),
            "reference_id": reference_id,
            "triggered_by": triggered_by,
        },
        columns=["id"],
        limit=1,
    )
    return bool(rows)


def sent_today_count(store: DataStore, recipient_id: str, timezone: str, now: datetime) -> int:
    """Ledger entries for *recipient_id* since local midnight in *timezone*."""
    rows = store.query(
        "notification_log",
        {"recipient_id": recipient_id, "sent_at": gte(local_midnight(now, timezone))},
        columns=["id"],
    )
    return len(rows)


# ---------------------------------------------------------------------------
# Targeting
# ---------------------------------------------------------------------------
def _muted_by(store: DataStore, actor_id: str) -> set[str]:
    """Users whose own connection row toward *actor_id* is muted or blocked."""
    rows = store.query(
        "connections",
        {
            "friend_id": actor_id,
            "status": in_([ConnectionStatus.MUTED.value, ConnectionStatus.BLOCKED.value]),
        },
        columns=["user_id"],
    )
    return {r["user_id"] for r in rows}


def compute_targets(store: DataStore, actor_id: str, event_id: str) -> NotifyTargets:
    """Who should hear about *actor_id*'s RSVP to *event_id*.

    Friends are the actor's active connections; crew targets are, per
    non-muted crew of the actor, its other non-muted members.  Anyone
    already in the ledger for this RSVP is left out.
    """
    handled = {
        r["recipient_id"]
        for r in store.query(
            "notification_log",
            {
                "notification_type": in_(RSVP_FAMILY),
                "reference_id": event_id,
                "triggered_by": actor_id,
            },
            columns=["recipient_id"],
        )
    }
    friends = [f for f in active_friend_ids(store, actor_id) if f not in handled]

    crews = []
    for crew in crews_for_user(store, actor_id, include_muted=False):
        ids = [
            uid for uid in member_ids(store, crew["group_id"], include_muted=False)
            if uid != actor_id and uid not in handled
        ]
        crews.append(CrewTargets(crew["group_id"], crew["name"], crew["emoji"], ids))
    return NotifyTargets(friends=friends, crews=crews)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
def deliver(store: DataStore, dispatcher: ChannelDispatcher, recipient_id: str, text: str) -> bool:
    """Send to *recipient_id*, falling back to the person's other linked handles."""
    if dispatcher.send(recipient_id, text):
        return True
    try:
        rows = store.query(
            "identities", {"platform_user_id": recipient_id}, columns=["canonical_id"], limit=1,
        )
        linked = get_linked_ids(store, rows[0]["canonical_id"]) if rows else []
    except StoreError:
        logger.warning("Linked-id lookup failed for %s", recipient_id, exc_info=True)
        return False
    for handle in linked:
        if handle != recipient_id and dispatcher.supports(handle):
            if dispatcher.send(handle, text):
                logger.debug("Delivered to %s via linked handle %s", recipient_id, handle)
                return True
    return False


def dispatch(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    notification_type: str,
    actor_id: str,
    reference: str,
    recipients: Iterable[tuple[str, str]],
    *,
    now: datetime | None = None,
    visited: set[str] | None = None,
) -> DispatchReport:
    """Run the shared send path over ``(recipient_id, text)`` pairs.

    *visited* is the in-memory "already handled in this fan-out" set; pass
    the same set to several calls to treat them as one batch.
    """
    now = now or datetime.now(UTC)
    visited = set() if visited is None else visited
    report = DispatchReport()

    try:
        muted_by = _muted_by(store, actor_id)
    except StoreError:
        logger.warning("Mute lookup failed for %s; aborting fan-out", actor_id, exc_info=True)
        return report

    for recipient_id, text in recipients:
        if recipient_id == actor_id:
            report.skipped[recipient_id] = SkipReason.ACTOR
            continue
        if recipient_id in visited:
            report.skipped.setdefault(recipient_id, SkipReason.SEEN)
            continue

        if recipient_id in muted_by:
            report.skipped[recipient_id] = SkipReason.MUTED
            continue

        try:
            reason = _gate(store, notification_type, actor_id, reference, recipient_id, now)
        except StoreError:
            logger.warning("Gate checks failed for %s", recipient_id, exc_info=True)
            reason = SkipReason.ERROR
        if reason is not None:
            report.skipped[recipient_id] = reason
            continue

        # Only a recipient who passed every gate counts as handled; a later
        # pass with a different type may still reach one skipped above.
        visited.add(recipient_id)
        if not deliver(store, dispatcher, recipient_id, text):
            report.failed.append(recipient_id)
            continue

        log_notification(store, recipient_id, notification_type, reference, actor_id, sent_at=now)
        report.sent.append(recipient_id)

    logger.info(
        "%s by %s ref=%s: sent=%d failed=%d skipped=%d",
        notification_type, actor_id, reference,
        len(report.sent), len(report.failed), len(report.skipped),
    )
    return report


def _gate(
    store: DataStore,
    notification_type: str,
    actor_id: str,
    reference: str,
    recipient_id: str,
    now: datetime,
) -> SkipReason | None:
    prefs = load_preferences(store, recipient_id)
    if not prefs.allows(notification_type):
        return SkipReason.PREFERENCE
    if sent_today_count(store, recipient_id, prefs.timezone, now) >= prefs.daily_notification_limit:
        return SkipReason.RATE_LIMIT
    if in_quiet_hours(prefs, now):
        return SkipReason.QUIET_HOURS
    if is_already_notified(store, recipient_id, notification_type, reference, actor_id):
        return SkipReason.DUPLICATE
    return None


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------
def _crew_fanout(store: DataStore, actor_id: str, crew_id: str) -> tuple[dict[str, Any] | None, list[str]]:
    """The crew plus its non-muted members, if the actor may broadcast to it."""
    crew = get_crew(store, crew_id)
    if crew is None:
        return None, []
    members = member_ids(store, crew_id, include_muted=False)
    if actor_id not in members:
        return crew, []
    return crew, members


def notify_checkin(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    crew_id: str,
    venue_name: str,
    *,
    now: datetime | None = None,
) -> DispatchReport:
    crew, members = _crew_fanout(store, actor_id, crew_id)
    if crew is None:
        return DispatchReport()
    text = f"{crew['emoji']} {display_handle(actor_id)} checked in at {venue_name}"
    return dispatch(
        store, dispatcher, NotificationType.CHECKIN, actor_id, f"{crew_id}:{venue_name}",
        ((uid, text) for uid in members), now=now,
    )


def notify_crew_join(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    crew_id: str,
    *,
    now: datetime | None = None,
) -> DispatchReport:
    crew, members = _crew_fanout(store, actor_id, crew_id)
    if crew is None:
        return DispatchReport()
    text = f"{crew['emoji']} {display_handle(actor_id)} just joined {crew['name']}!"
    return dispatch(
        store, dispatcher, NotificationType.CREW_JOIN, actor_id, f"{crew_id}:{actor_id}",
        ((uid, text) for uid in members), now=now,
    )


def notify_member_rsvp(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    event_id: str,
    event_name: str,
    *,
    now: datetime | None = None,
    visited: set[str] | None = None,
) -> DispatchReport:
    """Tell co-members across all of the actor's crews; each person hears once."""
    targets = compute_targets(store, actor_id, event_id)
    handle = display_handle(actor_id)
    recipients = (
        (uid, f"{crew.group_emoji} {handle} is going to {event_name}!")
        for crew in targets.crews
        for uid in crew.user_ids
    )
    return dispatch(
        store, dispatcher, NotificationType.CREW_RSVP, actor_id, event_id, recipients,
        now=now, visited=visited,
    )


def notify_friend_rsvp(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    event_id: str,
    event_name: str,
    *,
    now: datetime | None = None,
    visited: set[str] | None = None,
) -> DispatchReport:
    targets = compute_targets(store, actor_id, event_id)
    text = f"{display_handle(actor_id)} is going to {event_name}!"
    return dispatch(
        store, dispatcher, NotificationType.FRIEND_RSVP, actor_id, event_id,
        ((uid, text) for uid in targets.friends), now=now, visited=visited,
    )


def notify_rsvp(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    event_id: str,
    event_name: str,
    *,
    now: datetime | None = None,
) -> DispatchReport:
    """Crew-mates first (framed by crew), then remaining friends, as one batch."""
    visited: set[str] = set()
    report = notify_member_rsvp(
        store, dispatcher, actor_id, event_id, event_name, now=now, visited=visited,
    )
    return report.merge(notify_friend_rsvp(
        store, dispatcher, actor_id, event_id, event_name, now=now, visited=visited,
    ))


def notify_locate(
    store: DataStore,
    dispatcher: ChannelDispatcher,
    actor_id: str,
    crew_id: str,
    recipient_ids: Iterable[str],
    *,
    now: datetime | None = None,
) -> DispatchReport:
    """"Where are you?" ping; at most one per recipient, crew and actor per day."""
    now = now or datetime.now(UTC)
    crew, members = _crew_fanout(store, actor_id, crew_id)
    if crew is None:
        return DispatchReport()
    allowed = set(members)
    text = f"{crew['emoji']} {display_handle(actor_id)} is looking for {crew['name']}. Where are you?"
    return dispatch(
        store, dispatcher, NotificationType.LOCATE, actor_id,
        f"{crew_id}:{now.date().isoformat()}",
        ((uid, text) for uid in recipient_ids if uid in allowed), now=now,
    )
