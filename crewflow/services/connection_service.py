"""
crewflow.services.connection_service — Personal Flow (Friends)
===============================================================

A friendship is stored as two directional ``connections`` rows so each side
owns its own status: muting is asymmetric, it only flips the caller's row.
Accepting an invite always leaves both rows ``active`` with one shared
``accepted_at``; removing a friend deletes both.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from crewflow.config import DEFAULT_CONFIG, CrewflowConfig
from crewflow.constants import INVITE_CODE_LENGTH, LINK_FLOW, build_link, generate_code
from crewflow.database.models import ConnectionStatus
from crewflow.database.store import DataStore, DuplicateRowError
from crewflow.engine.outcome import Outcome, guarded
from crewflow.services.crew_service import crews_for_user
from crewflow.services.identity_service import label, resolve_display_names

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Queries shared with attendance and notifications
# ---------------------------------------------------------------------------
def active_friend_ids(store: DataStore, user_id: str) -> list[str]:
    """Friends whose row *from user_id* is active (muted friends excluded)."""
    rows = store.query(
        "connections",
        {"user_id": user_id, "status": ConnectionStatus.ACTIVE.value},
        columns=["friend_id"],
    )
    return [r["friend_id"] for r in rows]


def get_connection(store: DataStore, user_id: str, friend_id: str) -> dict | None:
    rows = store.query("connections", {"user_id": user_id, "friend_id": friend_id}, limit=1)
    return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Invite codes
# ---------------------------------------------------------------------------
def get_invite_code(store: DataStore, user_id: str) -> str:
    """The user's personal flow code, created on first use and stable after."""
    for _ in range(_CODE_ATTEMPTS):
        rows = store.query("flow_invite_codes", {"user_id": user_id}, limit=1)
        if rows:
            return rows[0]["code"]
        try:
            return store.insert(
                "flow_invite_codes",
                {"user_id": user_id, "code": generate_code(INVITE_CODE_LENGTH)},
            )["code"]
        except DuplicateRowError:
            # Either a concurrent insert for this user or a code collision.
            continue
    raise DuplicateRowError(f"could not allocate an invite code for {user_id}")


@guarded
def invite(store: DataStore, user_id: str, *, cfg: CrewflowConfig = DEFAULT_CONFIG) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    code = get_invite_code(store, user_id)
    link = build_link(LINK_FLOW, code, domain=cfg.link_domain, bot_username=cfg.bot_username)
    return Outcome.success(
        "**Join my Flow**\n\n"
        f"Share this link with friends:\n{link}\n\n"
        "When they tap it, you'll be connected and see each other's event plans.",
        code=code,
        link=link,
    )


# ---------------------------------------------------------------------------
# Accept / remove / mute
# ---------------------------------------------------------------------------
@guarded
def accept_invite(store: DataStore, user_id: str, code: str) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not code:
        return Outcome.invalid("Invite code required.")

    owners = store.query("flow_invite_codes", {"code": code}, columns=["user_id"], limit=1)
    if not owners:
        return Outcome.not_found("Invalid invite code. Ask your friend for a new link.")
    friend_id = owners[0]["user_id"]
    if friend_id == user_id:
        return Outcome.invalid("You can't add yourself to your own flow!")

    mine = get_connection(store, user_id, friend_id)
    theirs = get_connection(store, friend_id, user_id)
    existing = [row for row in (mine, theirs) if row]

    if any(row["status"] == ConnectionStatus.BLOCKED for row in existing):
        return Outcome.forbidden("This connection is blocked.")
    if len(existing) == 2 and all(row["status"] == ConnectionStatus.ACTIVE for row in existing):
        return Outcome.noop("You're already in each other's flow!", friend_id=friend_id)

    accepted_at = datetime.now(UTC)
    for a, b in ((user_id, friend_id), (friend_id, user_id)):
        store.upsert(
            "connections",
            {
                "user_id": a,
                "friend_id": b,
                "status": ConnectionStatus.ACTIVE.value,
                "accepted_at": accepted_at,
            },
            ["user_id", "friend_id"],
        )

    if existing:
        logger.info("Flow reconnected: %s ↔ %s", user_id, friend_id)
        return Outcome.success(
            "**Flow reconnected!** You'll now see each other's event plans.",
            friend_id=friend_id,
        )
    logger.info("Flow connected: %s ↔ %s", user_id, friend_id)
    return Outcome.success(
        "**You're in the flow!** You'll now see each other's event plans and get "
        "notified when you're going to the same events.",
        friend_id=friend_id,
    )


@guarded
def remove(store: DataStore, user_id: str, friend_id: str) -> Outcome:
    """Delete both directions.  Removing a non-friend still succeeds."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not friend_id or friend_id == user_id:
        return Outcome.invalid("Friend ID required.")
    store.delete("connections", {"user_id": user_id, "friend_id": friend_id})
    store.delete("connections", {"user_id": friend_id, "friend_id": user_id})
    return Outcome.success("Removed from your flow.", friend_id=friend_id)


@guarded
def mute(store: DataStore, user_id: str, friend_id: str) -> Outcome:
    """Toggle active ↔ muted on the caller's row only."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not friend_id:
        return Outcome.invalid("Friend ID required.")

    conn = get_connection(store, user_id, friend_id)
    if conn is None:
        return Outcome.not_found("Not in your flow.")
    if conn["status"] == ConnectionStatus.BLOCKED:
        return Outcome.forbidden("This connection is blocked.")

    new_status = (
        ConnectionStatus.ACTIVE if conn["status"] == ConnectionStatus.MUTED else ConnectionStatus.MUTED
    )
    store.patch("connections", {"id": conn["id"]}, {"status": new_status.value})
    if new_status == ConnectionStatus.MUTED:
        return Outcome.success(
            "Muted. You won't get notifications about this friend.", muted=True,
        )
    return Outcome.success("Unmuted. Notifications restored.", muted=False)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------
@guarded
def list_flow(store: DataStore, user_id: str) -> Outcome:
    """Active friends plus crew memberships, with display names."""
    if not user_id:
        return Outcome.invalid("User ID required.")

    friends = store.query(
        "connections",
        {"user_id": user_id, "status": ConnectionStatus.ACTIVE.value},
        order_by="accepted_at",
        descending=True,
    )
    names = resolve_display_names(store, [f["friend_id"] for f in friends])
    friend_view = [
        {"user_id": f["friend_id"], "name": label(names, f["friend_id"]), "accepted_at": f["accepted_at"]}
        for f in friends
    ]
    crews = crews_for_user(store, user_id)

    lines = ["**Your Flow**\n"]
    if friend_view:
        lines.append(f"**Friends** ({len(friend_view)})")
        lines += [f"  {f['name']}" for f in friend_view]
        lines.append("")
    else:
        lines.append("**Friends**: None yet. Use /share to invite friends!\n")
    if crews:
        lines.append(f"**Crews** ({len(crews)})")
        for c in crews:
            tag = f" ({c['role']})" if c["role"] in ("creator", "admin") else ""
            lines.append(f"  {c['emoji']} {c['name']}{tag}")
    else:
        lines.append("**Crews**: None yet. Use /crew to create or join one!")

    return Outcome.success("\n".join(lines), friends=friend_view, crews=crews)
