"""
crewflow.services.crew_service — Crews, Roles & Join Policy
============================================================

A crew is a named group with role-ranked membership
(``creator`` > ``admin`` > ``member``) and a join policy:

* ``open``     — anyone with the join code joins immediately.
* ``approval`` — the join code files a :class:`JoinRequest`; an admin or
  the creator approves or denies it.  A member's *personal* invite code
  bypasses approval.
* ``closed``   — nobody joins.

Exactly one creator per crew is guaranteed by construction: only
:func:`create` assigns ``creator``, promotion and demotion never touch it,
and the creator cannot leave or be removed.

Every public function takes the :class:`DataStore` first and returns an
:class:`~crewflow.engine.outcome.Outcome`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from crewflow.config import DEFAULT_CONFIG, CrewflowConfig
from crewflow.constants import (
    CREW_CODE_LENGTH,
    DEFAULT_CREW_EMOJI,
    INVITE_CODE_LENGTH,
    LINK_CREW,
    LINK_CREW_INVITE,
    build_link,
    display_handle,
    generate_code,
    role_rank,
    split_leading_emoji,
)
from crewflow.database.models import CrewRole, JoinMode, RequestStatus
from crewflow.database.store import DataStore, DuplicateRowError, StoreError, in_
from crewflow.engine.outcome import Outcome, guarded
from crewflow.services.identity_service import label, resolve_display_names

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
BROWSE_LIMIT = 20
_CODE_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get_crew(store: DataStore, group_id: str) -> dict[str, Any] | None:
    rows = store.query("crews", {"id": group_id}, limit=1)
    return rows[0] if rows else None


def crew_label(crew: dict[str, Any]) -> str:
    return f"{crew['emoji']} {crew['name']}"


def get_membership(store: DataStore, user_id: str, group_id: str) -> dict[str, Any] | None:
    rows = store.query("crew_members", {"group_id": group_id, "user_id": user_id}, limit=1)
    return rows[0] if rows else None


def get_role(store: DataStore, user_id: str, group_id: str) -> str | None:
    membership = get_membership(store, user_id, group_id)
    return membership["role"] if membership else None


def has_permission(store: DataStore, user_id: str, group_id: str, min_role: str) -> bool:
    """Does *user_id*'s role in the crew rank at least *min_role*?"""
    return role_rank(get_role(store, user_id, group_id)) >= role_rank(min_role)


def member_ids(store: DataStore, group_id: str, *, include_muted: bool = True) -> list[str]:
    filters: dict[str, Any] = {"group_id": group_id}
    if not include_muted:
        filters["muted"] = False
    return [r["user_id"] for r in store.query("crew_members", filters, columns=["user_id"])]


def crews_for_user(store: DataStore, user_id: str, *, include_muted: bool = True) -> list[dict[str, Any]]:
    """The user's memberships joined with their crews, newest membership first."""
    filters: dict[str, Any] = {"user_id": user_id}
    if not include_muted:
        filters["muted"] = False
    memberships = store.query("crew_members", filters, order_by="joined_at", descending=True)
    if not memberships:
        return []
    crews = {
        c["id"]: c
        for c in store.query("crews", {"id": in_([m["group_id"] for m in memberships])})
    }
    result = []
    for m in memberships:
        crew = crews.get(m["group_id"])
        if crew is None:
            continue
        result.append({
            "group_id": crew["id"],
            "name": crew["name"],
            "emoji": crew["emoji"],
            "join_code": crew["join_code"],
            "role": m["role"],
            "muted": m["muted"],
        })
    return result


def find_user_crew(store: DataStore, user_id: str, ref: str) -> dict[str, Any] | None:
    """One of the user's crews by id, id prefix, or case-insensitive name.

    Chat commands show short ids (first 8 chars), so a prefix is enough.
    """
    ref = (ref or "").strip().lower()
    if not ref:
        return None
    crews = crews_for_user(store, user_id)
    for crew in crews:
        if crew["group_id"] == ref or crew["name"].lower() == ref:
            return crew
    matches = [c for c in crews if c["group_id"].startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def crew_admin_ids(store: DataStore, group_id: str) -> list[str]:
    rows = store.query(
        "crew_members",
        {"group_id": group_id, "role": in_([CrewRole.ADMIN, CrewRole.CREATOR])},
        columns=["user_id"],
    )
    return [r["user_id"] for r in rows]


def _role_tag(role: str) -> str:
    return f" ({role})" if role in (CrewRole.CREATOR, CrewRole.ADMIN) else ""


def _crew_link(prefix: str, code: str, cfg: CrewflowConfig) -> str:
    return build_link(prefix, code, domain=cfg.link_domain, bot_username=cfg.bot_username)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
@guarded
def create(
    store: DataStore,
    user_id: str,
    name: str,
    *,
    cfg: CrewflowConfig = DEFAULT_CONFIG,
    is_public: bool = False,
    is_temporary: bool = False,
    expires_at: datetime | None = None,
) -> Outcome:
    """Create a crew; the caller becomes its creator."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not name or not name.strip():
        return Outcome.invalid("Crew name required. Example: /crew create Salsa Wolves")

    emoji, clean_name = split_leading_emoji(name.strip())
    if not clean_name:
        return Outcome.invalid("Crew name required (not just an emoji).")
    if len(clean_name) > MAX_NAME_LENGTH:
        return Outcome.invalid(f"Crew names are limited to {MAX_NAME_LENGTH} characters.")
    emoji = emoji or DEFAULT_CREW_EMOJI

    crew = None
    for _ in range(_CODE_ATTEMPTS):
        try:
            crew = store.insert("crews", {
                "name": clean_name,
                "emoji": emoji,
                "created_by": user_id,
                "join_code": generate_code(CREW_CODE_LENGTH),
                "join_mode": JoinMode.OPEN.value,
                "max_members": cfg.default_max_members,
                "is_public": is_public,
                "is_temporary": is_temporary,
                "expires_at": expires_at,
            })
            break
        except DuplicateRowError:
            continue
    if crew is None:
        return Outcome.failure("Failed to create crew. Try again.")

    try:
        store.insert("crew_members", {
            "group_id": crew["id"],
            "user_id": user_id,
            "role": CrewRole.CREATOR.value,
        })
    except StoreError:
        logger.exception("Creator membership insert failed for crew %s", crew["id"])
        store.delete("crews", {"id": crew["id"]})
        return Outcome.failure("Failed to create crew. Try again.")

    link = _crew_link(LINK_CREW, crew["join_code"], cfg)
    logger.info("Crew %s created by %s", crew["id"], user_id)
    return Outcome.success(
        f"**{emoji} {clean_name}** created!\n\n"
        f"Share this link to invite your crew:\n{link}\n\n"
        "Members will see each other's event plans.",
        crew=crew,
        link=link,
    )


# ---------------------------------------------------------------------------
# Join
# ---------------------------------------------------------------------------
def _add_member(store: DataStore, user_id: str, crew: dict[str, Any]) -> bool:
    """Insert a ``member`` row; ``False`` if the user was already in."""
    try:
        store.insert("crew_members", {
            "group_id": crew["id"],
            "user_id": user_id,
            "role": CrewRole.MEMBER.value,
        })
    except DuplicateRowError:
        return False
    return True


@guarded
def join(store: DataStore, user_id: str, code: str, *, now: datetime | None = None) -> Outcome:
    """Join via a crew's public join code or a member's personal invite code.

    Personal invites are tried first; they bypass ``approval`` mode and
    credit the inviter.
    """
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not code:
        return Outcome.invalid("Crew invite code required.")
    now = now or datetime.now(UTC)

    invite = None
    invites = store.query("crew_invites", {"invite_code": code}, limit=1)
    if invites:
        invite = invites[0]
        crew = get_crew(store, invite["group_id"])
    else:
        rows = store.query("crews", {"join_code": code}, limit=1)
        crew = rows[0] if rows else None

    if crew is None:
        return Outcome.not_found("Invalid crew code. Ask the crew admin for a new link.")
    if crew["is_temporary"] and crew["expires_at"] and crew["expires_at"] < now:
        return Outcome.forbidden("This crew has expired. It was a temporary squad.")
    if crew["join_mode"] == JoinMode.CLOSED:
        return Outcome.forbidden("This crew is closed to new members.")
    if get_membership(store, user_id, crew["id"]):
        return Outcome.noop(f"You're already in {crew_label(crew)}!", group_id=crew["id"])

    count = len(member_ids(store, crew["id"]))
    if count >= crew["max_members"]:
        return Outcome.forbidden(f"{crew_label(crew)} is full ({crew['max_members']} members).")

    if crew["join_mode"] == JoinMode.APPROVAL and invite is None:
        return request_join(store, user_id, crew["id"])

    if not _add_member(store, user_id, crew):
        return Outcome.noop(f"You're already in {crew_label(crew)}!", group_id=crew["id"])

    data: dict[str, Any] = {"group_id": crew["id"], "crew": crew, "joined": True}
    if invite is not None:
        store.patch("crew_invites", {"id": invite["id"]}, {"uses": invite["uses"] + 1})
        data["attribution"] = {"inviter_id": invite["inviter_id"], "group_id": crew["id"]}

    logger.info("%s joined crew %s", user_id, crew["id"])
    return Outcome.success(
        f"**Welcome to {crew_label(crew)}!**\n\n"
        f"{count + 1} members in this crew.\n"
        "You'll see each other's event plans and get crew notifications.",
        **data,
    )


@guarded
def request_join(store: DataStore, user_id: str, group_id: str) -> Outcome:
    """File a join request for an ``approval`` crew (``open`` crews join directly)."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not group_id:
        return Outcome.invalid("Crew ID required.")

    crew = get_crew(store, group_id)
    if crew is None:
        return Outcome.not_found("Crew not found.")
    if crew["join_mode"] == JoinMode.CLOSED:
        return Outcome.forbidden("This crew is closed to new members.")

    if crew["join_mode"] == JoinMode.OPEN:
        if not _add_member(store, user_id, crew):
            return Outcome.noop(f"You're already in {crew_label(crew)}!", group_id=group_id)
        return Outcome.success(
            f"**Welcome to {crew_label(crew)}!**", group_id=group_id, crew=crew, joined=True,
        )

    if get_membership(store, user_id, group_id):
        return Outcome.noop(f"You're already in {crew_label(crew)}!", group_id=group_id)

    pending_msg = f"You already have a pending request for {crew_label(crew)}. Hang tight!"
    if store.query(
        "crew_join_requests",
        {"group_id": group_id, "user_id": user_id, "status": RequestStatus.PENDING.value},
        limit=1,
    ):
        return Outcome.noop(pending_msg, group_id=group_id)

    try:
        request = store.insert("crew_join_requests", {
            "group_id": group_id,
            "user_id": user_id,
            "status": RequestStatus.PENDING.value,
        })
    except DuplicateRowError:
        return Outcome.noop(pending_msg, group_id=group_id)

    logger.info("Join request %s filed by %s for crew %s", request["id"], user_id, group_id)
    return Outcome.success(
        f"Request sent! The admins of {crew_label(crew)} will review it.",
        request_id=request["id"],
        group_id=group_id,
        crew=crew,
        pending=True,
    )


def _review(store: DataStore, reviewer_id: str, request_id: int, decision: RequestStatus) -> Outcome:
    if not reviewer_id:
        return Outcome.invalid("User ID required.")
    if not request_id:
        return Outcome.invalid("Request ID required.")

    rows = store.query("crew_join_requests", {"id": request_id}, limit=1)
    if not rows:
        return Outcome.not_found("Request not found.")
    request = rows[0]

    verb = "approve" if decision == RequestStatus.APPROVED else "deny"
    if not has_permission(store, reviewer_id, request["group_id"], CrewRole.ADMIN):
        return Outcome.forbidden(f"Only crew creators and admins can {verb} requests.")
    if request["status"] != RequestStatus.PENDING:
        return Outcome.noop(f"This request has already been {request['status']}.")

    touched = store.patch(
        "crew_join_requests",
        {"id": request_id, "status": RequestStatus.PENDING.value},
        {
            "status": decision.value,
            "reviewed_by": reviewer_id,
            "reviewed_at": datetime.now(UTC),
        },
    )
    if not touched:
        return Outcome.noop("This request was already reviewed.")

    crew = get_crew(store, request["group_id"])
    if decision == RequestStatus.APPROVED:
        store.upsert(
            "crew_members",
            {
                "group_id": request["group_id"],
                "user_id": request["user_id"],
                "role": CrewRole.MEMBER.value,
            },
            ["group_id", "user_id"],
            ignore_duplicates=True,
        )

    name = crew_label(crew) if crew else "the crew"
    logger.info("Join request %s %s by %s", request_id, decision, reviewer_id)
    return Outcome.success(
        f"{display_handle(request['user_id'])} was {decision.value} for {name}.",
        request_id=request_id,
        group_id=request["group_id"],
        user_id=request["user_id"],
        crew=crew,
        status=decision.value,
    )


@guarded
def approve(store: DataStore, reviewer_id: str, request_id: int) -> Outcome:
    return _review(store, reviewer_id, request_id, RequestStatus.APPROVED)


@guarded
def deny(store: DataStore, reviewer_id: str, request_id: int) -> Outcome:
    return _review(store, reviewer_id, request_id, RequestStatus.DENIED)


@guarded
def pending_requests(store: DataStore, actor_id: str, group_id: str) -> Outcome:
    if not has_permission(store, actor_id, group_id, CrewRole.ADMIN):
        return Outcome.forbidden("Only crew creators and admins can see join requests.")
    rows = store.query(
        "crew_join_requests",
        {"group_id": group_id, "status": RequestStatus.PENDING.value},
        order_by="requested_at",
    )
    if not rows:
        return Outcome.success("No pending requests.", requests=[])
    lines = [f"#{r['id']}  {display_handle(r['user_id'])}" for r in rows]
    return Outcome.success("\n".join(lines), requests=rows)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
def _set_role(store: DataStore, actor_id: str, group_id: str, target_id: str, role: CrewRole) -> Outcome:
    if not actor_id:
        return Outcome.invalid("User ID required.")
    if not group_id or not target_id:
        return Outcome.invalid("Crew ID and member ID required.")

    verb = "promote" if role == CrewRole.ADMIN else "demote"
    if not has_permission(store, actor_id, group_id, CrewRole.CREATOR):
        return Outcome.forbidden(f"Only the crew creator can {verb} members.")

    target = get_membership(store, target_id, group_id)
    if target is None:
        return Outcome.not_found("That user isn't in this crew.")
    if target["role"] == CrewRole.CREATOR:
        return Outcome.forbidden("The creator's role can't be changed.")
    if target["role"] == role:
        return Outcome.noop(f"{display_handle(target_id)} is already {role.value}.")

    store.patch("crew_members", {"group_id": group_id, "user_id": target_id}, {"role": role.value})
    logger.info("%s set %s to %s in crew %s", actor_id, target_id, role, group_id)
    return Outcome.success(
        f"{display_handle(target_id)} is now {role.value}.",
        group_id=group_id, user_id=target_id, role=role.value,
    )


@guarded
def promote(store: DataStore, actor_id: str, group_id: str, target_id: str) -> Outcome:
    return _set_role(store, actor_id, group_id, target_id, CrewRole.ADMIN)


@guarded
def demote(store: DataStore, actor_id: str, group_id: str, target_id: str) -> Outcome:
    return _set_role(store, actor_id, group_id, target_id, CrewRole.MEMBER)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
def _settings_view(crew: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": crew["id"],
        "name": crew["name"],
        "emoji": crew["emoji"],
        "is_public": crew["is_public"],
        "join_mode": crew["join_mode"],
    }


@guarded
def settings(
    store: DataStore,
    actor_id: str,
    group_id: str,
    *,
    is_public: bool | None = None,
    join_mode: str | None = None,
) -> Outcome:
    """Change visibility and/or join mode (admin or creator)."""
    if not actor_id:
        return Outcome.invalid("User ID required.")
    if not group_id:
        return Outcome.invalid("Crew ID required.")
    if not has_permission(store, actor_id, group_id, CrewRole.ADMIN):
        return Outcome.forbidden("Only crew creators and admins can change settings.")

    crew = get_crew(store, group_id)
    if crew is None:
        return Outcome.not_found("Crew not found.")

    updates: dict[str, Any] = {}
    if is_public is not None and is_public != crew["is_public"]:
        updates["is_public"] = is_public
    if join_mode is not None:
        if join_mode not in set(JoinMode):
            return Outcome.invalid("Join mode must be open, approval, or closed.")
        if join_mode != crew["join_mode"]:
            updates["join_mode"] = join_mode

    if not updates:
        return Outcome.noop(
            f"**{crew_label(crew)}** settings unchanged.", settings=_settings_view(crew),
        )

    store.patch("crews", {"id": group_id}, updates)
    crew = {**crew, **updates}
    visibility = "Public" if crew["is_public"] else "Private"
    return Outcome.success(
        f"**{crew_label(crew)}** settings updated\n\n"
        f"Visibility: {visibility}\nJoin mode: {crew['join_mode']}",
        settings=_settings_view(crew),
    )


# ---------------------------------------------------------------------------
# Leave / remove / mute
# ---------------------------------------------------------------------------
@guarded
def leave(store: DataStore, user_id: str, group_id: str) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not group_id:
        return Outcome.invalid("Crew ID required.")
    role = get_role(store, user_id, group_id)
    if role is None:
        return Outcome.noop("You're not in this crew.")
    if role == CrewRole.CREATOR:
        return Outcome.forbidden("The creator can't leave their own crew.")
    store.delete("crew_members", {"group_id": group_id, "user_id": user_id})
    return Outcome.success("You've left the crew.", group_id=group_id)


@guarded
def remove_member(store: DataStore, actor_id: str, group_id: str, target_id: str) -> Outcome:
    if not actor_id:
        return Outcome.invalid("User ID required.")
    if not group_id or not target_id:
        return Outcome.invalid("Crew ID and member ID required.")

    actor_role = get_role(store, actor_id, group_id)
    if role_rank(actor_role) < role_rank(CrewRole.ADMIN):
        return Outcome.forbidden("Only crew admins can remove members.")

    target_role = get_role(store, target_id, group_id)
    if target_role is None:
        return Outcome.noop("That user isn't in this crew.")
    if role_rank(target_role) >= role_rank(actor_role):
        return Outcome.forbidden("You can only remove members ranked below you.")

    store.delete("crew_members", {"group_id": group_id, "user_id": target_id})
    return Outcome.success(
        f"Removed {display_handle(target_id)} from the crew.", group_id=group_id, user_id=target_id,
    )


@guarded
def mute_crew(store: DataStore, user_id: str, group_id: str) -> Outcome:
    """Toggle the caller's own mute flag on a crew."""
    membership = get_membership(store, user_id, group_id)
    if membership is None:
        return Outcome.not_found("You're not in this crew.")
    muted = not membership["muted"]
    store.patch("crew_members", {"group_id": group_id, "user_id": user_id}, {"muted": muted})
    if muted:
        return Outcome.success("Crew muted. You won't get its notifications.", muted=True)
    return Outcome.success("Crew unmuted. Notifications restored.", muted=False)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
@guarded
def list_crews(store: DataStore, user_id: str) -> Outcome:
    if not user_id:
        return Outcome.invalid("User ID required.")
    crews = crews_for_user(store, user_id)
    if not crews:
        return Outcome.success(
            "**Your Crews**\n\nNone yet. Create one with /crew or join via an invite link!",
            crews=[],
        )
    lines = ["**Your Crews**\n"]
    for c in crews:
        lines.append(f"{c['emoji']} **{c['name']}**{_role_tag(c['role'])}")
        lines.append(f"  ID: {c['group_id'][:8]}")
    return Outcome.success("\n".join(lines), crews=crews)


@guarded
def crew_members(store: DataStore, viewer_id: str, group_id: str) -> Outcome:
    if not group_id:
        return Outcome.invalid("Crew ID required.")
    crew = get_crew(store, group_id)
    if crew is None:
        return Outcome.not_found("Crew not found.")
    if get_membership(store, viewer_id, group_id) is None:
        return Outcome.forbidden("You're not in this crew.")
    rows = store.query("crew_members", {"group_id": group_id}, order_by="joined_at")
    names = resolve_display_names(store, [r["user_id"] for r in rows])
    members = [
        {"user_id": r["user_id"], "role": r["role"], "name": label(names, r["user_id"])}
        for r in rows
    ]
    lines = [f"**{crew_label(crew)}** ({len(members)} members)\n"]
    lines += [f"  {m['name']}{_role_tag(m['role'])}" for m in members]
    return Outcome.success("\n".join(lines), crew=crew, members=members)


@guarded
def browse_public(store: DataStore, limit: int = BROWSE_LIMIT) -> Outcome:
    crews = store.query(
        "crews", {"is_public": True}, order_by="created_at", descending=True, limit=limit,
    )
    if not crews:
        return Outcome.success("No public crews yet. Be the first to create one!", crews=[])
    lines = [f"{c['emoji']} **{c['name']}** ({c['join_mode']})" for c in crews]
    return Outcome.success("\n".join(lines), crews=crews)


@guarded
def personal_invite(
    store: DataStore,
    user_id: str,
    group_id: str,
    *,
    cfg: CrewflowConfig = DEFAULT_CONFIG,
) -> Outcome:
    """The caller's tracked invite link for a crew (one per member per crew)."""
    if not user_id:
        return Outcome.invalid("User ID required.")
    if not group_id:
        return Outcome.invalid("Crew ID required.")
    if get_membership(store, user_id, group_id) is None:
        return Outcome.forbidden("You're not in this crew.")
    crew = get_crew(store, group_id)
    if crew is None:
        return Outcome.not_found("Crew not found.")

    invite = None
    for _ in range(_CODE_ATTEMPTS):
        existing = store.query(
            "crew_invites", {"group_id": group_id, "inviter_id": user_id}, limit=1,
        )
        if existing:
            invite = existing[0]
            break
        try:
            invite = store.insert("crew_invites", {
                "group_id": group_id,
                "inviter_id": user_id,
                "invite_code": generate_code(INVITE_CODE_LENGTH),
            })
            break
        except DuplicateRowError:
            continue
    if invite is None:
        return Outcome.failure("Couldn't create your invite link. Try again.")

    link = _crew_link(LINK_CREW_INVITE, invite["invite_code"], cfg)
    uses = invite["uses"]
    uses_text = f"\n{uses} people joined via your link." if uses else ""
    return Outcome.success(
        f"**Join our Flow - {crew_label(crew)}**\n\nYour personal invite link:\n{link}{uses_text}",
        link=link,
        code=invite["invite_code"],
        uses=uses,
    )
