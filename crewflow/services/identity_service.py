"""
crewflow.services.identity_service — Canonical Identity Resolution
===================================================================

Maps a platform-scoped handle (``telegram_123``, ``farcaster_456``,
``discord_789``, ``web_did:privy:…``) to the canonical id of the person
behind it.

Resolution is a lazy union-find "find-and-attach":

1. An existing ``identities`` row wins; its canonical id is returned.
2. Otherwise the federation collaborator is asked for linked handles.
3. The first linked handle that already has a canonical id is adopted and
   the new handle is attached to it.
4. If none has one, the handle being resolved becomes the canonical id and
   every linked handle is attached to it.
5. No federation (unconfigured, failed, or empty) → standalone id.

Rows are written with ignore-on-conflict, so an existing handle's canonical
id is never rewritten.  Writes are best-effort: a failed write is logged and
resolution still returns an id.
"""

from __future__ import annotations

import logging

from crewflow.constants import detect_platform, display_handle
from crewflow.database.store import DataStore, StoreError, in_
from crewflow.services.federation import FederationLookup

logger = logging.getLogger(__name__)


def _lookup_canonical(store: DataStore, platform_user_id: str) -> str | None:
    rows = store.query(
        "identities",
        {"platform_user_id": platform_user_id},
        columns=["canonical_id"],
        limit=1,
    )
    return rows[0]["canonical_id"] if rows else None


def _ensure_identity_row(
    store: DataStore,
    canonical_id: str,
    platform_user_id: str,
    *,
    federation_id: str | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> None:
    try:
        store.upsert(
            "identities",
            {
                "canonical_id": canonical_id,
                "platform": detect_platform(platform_user_id),
                "platform_user_id": platform_user_id,
                "federation_id": federation_id,
                "display_name": display_name,
                "avatar_url": avatar_url,
            },
            ["platform_user_id"],
            ignore_duplicates=True,
        )
    except StoreError:
        logger.warning(
            "Identity write failed for %s → %s", platform_user_id, canonical_id, exc_info=True,
        )


def resolve_canonical_id(
    store: DataStore,
    platform_user_id: str,
    *,
    federation: FederationLookup | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> str:
    """Return the canonical id for *platform_user_id*, creating rows lazily."""
    try:
        existing = _lookup_canonical(store, platform_user_id)
    except StoreError:
        logger.warning("Identity lookup failed for %s", platform_user_id, exc_info=True)
        return platform_user_id
    if existing:
        return existing

    linked = federation.lookup_linked_handles(platform_user_id) if federation else None
    if not linked or not linked.handles:
        _ensure_identity_row(
            store, platform_user_id, platform_user_id,
            display_name=display_name, avatar_url=avatar_url,
        )
        return platform_user_id

    for handle in linked.handles:
        try:
            root = _lookup_canonical(store, handle)
        except StoreError:
            logger.warning("Identity lookup failed for linked %s", handle, exc_info=True)
            continue
        if root:
            _ensure_identity_row(
                store, root, platform_user_id,
                federation_id=linked.federation_id,
                display_name=display_name, avatar_url=avatar_url,
            )
            for other in linked.handles:
                _ensure_identity_row(store, root, other, federation_id=linked.federation_id)
            logger.info("Attached %s to existing identity %s", platform_user_id, root)
            return root

    canonical_id = platform_user_id
    _ensure_identity_row(
        store, canonical_id, platform_user_id,
        federation_id=linked.federation_id,
        display_name=display_name, avatar_url=avatar_url,
    )
    for handle in linked.handles:
        _ensure_identity_row(store, canonical_id, handle, federation_id=linked.federation_id)
    logger.info("Minted identity %s with %d linked handles", canonical_id, len(linked.handles))
    return canonical_id


def get_linked_ids(store: DataStore, canonical_id: str) -> list[str]:
    """Every platform handle attached to *canonical_id*."""
    rows = store.query("identities", {"canonical_id": canonical_id}, columns=["platform_user_id"])
    return [r["platform_user_id"] for r in rows]


def resolve_display_names(store: DataStore, user_ids: list[str]) -> dict[str, str]:
    """``{user_id: name}`` for ids with a stored display name; others are omitted."""
    if not user_ids:
        return {}
    try:
        rows = store.query(
            "identities",
            {"platform_user_id": in_(user_ids)},
            columns=["platform_user_id", "display_name"],
        )
    except StoreError:
        logger.warning("Display-name lookup failed", exc_info=True)
        return {}
    return {r["platform_user_id"]: r["display_name"] for r in rows if r["display_name"]}


def label(names: dict[str, str], user_id: str) -> str:
    """Stored display name, else the ``@handle`` form of *user_id*."""
    return names.get(user_id) or display_handle(user_id)
