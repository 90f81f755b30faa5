"""
crewflow.services.federation — Linked-Account Lookup
=====================================================

The identity resolver asks a federation collaborator "which other platform
handles belong to the same person as this one?".  Anything satisfying
:class:`FederationLookup` will do; :class:`PrivyFederation` asks the Privy
auth service, where one Privy user can carry a linked Telegram account, a
Farcaster account, and a web login at once.

Failures here degrade to "no federation": lookups return ``None`` and the
resolver mints a standalone canonical id.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from crewflow.constants import detect_platform, strip_platform

logger = logging.getLogger(__name__)

PRIVY_API = "https://auth.privy.io/api/v1"


@dataclass(frozen=True, slots=True)
class LinkedHandles:
    federation_id: str
    handles: list[str] = field(default_factory=list)


class FederationLookup(Protocol):
    def lookup_linked_handles(self, platform_user_id: str) -> LinkedHandles | None: ...


def extract_linked_ids(privy_user: dict[str, Any], exclude: str | None = None) -> list[str]:
    """Platform ids (``telegram_…``, ``farcaster_…``, ``web_…``) on a Privy user, minus *exclude*."""
    ids: list[str] = []
    for account in privy_user.get("linked_accounts") or []:
        kind = account.get("type")
        if kind == "telegram" and account.get("telegram_user_id"):
            ids.append(f"telegram_{account['telegram_user_id']}")
        elif kind == "farcaster" and account.get("fid"):
            ids.append(f"farcaster_{account['fid']}")
    privy_id = privy_user.get("id") or privy_user.get("did")
    if privy_id:
        ids.append(f"web_{privy_id}")
    return [i for i in ids if i != exclude]


class PrivyFederation:
    """:class:`FederationLookup` backed by Privy's server API."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        timeout: float = 8.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=PRIVY_API,
            auth=(app_id, app_secret),
            headers={"privy-app-id": app_id},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> PrivyFederation | None:
        app_id = os.getenv("PRIVY_APP_ID")
        app_secret = os.getenv("PRIVY_APP_SECRET")
        if not app_id or not app_secret:
            return None
        return cls(app_id, app_secret)

    def _find_user(self, platform_user_id: str) -> dict[str, Any] | None:
        platform = detect_platform(platform_user_id)
        raw_id = strip_platform(platform_user_id)

        if platform == "web":
            resp = self._client.get(f"/users/{raw_id}")
            return resp.json() if resp.status_code == 200 else None

        if platform not in ("telegram", "farcaster"):
            return None

        body = {"filter": {platform: {"subject": raw_id}}, "limit": 1}
        resp = self._client.post("/users/search", json=body)
        if resp.status_code != 200:
            logger.warning("Privy search returned HTTP %d for %s", resp.status_code, platform_user_id)
            return None
        users = resp.json().get("data") or []
        return users[0] if users else None

    def lookup_linked_handles(self, platform_user_id: str) -> LinkedHandles | None:
        try:
            user = self._find_user(platform_user_id)
        except (httpx.HTTPError, ValueError):
            logger.warning("Privy lookup failed for %s", platform_user_id, exc_info=True)
            return None
        if not user:
            return None
        handles = extract_linked_ids(user, exclude=platform_user_id)
        federation_id = user.get("id") or user.get("did")
        if not handles or not federation_id:
            return None
        return LinkedHandles(federation_id=federation_id, handles=handles)
