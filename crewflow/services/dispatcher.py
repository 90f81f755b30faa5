"""
crewflow.services.dispatcher — Channel Senders by Platform Prefix
==================================================================

The notification engine only needs ``send(user_id, text) -> bool``.  The
:class:`ChannelDispatcher` picks a :class:`ChannelSender` by the recipient
id's platform prefix (``telegram_…``, ``farcaster_…``, ``discord_…``) and
turns every failure into ``False``: a failed send is never an exception
for the caller, it is simply "not delivered" (and therefore not logged).

Senders shipped here:

* :class:`TelegramSender` — Bot API ``sendMessage`` to the numeric chat id.
* :class:`FarcasterSender` — mini-app push using the token stored in
  ``notification_tokens``; a token the host reports as gone or invalid is
  disabled.

The Discord DM sender lives with the bot (:mod:`crewflow.bot.core`) because
it needs the running client.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterable
from typing import Protocol

import httpx

from crewflow.constants import detect_platform, strip_platform
from crewflow.database.models import utc_now
from crewflow.database.store import DataStore, StoreError

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
SEND_TIMEOUT = 10.0

FARCASTER_TITLE_LIMIT = 32
FARCASTER_BODY_LIMIT = 128


class ChannelSender(Protocol):
    platform: str

    def send(self, user_id: str, text: str) -> bool: ...


class ChannelDispatcher:
    """Registry of senders keyed by platform."""

    def __init__(self, senders: Iterable[ChannelSender] = ()) -> None:
        self._senders: dict[str, ChannelSender] = {}
        for sender in senders:
            self.register(sender)

    def register(self, sender: ChannelSender) -> None:
        self._senders[sender.platform] = sender
        logger.info("Channel sender registered: %s", sender.platform)

    def supports(self, user_id: str) -> bool:
        return detect_platform(user_id) in self._senders

    def send(self, user_id: str, text: str) -> bool:
        sender = self._senders.get(detect_platform(user_id))
        if sender is None:
            return False
        try:
            return bool(sender.send(user_id, text))
        except Exception:
            logger.exception("Send via %s failed for %s", sender.platform, user_id)
            return False


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------
class TelegramSender:
    platform = "telegram"

    def __init__(
        self,
        token: str,
        *,
        timeout: float = SEND_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"{TELEGRAM_API}/bot{token}", timeout=timeout, transport=transport,
        )

    def send(self, user_id: str, text: str) -> bool:
        try:
            chat_id = int(strip_platform(user_id))
        except ValueError:
            return False
        try:
            resp = self._client.post(
                "/sendMessage",
                json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
            )
        except httpx.HTTPError:
            logger.warning("Telegram send failed for %s", user_id, exc_info=True)
            return False
        if resp.status_code != 200:
            logger.warning("Telegram send to %s → HTTP %d", user_id, resp.status_code)
            return False
        return bool(resp.json().get("ok"))


# ---------------------------------------------------------------------------
# Farcaster mini-app push
# ---------------------------------------------------------------------------
def save_notification_token(store: DataStore, fid: int, token: str, url: str) -> None:
    """Store (or refresh) the push token a Farcaster client handed us."""
    store.upsert(
        "notification_tokens",
        {"fid": fid, "token": token, "url": url, "enabled": True, "updated_at": utc_now()},
        ["fid"],
    )


class FarcasterSender:
    platform = "farcaster"

    def __init__(
        self,
        store: DataStore,
        *,
        app_url: str,
        title: str = "Crewflow",
        timeout: float = SEND_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._store = store
        self._app_url = app_url
        self._title = title[:FARCASTER_TITLE_LIMIT]
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _disable(self, fid: int) -> None:
        try:
            self._store.patch("notification_tokens", {"fid": fid}, {"enabled": False})
        except StoreError:
            logger.warning("Could not disable push token for fid=%d", fid, exc_info=True)

    def send(self, user_id: str, text: str) -> bool:
        try:
            fid = int(strip_platform(user_id))
        except ValueError:
            return False

        rows = self._store.query("notification_tokens", {"fid": fid, "enabled": True}, limit=1)
        if not rows:
            return False
        token = rows[0]

        try:
            resp = self._client.post(
                token["url"],
                json={
                    "notificationId": str(uuid.uuid4()),
                    "title": self._title,
                    "body": text[:FARCASTER_BODY_LIMIT],
                    "targetUrl": self._app_url,
                    "tokens": [token["token"]],
                },
            )
        except httpx.HTTPError:
            logger.warning("Farcaster push failed for fid=%d", fid, exc_info=True)
            return False

        if resp.status_code == 410:
            logger.info("Push token gone for fid=%d, disabling", fid)
            self._disable(fid)
            return False
        if resp.is_error:
            logger.warning("Farcaster push for fid=%d → HTTP %d", fid, resp.status_code)
            return False

        result = (resp.json() or {}).get("result") or {}
        if token["token"] in (result.get("rateLimitedTokens") or []):
            logger.warning("Farcaster push rate limited for fid=%d", fid)
            return False
        if token["token"] in (result.get("invalidTokens") or []):
            logger.info("Push token invalid for fid=%d, disabling", fid)
            self._disable(fid)
            return False
        return True


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_dispatcher(store: DataStore, *, farcaster_app_url: str) -> ChannelDispatcher:
    """Dispatcher with every sender the environment has credentials for."""
    dispatcher = ChannelDispatcher()
    telegram_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if telegram_token:
        dispatcher.register(TelegramSender(telegram_token))
    dispatcher.register(FarcasterSender(store, app_url=farcaster_app_url))
    return dispatcher
