"""
tests/test_dispatcher.py — Channel senders & platform-prefix routing
=====================================================================
"""

from __future__ import annotations

import json

import httpx
import pytest

from crewflow.constants import detect_platform, display_handle, strip_platform
from crewflow.services.dispatcher import (
    ChannelDispatcher,
    FarcasterSender,
    TelegramSender,
    save_notification_token,
)


class _Exploding:
    platform = "telegram"

    def send(self, user_id: str, text: str) -> bool:
        raise RuntimeError("boom")


class TestPlatformIds:
    @pytest.mark.parametrize("user_id,platform,raw", [
        ("telegram_123", "telegram", "123"),
        ("farcaster_9", "farcaster", "9"),
        ("discord_42", "discord", "42"),
        ("web_did:privy:abc", "web", "did:privy:abc"),
        ("someone", "web", "someone"),
    ])
    def test_detect_and_strip(self, user_id, platform, raw):
        assert detect_platform(user_id) == platform
        assert strip_platform(user_id) == raw

    def test_display_handle(self):
        assert display_handle("telegram_alice") == "@alice"
        assert display_handle("web_x") == "web_x"


class TestChannelDispatcher:
    def test_routes_by_prefix(self, dispatcher, sender):
        assert dispatcher.supports("telegram_1")
        assert not dispatcher.supports("farcaster_1")
        assert dispatcher.send("telegram_1", "hi") is True
        assert dispatcher.send("farcaster_1", "hi") is False
        assert sender.sent == [("telegram_1", "hi")]

    def test_sender_exception_is_false(self):
        dispatcher = ChannelDispatcher([_Exploding()])
        assert dispatcher.send("telegram_1", "hi") is False


class TestTelegramSender:
    def _sender(self, handler) -> TelegramSender:
        return TelegramSender("TOKEN", transport=httpx.MockTransport(handler))

    def test_posts_send_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        assert self._sender(handler).send("telegram_555", "hello") is True
        assert seen[0].url.path == "/botTOKEN/sendMessage"
        body = json.loads(seen[0].content)
        assert body["chat_id"] == 555
        assert body["text"] == "hello"

    def test_non_numeric_chat_id(self):
        sender = self._sender(lambda r: httpx.Response(200, json={"ok": True}))
        assert sender.send("telegram_alice", "hello") is False

    def test_http_error_status(self):
        sender = self._sender(lambda r: httpx.Response(403, json={"ok": False}))
        assert sender.send("telegram_555", "hello") is False

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        assert self._sender(handler).send("telegram_555", "hello") is False


class TestFarcasterSender:
    URL = "https://client.example/notify"

    def _sender(self, store, handler) -> FarcasterSender:
        return FarcasterSender(
            store, app_url="https://app.example", transport=httpx.MockTransport(handler),
        )

    def _token(self, store) -> None:
        save_notification_token(store, 9, "tok-9", self.URL)

    def test_sends_with_stored_token(self, store):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"result": {"successfulTokens": ["tok-9"]}})

        self._token(store)
        assert self._sender(store, handler).send("farcaster_9", "x" * 200) is True
        assert seen[0]["tokens"] == ["tok-9"]
        assert seen[0]["targetUrl"] == "https://app.example"
        assert len(seen[0]["body"]) == 128

    def test_no_token(self, store):
        sender = self._sender(store, lambda r: httpx.Response(200, json={}))
        assert sender.send("farcaster_9", "hi") is False

    def test_gone_token_is_disabled(self, store):
        self._token(store)
        sender = self._sender(store, lambda r: httpx.Response(410))
        assert sender.send("farcaster_9", "hi") is False
        assert store.query("notification_tokens")[0]["enabled"] is False
        # A disabled token is never used again.
        assert sender.send("farcaster_9", "hi") is False

    def test_invalid_token_is_disabled(self, store):
        self._token(store)
        sender = self._sender(
            store, lambda r: httpx.Response(200, json={"result": {"invalidTokens": ["tok-9"]}}),
        )
        assert sender.send("farcaster_9", "hi") is False
        assert store.query("notification_tokens")[0]["enabled"] is False

    def test_rate_limited_keeps_token(self, store):
        self._token(store)
        sender = self._sender(
            store, lambda r: httpx.Response(200, json={"result": {"rateLimitedTokens": ["tok-9"]}}),
        )
        assert sender.send("farcaster_9", "hi") is False
        assert store.query("notification_tokens")[0]["enabled"] is True
