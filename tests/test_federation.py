"""
tests/test_federation.py — Privy linked-account lookup
=======================================================
"""

from __future__ import annotations

import json

import httpx

from crewflow.services.federation import PrivyFederation, extract_linked_ids

PRIVY_USER = {
    "id": "did:privy:abc",
    "linked_accounts": [
        {"type": "telegram", "telegram_user_id": "111"},
        {"type": "farcaster", "fid": 222},
        {"type": "email", "address": "a@example.com"},
    ],
}


def _federation(handler) -> PrivyFederation:
    return PrivyFederation("app-id", "app-secret", transport=httpx.MockTransport(handler))


class TestExtractLinkedIds:
    def test_collects_platform_handles(self):
        assert extract_linked_ids(PRIVY_USER) == [
            "telegram_111", "farcaster_222", "web_did:privy:abc",
        ]

    def test_excludes_the_caller(self):
        assert "telegram_111" not in extract_linked_ids(PRIVY_USER, exclude="telegram_111")


class TestPrivyFederation:
    def test_search_by_telegram_subject(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [PRIVY_USER]})

        linked = _federation(handler).lookup_linked_handles("telegram_111")

        assert linked.federation_id == "did:privy:abc"
        assert linked.handles == ["farcaster_222", "web_did:privy:abc"]
        assert seen[0].url.path == "/api/v1/users/search"
        assert json.loads(seen[0].content) == {"filter": {"telegram": {"subject": "111"}}, "limit": 1}
        assert seen[0].headers["privy-app-id"] == "app-id"

    def test_web_handle_fetches_user_directly(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/api/v1/users/did:privy:abc"
            return httpx.Response(200, json=PRIVY_USER)

        linked = _federation(handler).lookup_linked_handles("web_did:privy:abc")
        assert linked.handles == ["telegram_111", "farcaster_222"]

    def test_unknown_user_returns_none(self):
        linked = _federation(lambda r: httpx.Response(200, json={"data": []})).lookup_linked_handles(
            "farcaster_9",
        )
        assert linked is None

    def test_http_error_degrades_to_none(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        assert _federation(handler).lookup_linked_handles("telegram_111") is None

    def test_discord_is_not_federated(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert _federation(handler).lookup_linked_handles("discord_5") is None

    def test_from_env_requires_both_credentials(self, monkeypatch):
        monkeypatch.delenv("PRIVY_APP_SECRET", raising=False)
        monkeypatch.setenv("PRIVY_APP_ID", "app")
        assert PrivyFederation.from_env() is None
