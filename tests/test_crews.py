"""
tests/test_crews.py — Crew lifecycle, join policy and roles
============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from crewflow.constants import DEFAULT_CREW_EMOJI
from crewflow.engine.outcome import OutcomeKind
from crewflow.services import crew_service as crews

CREATOR = "telegram_1"


@pytest.fixture
def crew(store, cfg):
    return crews.create(store, CREATOR, "\U0001f43a Salsa Wolves", cfg=cfg).data["crew"]


class TestCreate:
    def test_leading_emoji_is_split_off(self, crew, store):
        assert crew["emoji"] == "\U0001f43a"
        assert crew["name"] == "Salsa Wolves"
        assert crews.get_role(store, CREATOR, crew["id"]) == "creator"

    def test_default_emoji(self, store):
        out = crews.create(store, CREATOR, "Plain")
        assert out.data["crew"]["emoji"] == DEFAULT_CREW_EMOJI

    def test_link_uses_join_code(self, crew, store, cfg):
        out = crews.create(store, CREATOR, "Second", cfg=cfg)
        assert out.data["link"].endswith(f"start=g_{out.data['crew']['join_code']}")

    @pytest.mark.parametrize("name", ["", "   ", "\U0001f43a", "x" * 101])
    def test_invalid_names(self, store, name):
        assert crews.create(store, CREATOR, name).kind == OutcomeKind.VALIDATION


class TestJoin:
    def test_open_join_then_idempotent(self, crew, store):
        first = crews.join(store, "telegram_2", crew["join_code"])
        assert first.ok and first.data["joined"] is True
        again = crews.join(store, "telegram_2", crew["join_code"])
        assert again.kind == OutcomeKind.CONFLICT
        assert len(crews.member_ids(store, crew["id"])) == 2

    def test_bad_code(self, store):
        assert crews.join(store, "telegram_2", "nope").kind == OutcomeKind.NOT_FOUND

    def test_closed_crew(self, crew, store):
        crews.settings(store, CREATOR, crew["id"], join_mode="closed")
        assert crews.join(store, "telegram_2", crew["join_code"]).kind == OutcomeKind.FORBIDDEN

    def test_expired_temporary_crew(self, store):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        crew = crews.create(
            store, CREATOR, "Pop-up", is_temporary=True, expires_at=now - timedelta(hours=1),
        ).data["crew"]
        out = crews.join(store, "telegram_2", crew["join_code"], now=now)
        assert out.kind == OutcomeKind.FORBIDDEN
        assert "expired" in out.message

    def test_full_crew(self, crew, store):
        store.patch("crews", {"id": crew["id"]}, {"max_members": 1})
        assert crews.join(store, "telegram_2", crew["join_code"]).kind == OutcomeKind.FORBIDDEN


class TestApprovalFlow:
    @pytest.fixture(autouse=True)
    def _approval(self, crew, store):
        crews.settings(store, CREATOR, crew["id"], join_mode="approval")

    def test_join_files_request_once(self, crew, store):
        out = crews.join(store, "telegram_2", crew["join_code"])
        assert out.data["pending"] is True
        assert crews.get_membership(store, "telegram_2", crew["id"]) is None
        assert crews.join(store, "telegram_2", crew["join_code"]).kind == OutcomeKind.CONFLICT
        assert len(store.query("crew_join_requests")) == 1

    def test_approve_adds_member(self, crew, store):
        request_id = crews.join(store, "telegram_2", crew["join_code"]).data["request_id"]
        out = crews.approve(store, CREATOR, request_id)
        assert out.ok and out.data["status"] == "approved"
        assert crews.get_role(store, "telegram_2", crew["id"]) == "member"
        assert crews.approve(store, CREATOR, request_id).kind == OutcomeKind.CONFLICT

    def test_deny_and_permission(self, crew, store):
        request_id = crews.join(store, "telegram_2", crew["join_code"]).data["request_id"]
        assert crews.deny(store, "telegram_3", request_id).kind == OutcomeKind.FORBIDDEN
        out = crews.deny(store, CREATOR, request_id)
        assert out.data["status"] == "denied"
        assert crews.get_membership(store, "telegram_2", crew["id"]) is None

    def test_pending_requests_admin_only(self, crew, store):
        crews.join(store, "telegram_2", crew["join_code"])
        assert len(crews.pending_requests(store, CREATOR, crew["id"]).data["requests"]) == 1
        assert crews.pending_requests(store, "telegram_2", crew["id"]).kind == OutcomeKind.FORBIDDEN

    def test_personal_invite_bypasses_approval_and_credits_inviter(self, crew, store):
        invite = crews.personal_invite(store, CREATOR, crew["id"])
        out = crews.join(store, "telegram_2", invite.data["code"])
        assert out.data["joined"] is True
        assert out.data["attribution"] == {"inviter_id": CREATOR, "group_id": crew["id"]}
        again = crews.personal_invite(store, CREATOR, crew["id"])
        assert again.data["code"] == invite.data["code"]
        assert again.data["uses"] == 1


class TestRoles:
    @pytest.fixture(autouse=True)
    def _members(self, crew, store):
        for uid in ("telegram_2", "telegram_3"):
            crews.join(store, uid, crew["join_code"])

    def test_only_creator_promotes(self, crew, store):
        assert crews.promote(store, "telegram_2", crew["id"], "telegram_3").kind == OutcomeKind.FORBIDDEN
        assert crews.promote(store, CREATOR, crew["id"], "telegram_2").data["role"] == "admin"
        assert crews.promote(store, CREATOR, crew["id"], "telegram_2").kind == OutcomeKind.CONFLICT
        assert crews.demote(store, CREATOR, crew["id"], "telegram_2").data["role"] == "member"

    def test_creator_role_is_fixed(self, crew, store):
        assert crews.demote(store, CREATOR, crew["id"], CREATOR).kind == OutcomeKind.FORBIDDEN
        creators = store.query("crew_members", {"group_id": crew["id"], "role": "creator"})
        assert len(creators) == 1

    def test_remove_requires_outranking(self, crew, store):
        crews.promote(store, CREATOR, crew["id"], "telegram_2")
        assert crews.remove_member(store, "telegram_3", crew["id"], "telegram_2").kind == OutcomeKind.FORBIDDEN
        assert crews.remove_member(store, "telegram_2", crew["id"], CREATOR).kind == OutcomeKind.FORBIDDEN
        assert crews.remove_member(store, "telegram_2", crew["id"], "telegram_3").ok
        assert crews.get_membership(store, "telegram_3", crew["id"]) is None

    def test_leave(self, crew, store):
        assert crews.leave(store, CREATOR, crew["id"]).kind == OutcomeKind.FORBIDDEN
        assert crews.leave(store, "telegram_2", crew["id"]).ok
        assert crews.leave(store, "telegram_2", crew["id"]).kind == OutcomeKind.CONFLICT


class TestSettingsAndListings:
    def test_unchanged_settings_are_noop(self, crew, store):
        out = crews.settings(store, CREATOR, crew["id"], is_public=False, join_mode="open")
        assert out.kind == OutcomeKind.CONFLICT

    def test_invalid_join_mode(self, crew, store):
        out = crews.settings(store, CREATOR, crew["id"], join_mode="secret")
        assert out.kind == OutcomeKind.VALIDATION

    def test_browse_public(self, crew, store):
        assert crews.browse_public(store).data["crews"] == []
        crews.settings(store, CREATOR, crew["id"], is_public=True)
        assert [c["id"] for c in crews.browse_public(store).data["crews"]] == [crew["id"]]

    def test_mute_crew_toggles(self, crew, store):
        assert crews.mute_crew(store, CREATOR, crew["id"]).data["muted"] is True
        assert crews.member_ids(store, crew["id"], include_muted=False) == []
        assert crews.mute_crew(store, CREATOR, crew["id"]).data["muted"] is False

    def test_find_user_crew(self, crew, store):
        assert crews.find_user_crew(store, CREATOR, "salsa wolves")["group_id"] == crew["id"]
        assert crews.find_user_crew(store, CREATOR, crew["id"][:8])["group_id"] == crew["id"]
        assert crews.find_user_crew(store, "telegram_9", crew["id"]) is None

    def test_members_listing(self, crew, store):
        crews.join(store, "telegram_2", crew["join_code"])
        out = crews.crew_members(store, "telegram_2", crew["id"])
        assert [m["user_id"] for m in out.data["members"]] == [CREATOR, "telegram_2"]

    def test_members_hidden_from_outsiders(self, crew, store):
        out = crews.crew_members(store, "telegram_9", crew["id"])
        assert out.kind == OutcomeKind.FORBIDDEN
        assert "members" not in out.data

    def test_list_crews_and_admins(self, crew, store):
        crews.join(store, "telegram_2", crew["join_code"])
        crews.join(store, "telegram_3", crew["join_code"])
        crews.promote(store, CREATOR, crew["id"], "telegram_2")

        listed = crews.list_crews(store, "telegram_3").data["crews"]
        assert [(c["group_id"], c["role"]) for c in listed] == [(crew["id"], "member")]
        assert sorted(crews.crew_admin_ids(store, crew["id"])) == [CREATOR, "telegram_2"]

    def test_list_crews_empty(self, store):
        out = crews.list_crews(store, "telegram_9")
        assert out.data["crews"] == []
        assert "None yet" in out.message
