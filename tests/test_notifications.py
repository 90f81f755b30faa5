"""
tests/test_notifications.py — Targeting, dispatch pipeline & dedup ledger
==========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from crewflow.database.models import NotificationType
from crewflow.services import connection_service as flow
from crewflow.services import crew_service as crews
from crewflow.services import notification_service as notify
from crewflow.services.notification_service import SkipReason
from crewflow.services.preference_service import update_preferences

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=UTC)  # 11:00 in America/Denver

ACTOR = "telegram_1"
BOB = "telegram_2"
CAROL = "telegram_3"


def _connect(store, a: str, b: str) -> None:
    code = flow.invite(store, a).data["code"]
    assert flow.accept_invite(store, b, code).ok


def _crew(store, creator: str, name: str, *members: str) -> dict:
    crew = crews.create(store, creator, name).data["crew"]
    for uid in members:
        assert crews.join(store, uid, crew["join_code"]).ok
    return crew


def _log_rows(store, recipient: str | None = None) -> list[dict]:
    filters = {"recipient_id": recipient} if recipient else None
    return store.query("notification_log", filters)


# ===========================================================================
# Shared dispatch path
# ===========================================================================
class TestDispatch:
    def _send(self, store, dispatcher, recipients, now=NOW):
        return notify.dispatch(
            store, dispatcher, NotificationType.CHECKIN, ACTOR, "crew-1:Loft",
            [(uid, "hi") for uid in recipients], now=now,
        )

    def test_sends_and_logs(self, store, dispatcher, sender):
        report = self._send(store, dispatcher, [BOB, CAROL])
        assert report.sent == [BOB, CAROL]
        assert sender.recipients() == [BOB, CAROL]
        row = _log_rows(store, BOB)[0]
        assert row["notification_type"] == "checkin"
        assert row["reference_id"] == "crew-1:Loft"
        assert row["triggered_by"] == ACTOR

    def test_actor_is_skipped(self, store, dispatcher, sender):
        report = self._send(store, dispatcher, [ACTOR, BOB])
        assert report.skipped[ACTOR] == SkipReason.ACTOR
        assert sender.recipients() == [BOB]

    def test_same_tuple_is_logged_at_most_once(self, store, dispatcher, sender):
        self._send(store, dispatcher, [BOB])
        report = self._send(store, dispatcher, [BOB])
        assert report.skipped[BOB] == SkipReason.DUPLICATE
        assert len(_log_rows(store, BOB)) == 1
        assert sender.recipients() == [BOB]

    def test_repeat_within_one_batch_sends_once(self, store, dispatcher, sender):
        report = self._send(store, dispatcher, [BOB, BOB])
        assert report.sent == [BOB]
        assert report.skipped[BOB] == SkipReason.SEEN

    def test_failed_send_is_not_logged_and_can_retry(self, store, dispatcher, sender):
        sender.failing.add(BOB)
        report = self._send(store, dispatcher, [BOB])
        assert report.failed == [BOB]
        assert _log_rows(store) == []

        sender.failing.clear()
        assert self._send(store, dispatcher, [BOB]).sent == [BOB]

    def test_unknown_platform_is_a_failed_send(self, store, dispatcher):
        report = self._send(store, dispatcher, ["discord_42"])
        assert report.failed == ["discord_42"]

    def test_preference_toggle_off(self, store, dispatcher, sender):
        update_preferences(store, BOB, {"notify_crew_checkins": False})
        report = self._send(store, dispatcher, [BOB, CAROL])
        assert report.skipped[BOB] == SkipReason.PREFERENCE
        assert sender.recipients() == [CAROL]

    def test_types_without_toggle_always_pass_preferences(self, store, dispatcher, sender):
        update_preferences(store, BOB, {
            "notify_crew_checkins": False,
            "notify_friend_rsvps": False,
            "notify_crew_rsvps": False,
        })
        report = notify.dispatch(
            store, dispatcher, NotificationType.CREW_JOIN, ACTOR, "crew-1:telegram_1",
            [(BOB, "joined")], now=NOW,
        )
        assert report.sent == [BOB]

    def test_daily_cap_until_next_local_day(self, store, dispatcher, sender):
        update_preferences(store, BOB, {"daily_notification_limit": 1, "timezone": "UTC"})
        notify.log_notification(
            store, BOB, NotificationType.CREW_JOIN, "other", "telegram_9",
            sent_at=NOW - timedelta(hours=2),
        )
        report = self._send(store, dispatcher, [BOB])
        assert report.skipped[BOB] == SkipReason.RATE_LIMIT

        tomorrow = NOW + timedelta(days=1)
        assert self._send(store, dispatcher, [BOB], now=tomorrow).sent == [BOB]

    def test_yesterdays_entries_do_not_count(self, store, dispatcher):
        update_preferences(store, BOB, {"daily_notification_limit": 1, "timezone": "UTC"})
        notify.log_notification(
            store, BOB, NotificationType.CREW_JOIN, "other", "telegram_9",
            sent_at=datetime(2026, 2, 28, 23, 0, tzinfo=UTC),
        )
        assert self._send(store, dispatcher, [BOB]).sent == [BOB]

    @pytest.mark.parametrize("hour,quiet", [(23, True), (0, True), (7, True), (9, False), (12, False), (21, False)])
    def test_quiet_hours_wrap_midnight(self, store, dispatcher, hour, quiet):
        update_preferences(store, BOB, {
            "quiet_hours_enabled": True,
            "quiet_hours_start": 22,
            "quiet_hours_end": 8,
            "timezone": "UTC",
        })
        now = datetime(2026, 3, 1, hour, 30, tzinfo=UTC)
        report = self._send(store, dispatcher, [BOB], now=now)
        if quiet:
            assert report.skipped[BOB] == SkipReason.QUIET_HOURS
        else:
            assert report.sent == [BOB]

    def test_quiet_hours_use_recipient_timezone(self, store, dispatcher):
        update_preferences(store, BOB, {
            "quiet_hours_enabled": True,
            "quiet_hours_start": 22,
            "quiet_hours_end": 8,
            "timezone": "Asia/Tokyo",
        })
        # 18:00 UTC is 03:00 the next morning in Tokyo.
        report = self._send(store, dispatcher, [BOB])
        assert report.skipped[BOB] == SkipReason.QUIET_HOURS

    def test_recipient_who_muted_actor_is_skipped(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        flow.mute(store, BOB, ACTOR)
        report = self._send(store, dispatcher, [BOB])
        assert report.skipped[BOB] == SkipReason.MUTED
        assert sender.sent == []


class TestDeliverFallback:
    def test_falls_back_to_linked_handle(self, store, dispatcher, sender):
        for handle in ("telegram_1", "farcaster_9"):
            store.insert("identities", {
                "canonical_id": "telegram_1",
                "platform": handle.split("_")[0],
                "platform_user_id": handle,
            })
        assert notify.deliver(store, dispatcher, "farcaster_9", "hello") is True
        assert sender.sent == [("telegram_1", "hello")]

    def test_no_linked_handles(self, store, dispatcher):
        assert notify.deliver(store, dispatcher, "farcaster_9", "hello") is False


# ===========================================================================
# Targeting
# ===========================================================================
class TestComputeTargets:
    def test_friends_and_crews(self, store):
        _connect(store, ACTOR, BOB)
        crew = _crew(store, ACTOR, "\U0001f43a Wolves", CAROL)
        targets = notify.compute_targets(store, ACTOR, "evt-1")
        assert targets.friends == [BOB]
        assert len(targets.crews) == 1
        assert targets.crews[0].group_id == crew["id"]
        assert targets.crews[0].group_emoji == "\U0001f43a"
        assert targets.crews[0].user_ids == [CAROL]

    def test_muted_crew_members_excluded(self, store):
        crew = _crew(store, ACTOR, "Wolves", BOB, CAROL)
        crews.mute_crew(store, CAROL, crew["id"])
        assert notify.compute_targets(store, ACTOR, "evt-1").crews[0].user_ids == [BOB]

    def test_actor_muting_crew_drops_it(self, store):
        crew = _crew(store, ACTOR, "Wolves", BOB)
        crews.mute_crew(store, ACTOR, crew["id"])
        assert notify.compute_targets(store, ACTOR, "evt-1").crews == []

    def test_already_notified_are_subtracted(self, store):
        _connect(store, ACTOR, BOB)
        _crew(store, ACTOR, "Wolves", BOB, CAROL)
        notify.log_notification(store, BOB, NotificationType.FRIEND_RSVP, "evt-1", ACTOR)
        targets = notify.compute_targets(store, ACTOR, "evt-1")
        assert targets.friends == []
        assert targets.crews[0].user_ids == [CAROL]
        # A different event or actor is unaffected.
        assert notify.compute_targets(store, ACTOR, "evt-2").friends == [BOB]


# ===========================================================================
# Triggers
# ===========================================================================
class TestRsvpFanout:
    def test_cross_crew_member_hears_once(self, store, dispatcher, sender):
        _crew(store, ACTOR, "Wolves", BOB)
        _crew(store, ACTOR, "Owls", BOB, CAROL)
        report = notify.notify_member_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert sorted(report.sent) == [BOB, CAROL]
        assert sorted(sender.recipients()) == [BOB, CAROL]

    def test_friend_and_crewmate_gets_one_message(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        _crew(store, ACTOR, "Wolves", BOB)
        notify.notify_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert sender.recipients() == [BOB]
        assert len(_log_rows(store, BOB)) == 1

    def test_crew_toggle_off_still_hears_as_friend(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        _crew(store, ACTOR, "Wolves", BOB)
        update_preferences(store, BOB, {"notify_crew_rsvps": False})
        report = notify.notify_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert report.sent == [BOB]
        assert BOB not in report.skipped
        assert sender.sent == [(BOB, "@1 is going to Salsa Night!")]
        assert _log_rows(store, BOB)[0]["notification_type"] == "friend_rsvp"

    def test_both_toggles_off_hears_nothing(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        _crew(store, ACTOR, "Wolves", BOB)
        update_preferences(store, BOB, {"notify_crew_rsvps": False, "notify_friend_rsvps": False})
        report = notify.notify_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert report.skipped[BOB] == SkipReason.PREFERENCE
        assert sender.sent == []

    def test_repeat_rsvp_sends_nothing(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        _crew(store, ACTOR, "Wolves", CAROL)
        notify.notify_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        report = notify.notify_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert report.sent == []
        assert len(sender.sent) == 2

    def test_friend_rsvp_toggle(self, store, dispatcher, sender):
        _connect(store, ACTOR, BOB)
        update_preferences(store, BOB, {"notify_friend_rsvps": False})
        report = notify.notify_friend_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert report.skipped[BOB] == SkipReason.PREFERENCE

    def test_message_is_framed_by_crew(self, store, dispatcher, sender):
        _crew(store, ACTOR, "\U0001f989 Owls", BOB)
        notify.notify_member_rsvp(store, dispatcher, ACTOR, "evt-1", "Salsa Night", now=NOW)
        assert sender.sent[0][1] == "\U0001f989 @1 is going to Salsa Night!"


class TestCheckinFanout:
    def test_muted_friend_gets_nothing_others_do(self, store, dispatcher, sender):
        # U1 mutes U2; U2 checks in; U1 is not notified, U3 is.
        crew = _crew(store, ACTOR, "Wolves", BOB, CAROL)
        _connect(store, ACTOR, BOB)
        flow.mute(store, ACTOR, BOB)

        report = notify.notify_checkin(store, dispatcher, BOB, crew["id"], "The Loft", now=NOW)
        assert report.sent == [CAROL]
        assert _log_rows(store, ACTOR) == []
        assert len(_log_rows(store, CAROL)) == 1

    def test_non_member_cannot_broadcast(self, store, dispatcher, sender):
        crew = _crew(store, ACTOR, "Wolves", BOB)
        report = notify.notify_checkin(store, dispatcher, "telegram_99", crew["id"], "The Loft", now=NOW)
        assert report.sent == []
        assert sender.sent == []

    def test_unknown_crew(self, store, dispatcher):
        assert notify.notify_checkin(store, dispatcher, ACTOR, "missing", "The Loft").sent == []

    def test_crew_join_announcement(self, store, dispatcher, sender):
        crew = _crew(store, ACTOR, "Wolves", BOB)
        report = notify.notify_crew_join(store, dispatcher, BOB, crew["id"], now=NOW)
        assert report.sent == [ACTOR]
        assert "just joined Wolves" in sender.sent[0][1]


class TestLocate:
    def test_once_per_day(self, store, dispatcher, sender):
        crew = _crew(store, ACTOR, "Wolves", BOB)
        first = notify.notify_locate(store, dispatcher, ACTOR, crew["id"], [BOB], now=NOW)
        again = notify.notify_locate(
            store, dispatcher, ACTOR, crew["id"], [BOB], now=NOW + timedelta(hours=1),
        )
        assert first.sent == [BOB]
        assert again.skipped[BOB] == SkipReason.DUPLICATE
        next_day = notify.notify_locate(
            store, dispatcher, ACTOR, crew["id"], [BOB], now=NOW + timedelta(days=1),
        )
        assert next_day.sent == [BOB]

    def test_outsiders_are_ignored(self, store, dispatcher, sender):
        crew = _crew(store, ACTOR, "Wolves", BOB)
        report = notify.notify_locate(store, dispatcher, ACTOR, crew["id"], [BOB, CAROL], now=NOW)
        assert report.sent == [BOB]
