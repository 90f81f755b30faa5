"""
tests/test_attendance.py — RSVPs, "who's going" & per-event reminders
======================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from crewflow.engine.outcome import OutcomeKind
from crewflow.services import attendance_service as attendance
from crewflow.services import connection_service as flow
from crewflow.services import crew_service as crews
from crewflow.services.preference_service import update_preferences

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=UTC)
U1, U2, U3 = "telegram_1", "telegram_2", "telegram_3"


def _connect(store, a: str, b: str) -> None:
    code = flow.invite(store, a).data["code"]
    flow.accept_invite(store, b, code)


class TestRsvp:
    def test_upsert_keyed_on_user_and_event(self, store):
        attendance.rsvp(store, U1, "evt-1", "maybe", event_name="Salsa Night")
        out = attendance.rsvp(store, U1, "evt-1", "going")
        rows = store.query("event_attendance", {"user_id": U1})
        assert len(rows) == 1
        assert rows[0]["status"] == "going"
        # Metadata from the first RSVP survives a bare re-RSVP.
        assert rows[0]["event_name"] == "Salsa Night"
        assert out.message == "You're going to Salsa Night!"

    @pytest.mark.parametrize("user_id,event_id,status", [
        ("", "evt-1", "going"),
        (U1, "", "going"),
        (U1, "evt-1", "interested"),
    ])
    def test_validation(self, store, user_id, event_id, status):
        assert attendance.rsvp(store, user_id, event_id, status).kind == OutcomeKind.VALIDATION

    def test_dated_rsvp_schedules_default_reminders(self, store):
        update_preferences(store, U1, {"reminder_defaults": [60, 15]})
        out = attendance.rsvp(store, U1, "evt-1", event_date=NOW + timedelta(days=1))
        assert out.data["reminders"] == [15, 60]
        assert attendance.get_reminders(store, U1, "evt-1").data["minutes"] == [15, 60]

    def test_undated_rsvp_has_no_reminders(self, store):
        assert attendance.rsvp(store, U1, "evt-1").data["reminders"] == []

    def test_cancel_removes_rsvp_and_reminders(self, store):
        attendance.rsvp(store, U1, "evt-1", event_date=NOW + timedelta(days=1))
        assert attendance.cancel(store, U1, "evt-1").ok
        assert store.query("event_attendance") == []
        assert store.query("event_reminders") == []
        # Cancelling again is still a success.
        assert attendance.cancel(store, U1, "evt-1").ok


class TestWhoIsGoing:
    def test_crew_scenario(self, store):
        crew = crews.create(store, U1, "\U0001f43a Wolves").data["crew"]
        assert crew["emoji"] == "\U0001f43a"
        crews.join(store, U2, crew["join_code"])
        attendance.rsvp(store, U2, "evt-42", "going")
        out = attendance.who_is_going(store, U1, "evt-42")
        assert out.data["going"] == [U2]
        assert out.data["maybe"] == []

    def test_partitions_going_and_maybe(self, store):
        _connect(store, U1, U2)
        _connect(store, U1, U3)
        attendance.rsvp(store, U2, "evt-1", "going")
        attendance.rsvp(store, U3, "evt-1", "maybe")
        attendance.rsvp(store, U1, "evt-1", "going")
        out = attendance.flow_attendance(store, U1, "evt-1")
        assert out.data == {"going": [U2], "maybe": [U3]}

    def test_strangers_and_muted_friends_are_hidden(self, store):
        _connect(store, U1, U2)
        flow.mute(store, U1, U2)
        attendance.rsvp(store, U2, "evt-1")
        attendance.rsvp(store, U3, "evt-1")
        out = attendance.who_is_going(store, U1, "evt-1")
        assert out.data["going"] == []
        assert "Nobody" in out.message

    def test_muted_crew_is_not_part_of_flow(self, store):
        crew = crews.create(store, U1, "Wolves").data["crew"]
        crews.join(store, U2, crew["join_code"])
        crews.mute_crew(store, U1, crew["id"])
        attendance.rsvp(store, U2, "evt-1")
        assert attendance.flow_member_ids(store, U1) == set()


class TestUpcoming:
    def test_groups_future_events(self, store):
        _connect(store, U1, U2)
        _connect(store, U1, U3)
        soon = datetime.now(UTC) + timedelta(days=1)
        later = datetime.now(UTC) + timedelta(days=2)
        attendance.rsvp(store, U2, "evt-a", "going", event_name="A", event_date=soon)
        attendance.rsvp(store, U3, "evt-a", "maybe", event_name="A", event_date=soon)
        attendance.rsvp(store, U2, "evt-b", "going", event_name="B", event_date=later)
        attendance.rsvp(store, U3, "evt-old", "going", event_date=datetime.now(UTC) - timedelta(days=1))

        events = attendance.upcoming_for_flow(store, U1).data["events"]
        assert [e["event_id"] for e in events] == ["evt-a", "evt-b"]
        assert events[0]["going"] == [U2]
        assert events[0]["maybe"] == [U3]

    def test_my_schedule(self, store):
        attendance.rsvp(store, U1, "evt-a", event_name="A", event_venue="The Loft",
                        event_date=datetime.now(UTC) + timedelta(hours=3))
        out = attendance.my_schedule(store, U1)
        assert [r["event_id"] for r in out.data["schedule"]] == ["evt-a"]
        assert "The Loft" in out.message


class TestReminders:
    def test_set_replaces_unsent(self, store):
        attendance.set_reminders(store, U1, "evt-1", [30, 10, 30])
        out = attendance.set_reminders(store, U1, "evt-1", [5])
        assert out.data["minutes"] == [5]
        assert attendance.get_reminders(store, U1, "evt-1").data["minutes"] == [5]

    def test_out_of_range_offsets_dropped(self, store):
        out = attendance.set_reminders(store, U1, "evt-1", [0, -5, 24 * 60 + 1, 45])
        assert out.data["minutes"] == [45]

    def test_clear(self, store):
        attendance.set_reminders(store, U1, "evt-1", [30])
        assert attendance.clear_reminders(store, U1, "evt-1").data["minutes"] == []
        assert store.query("event_reminders") == []
