"""
tests/test_checkins.py — Crew check-ins, locations & locate pings
==================================================================
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

from crewflow.engine.outcome import OutcomeKind
from crewflow.services import checkin_service as checkins
from crewflow.services import crew_service as crews

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=UTC)
U1, U2, U3 = "telegram_1", "telegram_2", "telegram_3"


def _crew(store) -> dict:
    crew = crews.create(store, U1, "Wolves").data["crew"]
    for uid in (U2, U3):
        crews.join(store, uid, crew["join_code"])
    return crew


class TestCheckin:
    def test_records_with_ttl(self, store, cfg):
        crew = _crew(store)
        out = checkins.checkin(store, U2, crew["id"], " The Loft ", cfg=replace(cfg, checkin_ttl_minutes=60), now=NOW)
        assert out.ok
        row = out.data["checkin"]
        assert row["venue_name"] == "The Loft"
        assert row["expires_at"] == NOW + timedelta(minutes=60)

    def test_requires_membership(self, store):
        crew = _crew(store)
        assert checkins.checkin(store, "telegram_9", crew["id"], "Loft").kind == OutcomeKind.FORBIDDEN

    def test_requires_venue(self, store):
        crew = _crew(store)
        assert checkins.checkin(store, U2, crew["id"], "   ").kind == OutcomeKind.VALIDATION

    def test_unknown_crew(self, store):
        assert checkins.checkin(store, U2, "missing", "Loft").kind == OutcomeKind.NOT_FOUND


class TestLocations:
    def test_latest_unexpired_per_person(self, store):
        crew = _crew(store)
        checkins.checkin(store, U2, crew["id"], "Bar A", now=NOW - timedelta(minutes=30))
        checkins.checkin(store, U2, crew["id"], "Bar B", now=NOW - timedelta(minutes=5))
        checkins.checkin(store, U3, crew["id"], "Old Spot", now=NOW - timedelta(days=1))
        out = checkins.crew_locations(store, U1, crew["id"], now=NOW)
        assert [(loc["user_id"], loc["venue_name"]) for loc in out.data["locations"]] == [(U2, "Bar B")]

    def test_outsider_cannot_look(self, store):
        crew = _crew(store)
        assert checkins.crew_locations(store, "telegram_9", crew["id"]).kind == OutcomeKind.FORBIDDEN


class TestLocate:
    def test_pings_only_members_without_checkin(self, store, dispatcher, sender):
        crew = _crew(store)
        checkins.checkin(store, U2, crew["id"], "The Loft", now=NOW)
        out = checkins.locate(store, dispatcher, U1, crew["id"], now=NOW)
        assert out.data["missing"] == [U3]
        assert sender.recipients() == [U3]
        assert "Where are you?" in sender.sent[0][1]

    def test_everyone_checked_in(self, store, dispatcher, sender):
        crew = _crew(store)
        for uid in (U2, U3):
            checkins.checkin(store, uid, crew["id"], "The Loft", now=NOW)
        out = checkins.locate(store, dispatcher, U1, crew["id"], now=NOW)
        assert out.kind == OutcomeKind.CONFLICT
        assert sender.sent == []

    def test_outsider_cannot_ping(self, store, dispatcher):
        crew = _crew(store)
        assert checkins.locate(store, dispatcher, "telegram_9", crew["id"]).kind == OutcomeKind.FORBIDDEN
