"""
tests/test_store.py — SqlStore Contract Tests
==============================================
Runs the five-call data-store contract against in-memory SQLite.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from crewflow.database.store import (
    DuplicateRowError,
    StoreError,
    as_utc,
    gt,
    gte,
    in_,
    lt,
    neq,
)


class TestQueryFilters:
    @pytest.fixture(autouse=True)
    def _rows(self, store):
        for uid, fid, status in [
            ("telegram_1", "telegram_2", "active"),
            ("telegram_1", "telegram_3", "muted"),
            ("telegram_2", "telegram_1", "active"),
        ]:
            store.insert("connections", {"user_id": uid, "friend_id": fid, "status": status})
        self.store = store

    def test_plain_value_is_equality(self):
        rows = self.store.query("connections", {"user_id": "telegram_1"})
        assert {r["friend_id"] for r in rows} == {"telegram_2", "telegram_3"}

    def test_none_is_null(self):
        rows = self.store.query("connections", {"accepted_at": None})
        assert len(rows) == 3

    def test_neq_and_in(self):
        rows = self.store.query("connections", {"status": neq("active")})
        assert [r["friend_id"] for r in rows] == ["telegram_3"]
        rows = self.store.query("connections", {"friend_id": in_(["telegram_1", "telegram_3"])})
        assert len(rows) == 2

    def test_columns_order_and_limit(self):
        rows = self.store.query(
            "connections", columns=["friend_id"], order_by="friend_id", descending=True, limit=2,
        )
        assert rows == [{"friend_id": "telegram_3"}, {"friend_id": "telegram_2"}]

    def test_unknown_table_and_column_raise(self):
        with pytest.raises(StoreError):
            self.store.query("nope")
        with pytest.raises(StoreError):
            self.store.query("connections", {"nope": 1})


class TestWrites:
    def test_insert_returns_row_with_defaults(self, store):
        row = store.insert("crews", {
            "name": "Wolves", "emoji": "\U0001f43a", "created_by": "telegram_1", "join_code": "ABC123",
        })
        assert len(row["id"]) == 36
        assert row["join_mode"] == "open"
        assert row["max_members"] == 50
        assert row["created_at"].tzinfo is not None

    def test_duplicate_insert_raises_duplicate_row_error(self, store):
        store.insert("flow_invite_codes", {"user_id": "telegram_1", "code": "AAAA1111"})
        with pytest.raises(DuplicateRowError):
            store.insert("flow_invite_codes", {"user_id": "telegram_2", "code": "AAAA1111"})

    def test_upsert_merges_on_conflict(self, store):
        store.upsert(
            "event_attendance",
            {"user_id": "telegram_1", "event_id": "evt-1", "status": "maybe", "event_name": "Salsa"},
            ["user_id", "event_id"],
        )
        row = store.upsert(
            "event_attendance",
            {"user_id": "telegram_1", "event_id": "evt-1", "status": "going"},
            ["user_id", "event_id"],
        )
        assert row["status"] == "going"
        assert row["event_name"] == "Salsa"
        assert len(store.query("event_attendance")) == 1

    def test_upsert_ignore_duplicates_keeps_first(self, store):
        key = ["recipient_id", "notification_type", "reference_id", "triggered_by"]
        first = {
            "recipient_id": "telegram_2", "notification_type": "checkin",
            "reference_id": "c:venue", "triggered_by": "telegram_1",
        }
        assert store.upsert("notification_log", first, key, ignore_duplicates=True) is not None
        assert store.upsert("notification_log", first, key, ignore_duplicates=True) is None
        assert len(store.query("notification_log")) == 1

    def test_patch_and_delete_return_counts(self, store):
        store.insert("connections", {"user_id": "a", "friend_id": "b", "status": "active"})
        store.insert("connections", {"user_id": "a", "friend_id": "c", "status": "active"})
        assert store.patch("connections", {"user_id": "a"}, {"status": "muted"}) == 2
        assert store.delete("connections", {"friend_id": "b"}) == 1
        assert store.delete("connections", {"friend_id": "b"}) == 0

    def test_unfiltered_patch_and_delete_refused(self, store):
        with pytest.raises(StoreError):
            store.patch("connections", {}, {"status": "muted"})
        with pytest.raises(StoreError):
            store.delete("connections", {})


class TestTimestamps:
    def test_range_predicates_on_datetimes(self, store):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        for minutes in (-30, 30, 90):
            store.insert("crew_checkins", {
                "group_id": "g", "user_id": f"u{minutes}", "venue_name": "Loft",
                "created_at": now, "expires_at": now + timedelta(minutes=minutes),
            })
        assert len(store.query("crew_checkins", {"expires_at": gt(now)})) == 2
        assert len(store.query("crew_checkins", {"expires_at": lt(now)})) == 1
        assert len(store.query("crew_checkins", {"expires_at": gte(now + timedelta(minutes=90))})) == 1

    def test_as_utc(self):
        naive = datetime(2026, 1, 1, 8, 0)
        assert as_utc(naive).tzinfo == UTC
        assert as_utc(None) is None
