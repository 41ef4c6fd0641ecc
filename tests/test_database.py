"""
Tests for database.py - SQLite persistence.
"""

import sqlite3
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from golf_edge.database import Database, DatabaseError
from golf_edge.models import (
    BetOutcome, DataQualityIssue, FieldStatus, Market, OddsMarket,
    Player, RunMode, RunStatus, Settlement, Severity, Tier, Tour,
)

from conftest import NOW, ODDS_TIME, make_event, make_field, make_offers, make_rec, make_run


class TestDatabaseInit:
    """Tests for database initialization."""

    def test_init_creates_tables(self, temp_db_path):
        """Test that initialization creates all required tables."""
        Database(db_path=temp_db_path)

        conn = sqlite3.connect(temp_db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}
        conn.close()

        for table in ("tour_events", "players", "field_entries", "odds_markets", "odds_offers",
                      "runs", "bet_recommendations", "data_issues", "live_baselines",
                      "settlements", "cache"):
            assert table in tables

    def test_init_is_repeatable(self, temp_db_path):
        Database(db_path=temp_db_path)
        db = Database(db_path=temp_db_path)
        assert db.table_counts()["runs"] == 0

    def test_default_path_from_config(self, temp_db_path):
        with patch('golf_edge.database.get_config') as mock_config:
            mock_config.return_value.db_path = temp_db_path
            db = Database()
        assert db.db_path == temp_db_path

    @pytest.mark.parametrize("message,expected", [
        ("attempt to write a readonly database", "Permission denied"),
        ("database or disk is full", "Disk full"),
        ("unable to open database file", "Cannot open database"),
        ("no such table: nowhere", "Database error"),
    ])
    def test_init_errors_are_described(self, temp_db_path, message, expected):
        """Test that sqlite failures surface as DatabaseError with a clear message."""
        with patch.object(Database, '_init_db', side_effect=sqlite3.OperationalError(message)):
            with pytest.raises(DatabaseError) as exc_info:
                Database(db_path=temp_db_path)
        assert expected in str(exc_info.value)


class TestEventOperations:
    """Tests for tour event and field persistence."""

    def test_upsert_event_is_idempotent(self, db):
        first = db.upsert_tour_event(make_event())
        second = db.upsert_tour_event(make_event(name="John Deere Classic presented by X"))

        assert first.id is not None
        assert second.id == first.id
        assert db.table_counts()["tour_events"] == 1
        assert db.get_tour_event(first.id).name == "John Deere Classic presented by X"

    def test_same_external_id_on_two_tours(self, db):
        pga = db.upsert_tour_event(make_event(Tour.PGA, external_id="7"))
        euro = db.upsert_tour_event(make_event(Tour.DPWT, name="Scottish Open", external_id="7"))
        assert pga.id != euro.id
        assert db.get_tour_event(euro.id).name == "Scottish Open"
        assert db.get_tour_event(pga.id).tour == Tour.PGA

    def test_event_round_trip(self, db):
        event = db.upsert_tour_event(make_event(Tour.LIV, name="LIV Andalucia", external_id="L1",
                                                start=date(2026, 7, 17)))
        loaded = db.get_tour_event(event.id)
        assert loaded.tour == Tour.LIV
        assert loaded.start_date == date(2026, 7, 17)
        assert loaded.end_date == date(2026, 7, 19)

    def test_field_upsert_requires_saved_event(self, db):
        event = make_event()
        with pytest.raises(DatabaseError):
            db.upsert_field_entries(event, make_field(event, ["Scottie Scheffler"]))

    def test_field_upsert_refreshes_status(self, db):
        event = db.upsert_tour_event(make_event())
        entries = make_field(event, ["Scottie Scheffler", "Ludvig Åberg"])
        assert db.upsert_field_entries(event, entries) == 2

        withdrawn = make_field(event, ["Ludvig Åberg"])
        withdrawn[0].status = FieldStatus.WITHDRAWN
        db.upsert_field_entries(event, withdrawn)

        conn = sqlite3.connect(db.db_path)
        field = dict(conn.execute("SELECT canonical_name, status FROM field_entries WHERE event_id = ?",
                                  (event.id,)).fetchall())
        conn.close()
        assert field == {"ludvig aberg": FieldStatus.WITHDRAWN.value, "scottie scheffler": "active"}
        assert all(e.event_id == event.id for e in entries)
        assert db.table_counts()["players"] == 2

    def test_upsert_player_merges_aliases(self, db):
        db.upsert_player(Player(canonical_name="tom kim", display_name="Tom Kim", aliases=["joohyung kim"]))
        player = db.upsert_player(Player(canonical_name="tom kim", display_name="Tom Kim",
                                         aliases=["joohyung kim", "kim joohyung"]))
        assert player.aliases == ["joohyung kim", "kim joohyung"]
        assert len(db.get_players()) == 1


class TestOddsOperations:
    """Tests for append-only odds snapshots."""

    def test_snapshots_append(self, db):
        event = db.upsert_tour_event(make_event())
        prices = {"Scottie Scheffler": {"bet365": 5.5, "draftkings": 6.0}}
        market = OddsMarket(market=Market.WIN, offers=make_offers(prices))

        assert db.save_odds_market(event.id, market) == 2
        # The same snapshot again writes nothing
        assert db.save_odds_market(event.id, market) == 0

        later = OddsMarket(market=Market.WIN, offers=make_offers(prices, ODDS_TIME + timedelta(hours=1)))
        assert db.save_odds_market(event.id, later) == 2

        counts = db.table_counts()
        assert counts["odds_markets"] == 1
        assert counts["odds_offers"] == 4

    def test_matchup_offers_keep_opponent(self, db):
        event = db.upsert_tour_event(make_event())
        offers = make_offers({"Scottie Scheffler": {"bet365": 1.8}})
        offers[0].opponent = "Rory McIlroy"
        db.save_odds_market(event.id, OddsMarket(market=Market.TOURNAMENT_MATCHUP, offers=offers))

        conn = sqlite3.connect(db.db_path)
        row = conn.execute("SELECT selection_key, opponent, fetched_at FROM odds_offers").fetchone()
        conn.close()
        assert row == ("scottie scheffler|vs|rory mcilroy", "Rory McIlroy", ODDS_TIME.isoformat())


class TestRunOperations:
    """Tests for runs and recommendations."""

    def test_save_and_get_run(self, db):
        db.save_run(make_run())
        run = db.get_run("run_2026-07-14_100000")
        assert run.status == RunStatus.RUNNING
        assert run.mode == RunMode.CURRENT_WEEK
        assert run.window_start == datetime(2026, 7, 13, tzinfo=timezone.utc)

    def test_save_run_results_updates_status(self, db):
        event = db.upsert_tour_event(make_event())
        run = make_run()
        db.save_run(run)

        run.status = RunStatus.COMPLETED
        run.recommendations_created = 1
        run.finished_at = NOW + timedelta(minutes=5)
        issue = DataQualityIssue(step="odds", message="stale", code="ODDS_STALE", run_key=run.run_key)
        db.save_run_results(run, [make_rec(run.run_key, event)], [issue])

        stored = db.get_run(run.run_key)
        assert stored.status == RunStatus.COMPLETED
        assert stored.recommendations_created == 1
        assert db.get_latest_completed_run().run_key == run.run_key
        assert db.get_issues(run_key=run.run_key)[0].code == "ODDS_STALE"

    def test_save_run_results_is_atomic(self, db):
        """A failed recommendation write leaves the run untouched."""
        event = db.upsert_tour_event(make_event())
        run = make_run()
        db.save_run(run)
        run.status = RunStatus.COMPLETED
        bad = make_rec(run.run_key, event)
        bad.model_probability = None  # NOT NULL column

        with pytest.raises(DatabaseError):
            db.save_run_results(run, [make_rec(run.run_key, event, selection="Rory McIlroy"), bad], [])

        assert db.get_run(run.run_key).status == RunStatus.RUNNING
        assert db.list_recommendations(run_key=run.run_key) == []

    def test_recommendations_are_immutable(self, db):
        event = db.upsert_tour_event(make_event())
        run = make_run(status=RunStatus.COMPLETED, finished=NOW)
        db.save_run_results(run, [make_rec(run.run_key, event)], [])

        retry = make_rec(run.run_key, event, odds=9.0)
        db.save_run_results(run, [retry], [])

        recs = db.list_recommendations(run_key=run.run_key)
        assert len(recs) == 1
        assert recs[0].odds_decimal == 5.5
        assert retry.id is None

    def test_recommendation_round_trip(self, db):
        event = db.upsert_tour_event(make_event())
        run = make_run(status=RunStatus.COMPLETED, finished=NOW)
        rec = make_rec(run.run_key, event, market=Market.TOURNAMENT_MATCHUP, odds=1.9,
                       opponent="Rory McIlroy")
        db.save_run_results(run, [rec], [])

        loaded = db.list_recommendations(run_key=run.run_key)[0]
        assert loaded.to_dict() == rec.to_dict()
        assert loaded.id == rec.id

    def test_list_recommendations_filters(self, db):
        event = db.upsert_tour_event(make_event())
        run = make_run(status=RunStatus.COMPLETED, finished=NOW)
        db.save_run_results(run, [
            make_rec(run.run_key, event),
            make_rec(run.run_key, event, selection="Si Woo Kim", odds=81.0, tier=Tier.LONG_SHOTS),
        ], [])

        assert len(db.list_recommendations(tier=Tier.LONG_SHOTS)) == 1
        assert len(db.list_recommendations(tour=Tour.PGA)) == 2
        assert db.list_recommendations(tour=Tour.LIV) == []

    def test_tracked_events_need_completed_run(self, db):
        event = db.upsert_tour_event(make_event())
        failed = make_run("run_failed", status=RunStatus.FAILED, finished=NOW)
        db.save_run_results(failed, [make_rec(failed.run_key, event)], [])
        assert db.get_tracked_events(date(2026, 7, 14)) == []

        done = make_run("run_done", status=RunStatus.COMPLETED, finished=NOW)
        db.save_run_results(done, [make_rec(done.run_key, event),
                                   make_rec(done.run_key, event, market=Market.TOP_10, odds=2.2)], [])

        tracked = db.get_tracked_events(date(2026, 7, 14))
        assert [(e.id, count) for e, count in tracked] == [(event.id, 2)]
        assert len(db.get_tracked_recommendations(event.id)) == 2
        # Finished events drop out
        assert db.get_tracked_events(date(2026, 7, 20)) == []

    def test_get_issues_filters_by_severity(self, db):
        db.save_run_results(make_run(status=RunStatus.FAILED, finished=NOW), [], [
            DataQualityIssue(step="a", message="x", severity=Severity.ERROR, evidence={"n": 1}),
            DataQualityIssue(step="b", message="y", severity=Severity.INFO),
        ])
        errors = db.get_issues(severity=Severity.ERROR)
        assert len(errors) == 1
        assert errors[0].evidence == {"n": 1}


class TestLiveOperations:
    """Tests for baselines and settlements."""

    def _saved_rec(self, db):
        event = db.upsert_tour_event(make_event())
        run = make_run(status=RunStatus.COMPLETED, finished=NOW)
        rec = make_rec(run.run_key, event)
        db.save_run_results(run, [rec], [])
        return event, rec

    def test_baseline_never_overwritten(self, db):
        _, rec = self._saved_rec(db)
        first = db.save_baseline(rec.id, 7.0, "bet365", "first_live_snapshot")
        second = db.save_baseline(rec.id, 4.0, "skybet", "first_live_snapshot")

        assert second["odds_decimal"] == 7.0
        assert second["bookmaker"] == "bet365"
        assert first["captured_at"] == second["captured_at"]
        assert db.get_baseline(rec.id + 100) is None

    def test_settlement_upsert(self, db):
        event, _ = self._saved_rec(db)
        db.save_settlement(Settlement(event.id, "scottie scheffler", Market.WIN, BetOutcome.PENDING))
        db.save_settlement(Settlement(event.id, "scottie scheffler", Market.WIN, BetOutcome.WON))

        settlements = db.get_settlements(event.id)
        assert len(settlements) == 1
        assert settlements[("scottie scheffler", Market.WIN, "")].outcome == BetOutcome.WON

    def test_matchup_settlements_keyed_by_opponent(self, db):
        event, _ = self._saved_rec(db)
        db.save_settlement(Settlement(event.id, "scottie scheffler", Market.TOURNAMENT_MATCHUP,
                                      BetOutcome.WON, opponent="rory mcilroy"))
        db.save_settlement(Settlement(event.id, "scottie scheffler", Market.TOURNAMENT_MATCHUP,
                                      BetOutcome.LOST, opponent="jon rahm"))

        settlements = db.get_settlements(event.id)

        assert len(settlements) == 2
        matchup = Market.TOURNAMENT_MATCHUP
        assert settlements[("scottie scheffler", matchup, "rory mcilroy")].outcome == BetOutcome.WON
        assert settlements[("scottie scheffler", matchup, "jon rahm")].outcome == BetOutcome.LOST
        assert settlements[("scottie scheffler", matchup, "jon rahm")].opponent == "jon rahm"


class TestCacheOperations:
    """Tests for cache operations."""

    def test_set_and_get_cache(self, db):
        """Test setting and getting cache entries."""
        test_data = {"key": "value", "nested": {"a": 1}}
        expires = datetime.now() + timedelta(hours=1)

        db.set_cache("test_key", test_data, expires)
        assert db.get_cache("test_key") == test_data

    def test_cache_expiration(self, db):
        """Test that expired cache entries are not returned."""
        db.set_cache("expired_key", {"data": "old"}, datetime.now() - timedelta(hours=1))
        assert db.get_cache("expired_key") is None

    def test_cache_miss(self, db):
        assert db.get_cache("nonexistent_key") is None

    def test_corrupted_cache_entry_is_discarded(self, db):
        """Test that corrupted JSON in the cache reads as a miss."""
        conn = sqlite3.connect(db.db_path)
        conn.execute(
            "INSERT INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
            ("bad_key", "{not valid json", (datetime.now() + timedelta(hours=1)).isoformat())
        )
        conn.commit()
        conn.close()

        assert db.get_cache("bad_key") is None
        db.set_cache("bad_key", [1, 2], datetime.now() + timedelta(hours=1))
        assert db.get_cache("bad_key") == [1, 2]

    def test_clear_expired_cache(self, db):
        """Test clearing expired cache entries."""
        db.set_cache("expired", {"x": 1}, datetime.now() - timedelta(hours=1))
        db.set_cache("valid", {"y": 2}, datetime.now() + timedelta(hours=1))

        assert db.clear_expired_cache() == 1

        conn = sqlite3.connect(db.db_path)
        keys = [row[0] for row in conn.execute("SELECT key FROM cache")]
        conn.close()
        assert keys == ["valid"]

    def test_cache_not_counted_in_table_counts(self, db):
        db.set_cache("k", {}, datetime.now() + timedelta(hours=1))
        assert "cache" not in db.table_counts()
        assert sum(db.table_counts().values()) == 0
