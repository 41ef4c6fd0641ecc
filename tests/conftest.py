"""
Shared pytest fixtures for golf-edge tests.
"""

import dataclasses
import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest

from golf_edge.api import FetchResult
from golf_edge.config import Config
from golf_edge.database import Database
from golf_edge.models import (
    BetRecommendation, FieldEntry, LeaderboardEntry, Market, OddsBundle, OddsMarket, OddsOffer,
    PlayerStatus, RunArtifact, RunMode, RunStatus, Tier, Tour, TourEvent,
)
from golf_edge.players import canonical_name
from golf_edge.probability import PlayerPrediction

# Tuesday of the week used throughout the tests
NOW = datetime(2026, 7, 14, 9, 0, tzinfo=timezone.utc)
ODDS_TIME = datetime(2026, 7, 14, 8, 0, tzinfo=timezone.utc)

CONFIG_ENV_VARS = (
    "DATAGOLF_API_KEY", "ODDS_API_KEY", "GOLF_EDGE_DATA_DIR", "TOURS", "ALLOWED_BOOKS",
    "RUN_MODE", "EXCLUDE_IN_PLAY", "SIM_COUNT", "SIM_SEED", "MIN_SIMS_FOR_TOP_CONFIDENCE",
    "MAX_WORKERS", "MAX_PICKS_PER_TIER", "MIN_PICKS_PER_TIER", "MIN_TOTAL_PICKS",
    "ALLOW_FALLBACK", "MIN_EV_THRESHOLD", "ODDS_FRESHNESS_HOURS", "MATCH_THRESHOLD",
    "RUN_TIMEOUT_SECONDS", "DATAGOLF_TIMEOUT", "DATAGOLF_RETRIES", "LIVE_CACHE_SECONDS",
    "LIVE_CONCURRENCY",
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test_data.db"


@pytest.fixture
def clean_env():
    """Environment with every golf-edge setting removed."""
    with patch.dict(os.environ, {}, clear=False):
        for name in CONFIG_ENV_VARS:
            os.environ.pop(name, None)
        yield


@pytest.fixture
def mock_env_no_api_key(clean_env):
    """Mock environment with no API key."""
    with patch.dict(os.environ, {"DATAGOLF_API_KEY": ""}):
        yield


@pytest.fixture
def mock_env_with_api_key(clean_env):
    """Mock environment with API key set."""
    with patch.dict(os.environ, {"DATAGOLF_API_KEY": "test_api_key_12345"}):
        yield


@pytest.fixture
def test_config(clean_env, temp_dir):
    """Small, seeded configuration writing under the temp dir."""
    return Config(
        datagolf_api_key="test_api_key_12345",
        data_dir=temp_dir,
        tours=[Tour.PGA, Tour.DPWT],
        sim_count=2000,
        sim_seed=7,
        min_sims_for_top_confidence=1000,
        max_workers=2,
        retry_base_delay=1.0,
    )


@pytest.fixture
def db(temp_db_path):
    return Database(temp_db_path)


# =============================================================================
# Domain builders
# =============================================================================

def make_event(tour=Tour.PGA, name="John Deere Classic", external_id="30",
               start=date(2026, 7, 16), end=None) -> TourEvent:
    end = end or date.fromordinal(start.toordinal() + tour.rounds - 1)
    return TourEvent(tour=tour, name=name, start_date=start, end_date=end, external_id=external_id)


def make_field(event: TourEvent, names: List[str]) -> List[FieldEntry]:
    return [
        FieldEntry(event_key=event.key, player_name=n, canonical_name=canonical_name(n))
        for n in names
    ]


def make_offers(prices: Dict[str, Dict[str, float]], fetched_at: datetime = ODDS_TIME) -> List[OddsOffer]:
    """{player: {book: decimal}} as offers."""
    return [
        OddsOffer(selection=player, bookmaker=book, odds_decimal=odds, fetched_at=fetched_at)
        for player, books in prices.items()
        for book, odds in books.items()
    ]


def make_bundle(event_name: str, market: Market, prices: Dict[str, Dict[str, float]],
                tour: Optional[Tour] = Tour.PGA, event_date: Optional[date] = None,
                fetched_at: datetime = ODDS_TIME) -> OddsBundle:
    return OddsBundle(
        event_name=event_name,
        event_date=event_date,
        markets=[OddsMarket(market=market, offers=make_offers(prices, fetched_at))],
        tour=tour,
    )


def make_run(run_key="run_2026-07-14_100000", status=RunStatus.RUNNING, finished=None) -> RunArtifact:
    return RunArtifact(
        run_key=run_key,
        mode=RunMode.CURRENT_WEEK,
        window_start=datetime(2026, 7, 13, tzinfo=timezone.utc),
        window_end=datetime(2026, 7, 19, 23, 59, 59, tzinfo=timezone.utc),
        status=status,
        started_at=NOW,
        finished_at=finished,
    )


def make_rec(run_key, event, selection="Scottie Scheffler", market=Market.WIN, odds=5.5,
             tier=Tier.PAR, opponent=None, bookmaker="bet365") -> BetRecommendation:
    return BetRecommendation(
        run_key=run_key,
        event_key=event.key,
        event_id=event.id,
        tour=event.tour,
        event_name=event.name,
        selection=selection,
        canonical_name=canonical_name(selection),
        market=market,
        tier=tier,
        odds_decimal=odds,
        odds_display="9/2" if odds else "",
        bookmaker=bookmaker if odds else None,
        offer_fetched_at=ODDS_TIME if odds else None,
        model_probability=0.2,
        implied_probability=round(1 / odds, 4) if odds else 0.0,
        edge=0.02,
        expected_value=0.1,
        confidence=3,
        provenance="predicted",
        opponent=opponent,
        context_labels=["value"],
        alt_offers=[{"bookmaker": "draftkings", "odds_decimal": 5.0}],
    )


class FakeDataGolf:
    """In-memory stand-in for DataGolfAPI with canned FetchResults."""

    def __init__(self):
        self.api_key = "fake"
        self.schedules: Dict[Tour, FetchResult] = {}
        self.fields: Dict[str, FetchResult] = {}
        self.predictions: Dict[str, FetchResult] = {}
        self.ratings = FetchResult.success({})
        self.outrights: Dict[tuple, FetchResult] = {}
        self.matchups: Dict[Tour, FetchResult] = {}
        self.leaderboards: Dict[str, FetchResult] = {}
        self.calls: List[tuple] = []

    def add_event(self, event: TourEvent, field: Optional[List[str]] = None):
        current = self.schedules.get(event.tour)
        events = list(current.data) if current and current.ok else []
        events.append(event)
        self.schedules[event.tour] = FetchResult.success(events)
        if field is not None:
            self.fields[event.key] = FetchResult.success(make_field(event, field))

    def get_schedule(self, tour, window):
        self.calls.append(("schedule", tour))
        result = self.schedules.get(tour, FetchResult.empty("no events"))
        if result.ok:
            return FetchResult.success([dataclasses.replace(e) for e in result.data])
        return result

    def get_field(self, tour, event):
        self.calls.append(("field", event.key))
        result = self.fields.get(event.key, FetchResult.empty("no field"))
        if result.ok:
            return FetchResult.success([dataclasses.replace(e, event_id=event.id) for e in result.data])
        return result

    def get_pre_tournament_preds(self, tour, event):
        self.calls.append(("preds", event.key))
        return self.predictions.get(event.key, FetchResult.empty("no predictions"))

    def get_skill_ratings(self):
        self.calls.append(("ratings",))
        return self.ratings

    def get_outright_odds(self, tour, market):
        self.calls.append(("outrights", tour, market))
        return self.outrights.get((tour, market), FetchResult.empty("no odds"))

    def get_matchup_odds(self, tour):
        self.calls.append(("matchups", tour))
        return self.matchups.get(tour, FetchResult.empty("no matchups"))

    def get_live_leaderboard(self, tour, event):
        self.calls.append(("live", event.key))
        return self.leaderboards.get(event.key, FetchResult.empty("not in play"))


@pytest.fixture
def fake_datagolf():
    return FakeDataGolf()


def predictions(rows: Dict[str, Dict[str, float]]) -> FetchResult:
    return FetchResult.success([PlayerPrediction(player_name=name, **probs) for name, probs in rows.items()])


def leaderboard_entry(name, position=None, status=PlayerStatus.ACTIVE, rounds=(68, 70, None, None),
                      today=-2, thru=12, total=-6, display=None) -> LeaderboardEntry:
    return LeaderboardEntry(
        player_name=name,
        position=position,
        position_display=display or (str(position) if position else status.value),
        status=status,
        round_scores=list(rounds),
        today=today,
        thru=thru,
        total=total,
        current_round=3,
    )


# =============================================================================
# Provider payloads
# =============================================================================

@pytest.fixture
def sample_schedule_response():
    return {
        "tour": "pga",
        "current_season": 2026,
        "schedule": [
            {"event_id": 100, "event_name": "Genesis Scottish Open", "course": "The Renaissance Club",
             "location": "North Berwick, Scotland", "start_date": "2026-07-09"},
            {"event_id": 30, "event_name": "John Deere Classic", "course": "TPC Deere Run",
             "location": "Silvis, IL", "start_date": "2026-07-16"},
            {"event_id": 100, "event_name": "The Open Championship", "course": "Royal Birkdale",
             "location": "Southport, England", "start_date": "2026-07-16"},
            {"event_id": 525, "event_name": "3M Open", "course": "TPC Twin Cities",
             "location": "Blaine, MN", "start_date": "2026-07-23"},
        ],
    }


@pytest.fixture
def sample_field_response():
    return {
        "event_name": "John Deere Classic",
        "current_round": 0,
        "field": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "country": "USA"},
            {"player_name": "Åberg, Ludvig", "dg_id": 24502, "country": "SWE"},
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "country": "USA"},
            {"player_name": "Kim, Tom", "dg_id": 23950, "country": "KOR", "status": "wd"},
        ],
    }


@pytest.fixture
def sample_prediction_response():
    """Sample API prediction response."""
    return {
        "event_name": "John Deere Classic",
        "last_updated": "2026-07-14 08:00:00 UTC",
        "baseline_history_fit": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "win": 0.15, "top_5": 0.35,
             "top_10": 0.50, "top_20": 0.70, "make_cut": 0.95},
            {"player_name": "McIlroy, Rory", "dg_id": 10091, "win_prob": 0.10, "top_5_prob": 0.30,
             "top_10_prob": 0.45, "top_20_prob": 0.65, "make_cut_prob": 0.92},
        ],
    }


@pytest.fixture
def sample_outrights_response():
    return {
        "event_name": "John Deere Classic",
        "last_updated": "2026-07-14 08:00:00 UTC",
        "market": "win",
        "odds": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417,
             "datagolf": {"baseline": 5.1, "baseline_history_fit": 5.0},
             "bet365": 5.5, "draftkings": 6.0, "skybet": None},
            {"player_name": "Åberg, Ludvig", "dg_id": 24502,
             "datagolf": {"baseline": 15.0, "baseline_history_fit": 16.0},
             "bet365": 21.0, "williamhill": "19.0"},
        ],
    }


@pytest.fixture
def sample_in_play_response():
    return {
        "info": {"event_name": "John Deere Classic", "current_round": 3,
                 "last_update": "2026-07-18 15:00:00 UTC"},
        "data": [
            {"player_name": "Scheffler, Scottie", "current_pos": "T5", "current_score": -9,
             "R1": 66, "R2": 68, "R3": None, "R4": None, "thru": 12, "today": -3},
            {"player_name": "Åberg, Ludvig", "current_pos": "MC", "current_score": 2,
             "R1": 72, "R2": 72, "R3": None, "R4": None, "thru": "F", "today": None},
            {"player_name": "Kim, Tom", "current_pos": "WD", "current_score": 4,
             "R1": 75, "R2": None, "R3": None, "R4": None, "thru": None, "today": None},
        ],
    }


# =============================================================================
# A tournament week
# =============================================================================

PGA_FIELD = ["Scottie Scheffler", "Rory McIlroy", "Xander Schauffele", "Ludvig Åberg"]
PGA_PRICES = {
    "Scheffler, Scottie": {"bet365": 5.0, "draftkings": 4.8},
    "McIlroy, Rory": {"bet365": 8.0, "williamhill": 7.5},
    "Schauffele, Xander": {"bet365": 15.0},
    "Åberg, Ludvig": {"bet365": 21.0, "betonline": 26.0},
}
PGA_PREDICTIONS = {
    "Scottie Scheffler": {"win": 0.30, "top_5": 0.55},
    "Rory McIlroy": {"win": 0.15},
    "Xander Schauffele": {"win": 0.05},
    "Ludvig Åberg": {"win": 0.06},
}


@pytest.fixture
def week(fake_datagolf):
    """A PGA event with a field and odds, and a DP World Tour event without a field."""
    pga = make_event()
    fake_datagolf.add_event(pga, field=PGA_FIELD)
    fake_datagolf.predictions[pga.key] = predictions(PGA_PREDICTIONS)
    fake_datagolf.outrights[(Tour.PGA, Market.WIN)] = FetchResult.success(
        make_bundle("John Deere Classic", Market.WIN, PGA_PRICES)
    )

    euro = make_event(Tour.DPWT, name="Genesis Scottish Open", external_id="200")
    fake_datagolf.add_event(euro)
    fake_datagolf.outrights[(Tour.DPWT, Market.WIN)] = FetchResult.success(
        make_bundle("Genesis Scottish Open", Market.WIN, {"Fleetwood, Tommy": {"bet365": 12.0}},
                    tour=Tour.DPWT)
    )
    return fake_datagolf
