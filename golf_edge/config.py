"""
Configuration management for the golf betting edge pipeline.
Environment driven, with tier thresholds and bookmaker defaults.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .models import RunMode, Tour, Market


# Load environment variables from .env file
load_dotenv()


SCORING_TIME_ZONE = "Europe/London"

# Tier thresholds (decimal odds)
PAR_MAX_ODDS = 6.0         # 5/1 and under
BIRDIE_MAX_ODDS = 11.0     # up to 10/1
LONG_SHOT_MIN_ODDS = 61.0  # 60/1 and over

# Simulation
DEFAULT_SIMULATIONS = 10_000
CUT_SIZE = 65  # top 65 and ties after round 2
ROUND_SHOCK_SD = 0.6  # course-wide scoring swing per round
DEFAULT_MEAN = 0.0
DEFAULT_VOLATILITY = 2.2
MIN_VOLATILITY = 1.2
PROBABILITY_FLOOR = 0.001
PROBABILITY_CEILING = 0.999

MATCH_THRESHOLD = 0.8

DEFAULT_ALLOWED_BOOKS: Tuple[str, ...] = (
    "bet365", "betfair", "williamhill", "skybet", "unibet", "paddypower",
    "betway", "ladbrokes", "coral", "betfred", "boylesports",
    "fanduel", "draftkings", "betmgm", "caesars", "pointsbet",
)

BOOK_KEY_ALIASES: Dict[str, str] = {
    "dk": "draftkings",
    "draft_kings": "draftkings",
    "mgm": "betmgm",
    "caesars_sportsbook": "caesars",
    "bet_365": "bet365",
    "william_hill": "williamhill",
    "points_bet": "pointsbet",
    "barstool_sportsbook": "barstool",
    "bet_rivers": "betrivers",
    "bet_fair": "betfair",
    "sky_bet": "skybet",
    "paddy_power": "paddypower",
    "fan_duel": "fanduel",
}

# Internal tour -> Data Golf tour code, per endpoint family
TOUR_CODES: Dict[Tour, Dict[str, Optional[str]]] = {
    Tour.PGA: {"schedule": "pga", "field": "pga", "preds": "pga", "odds": "pga", "live": "pga"},
    Tour.DPWT: {"schedule": "euro", "field": "euro", "preds": "euro", "odds": "euro", "live": "euro"},
    Tour.KFT: {"schedule": "kft", "field": "kft", "preds": "kft", "odds": "kft", "live": "kft"},
    Tour.LIV: {"schedule": "alt", "field": None, "preds": "alt", "odds": "alt", "live": "alt"},
}

# Tour codes each betting endpoint accepts
ENDPOINT_TOUR_SUPPORT: Dict[str, Tuple[str, ...]] = {
    "/betting-tools/outrights": ("pga", "euro", "kft", "opp", "alt"),
    "/betting-tools/matchups": ("pga", "euro", "opp", "alt"),
}

# Data Golf outright market names
DATAGOLF_MARKETS: Dict[Market, str] = {
    Market.WIN: "win",
    Market.TOP_5: "top_5",
    Market.TOP_10: "top_10",
    Market.TOP_20: "top_20",
    Market.MAKE_CUT: "make_cut",
    Market.FRL: "frl",
}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_tours(names: List[str]) -> Tuple[List[Tour], List[str]]:
    """Split configured tour names into Tour values and unrecognised names."""
    tours, unknown = [], []
    for name in names:
        try:
            tours.append(Tour(name.strip().upper()))
        except ValueError:
            unknown.append(name.strip())
    return tours, unknown


@dataclass
class Config:
    """Application configuration."""
    # Credentials (from environment)
    datagolf_api_key: str = ""
    odds_api_key: str = ""

    # Paths
    data_dir: Path = Path.home() / ".golf_edge"
    db_path: Optional[Path] = None

    # Run settings
    tours: List[Tour] = field(default_factory=lambda: list(Tour))
    unknown_tours: List[str] = field(default_factory=list)
    run_mode: RunMode = RunMode.CURRENT_WEEK
    exclude_in_play: bool = False
    time_zone: str = SCORING_TIME_ZONE
    allowed_books: Tuple[str, ...] = DEFAULT_ALLOWED_BOOKS
    odds_freshness_hours: int = 6
    match_threshold: float = MATCH_THRESHOLD
    run_timeout_seconds: int = 900
    max_workers: int = 3

    # Simulation settings
    sim_count: int = DEFAULT_SIMULATIONS
    sim_seed: Optional[int] = None
    min_sims_for_top_confidence: int = 5000

    # Selection policy
    max_picks_per_tier: int = 8
    min_picks_per_tier: int = 2
    min_total_picks: int = 1
    allow_fallback: bool = True
    min_ev_threshold: float = 0.0

    # Provider requests
    request_timeout: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0

    # Live tracking
    live_cache_seconds: int = 300
    live_concurrency: int = 3

    def __post_init__(self):
        """Load settings from environment."""
        self.datagolf_api_key = os.getenv("DATAGOLF_API_KEY", self.datagolf_api_key)
        self.odds_api_key = os.getenv("ODDS_API_KEY", self.odds_api_key)

        data_dir = os.getenv("GOLF_EDGE_DATA_DIR")
        if data_dir:
            self.data_dir = Path(data_dir)
        if self.db_path is None:
            self.db_path = self.data_dir / "data.db"

        names = _env_list("TOURS")
        if names:
            # An explicit list wins even when none of it is recognised
            self.tours, self.unknown_tours = parse_tours(names)
        books = _env_list("ALLOWED_BOOKS")
        if books:
            # Imported late; odds.py depends on this module's constants
            from .odds import normalize_book_key
            self.allowed_books = tuple(normalize_book_key(b) for b in books)

        mode = os.getenv("RUN_MODE")
        if mode:
            self.run_mode = RunMode(mode.strip().upper())
        self.exclude_in_play = _env_bool("EXCLUDE_IN_PLAY", self.exclude_in_play)
        self.odds_freshness_hours = _env_int("ODDS_FRESHNESS_HOURS", self.odds_freshness_hours)
        self.match_threshold = _env_float("MATCH_THRESHOLD", self.match_threshold)
        self.run_timeout_seconds = _env_int("RUN_TIMEOUT_SECONDS", self.run_timeout_seconds)
        self.max_workers = max(1, _env_int("MAX_WORKERS", self.max_workers))

        self.sim_count = _env_int("SIM_COUNT", self.sim_count)
        self.sim_seed = _env_int("SIM_SEED", self.sim_seed)
        self.min_sims_for_top_confidence = _env_int(
            "MIN_SIMS_FOR_TOP_CONFIDENCE", self.min_sims_for_top_confidence
        )

        self.max_picks_per_tier = _env_int("MAX_PICKS_PER_TIER", self.max_picks_per_tier)
        self.min_picks_per_tier = _env_int("MIN_PICKS_PER_TIER", self.min_picks_per_tier)
        self.min_total_picks = _env_int("MIN_TOTAL_PICKS", self.min_total_picks)
        self.allow_fallback = _env_bool("ALLOW_FALLBACK", self.allow_fallback)
        self.min_ev_threshold = _env_float("MIN_EV_THRESHOLD", self.min_ev_threshold)

        self.request_timeout = _env_int("DATAGOLF_TIMEOUT", self.request_timeout)
        self.max_retries = max(1, _env_int("DATAGOLF_RETRIES", self.max_retries))

        self.live_cache_seconds = _env_int("LIVE_CACHE_SECONDS", self.live_cache_seconds)
        self.live_concurrency = max(1, _env_int("LIVE_CONCURRENCY", self.live_concurrency))

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)


def get_config() -> Config:
    """Get application configuration."""
    return Config()
