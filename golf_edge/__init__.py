"""
golf-edge
Tiered golf betting recommendations with live tracking.
"""

__version__ = "1.0.0"

from .models import (
    Tour, TourEvent, FieldEntry, Market, Tier, RunMode, RunStatus, RunArtifact,
    BetRecommendation, DataQualityIssue, Predicted, Simulated, ProbabilityResult,
    TrackedEvent, LiveTrackingResult, LiveTrackingRow, OddsMovement, EventStatus, BetOutcome,
)
from .config import get_config, Config
from .database import Database, DatabaseError
from .api import DataGolfAPI, OddsAPI, FetchResult, FetchStatus, get_api, get_odds_api
from .window import get_week_window, get_run_window
from .matcher import MatchPolicy, match_bundle, match_confidence
from .simulator import TournamentSimulator, get_simulator
from .strategy import RecommendationEngine, get_engine, tier_for_odds
from .pipeline import WeeklyPipeline, get_pipeline
from .live import LiveTrackingService, EventNotFoundError, get_live_service
from .service import RunService

__all__ = [
    # Models
    "Tour", "TourEvent", "FieldEntry", "Market", "Tier", "RunMode", "RunStatus",
    "RunArtifact", "BetRecommendation", "DataQualityIssue", "Predicted", "Simulated",
    "ProbabilityResult", "TrackedEvent", "LiveTrackingResult", "LiveTrackingRow",
    "OddsMovement", "EventStatus", "BetOutcome",
    # Config
    "get_config", "Config",
    # Core classes
    "Database", "DatabaseError", "DataGolfAPI", "OddsAPI", "FetchResult", "FetchStatus",
    "TournamentSimulator", "RecommendationEngine", "WeeklyPipeline",
    "LiveTrackingService", "EventNotFoundError", "RunService", "MatchPolicy",
    # Functions
    "get_week_window", "get_run_window", "match_bundle", "match_confidence", "tier_for_odds",
    # Factory functions
    "get_api", "get_odds_api", "get_simulator", "get_engine", "get_pipeline", "get_live_service",
]
