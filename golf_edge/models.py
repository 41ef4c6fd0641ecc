"""
Data models for the golf betting edge pipeline.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Tuple, Union
from enum import Enum


class Tour(Enum):
    """Tours the pipeline knows how to score."""
    PGA = "PGA"
    DPWT = "DPWT"  # DP World Tour
    KFT = "KFT"    # Korn Ferry Tour
    LIV = "LIV"

    @property
    def has_cut(self) -> bool:
        """Whether events on this tour cut the field after round 2."""
        return self != Tour.LIV

    @property
    def rounds(self) -> int:
        """Number of rounds in a standard event."""
        return 3 if self == Tour.LIV else 4


class RunMode(Enum):
    """Which week a run scores."""
    CURRENT_WEEK = "CURRENT_WEEK"
    THURSDAY_NEXT_WEEK = "THURSDAY_NEXT_WEEK"  # legacy: score the following week


class RunStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FieldStatus(Enum):
    """A player's participation status in an event field."""
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"
    DISQUALIFIED = "disqualified"
    CUT = "cut"


class Market(Enum):
    """Betting markets."""
    WIN = "win"
    TOP_5 = "top_5"
    TOP_10 = "top_10"
    TOP_20 = "top_20"
    MAKE_CUT = "make_cut"
    FRL = "frl"  # First round leader
    TOURNAMENT_MATCHUP = "tournament_matchup"

    @property
    def is_placement(self) -> bool:
        """Placement markets settle on the player's own finish."""
        return self != Market.TOURNAMENT_MATCHUP

    @property
    def top_n(self) -> Optional[int]:
        """N for top-N markets, 1 for win."""
        return {
            Market.WIN: 1,
            Market.TOP_5: 5,
            Market.TOP_10: 10,
            Market.TOP_20: 20,
        }.get(self)


OUTRIGHT_MARKETS = (
    Market.WIN, Market.TOP_5, Market.TOP_10, Market.TOP_20, Market.MAKE_CUT
)


class Tier(Enum):
    """Odds-based risk bucket for a recommendation."""
    PAR = "PAR"                # 5/1 and under
    BIRDIE = "BIRDIE"          # 6/1 - 10/1
    EAGLE = "EAGLE"            # 11/1 - 59/1
    LONG_SHOTS = "LONG_SHOTS"  # 60/1+


TIER_ORDER = (Tier.PAR, Tier.BIRDIE, Tier.EAGLE, Tier.LONG_SHOTS)


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class EventStatus(Enum):
    """Live tracking state of an event."""
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"
    IN_PROGRESS_NO_DATA = "in_progress_no_data"


class Direction(Enum):
    UP = "UP"      # odds lengthened, drifting
    DOWN = "DOWN"  # odds shortened, strengthening
    FLAT = "FLAT"


class BetOutcome(Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    PUSH = "push"
    VOID = "void"


class PlayerStatus(Enum):
    """Leaderboard status of a player."""
    ACTIVE = "ACTIVE"
    MC = "MC"
    WD = "WD"
    DQ = "DQ"

    @property
    def eliminated(self) -> bool:
        return self != PlayerStatus.ACTIVE


@dataclass
class WeekWindow:
    """Scoring week, Monday 00:00 through Sunday 23:59:59 local time."""
    start: datetime
    end: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def overlaps(self, start_date: date, end_date: Optional[date] = None) -> bool:
        """Whether an event's date range intersects the window."""
        end_date = end_date or start_date
        return start_date <= self.end_date and end_date >= self.start_date


@dataclass
class TourEvent:
    """A tournament on one tour."""
    tour: Tour
    name: str
    start_date: date
    end_date: date
    external_id: str
    provider: str = "datagolf"
    location: str = ""
    in_play: bool = False
    id: Optional[int] = None

    @property
    def key(self) -> str:
        """Natural identity of the event."""
        return f"{self.tour.value}:{self.external_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tour": self.tour.value,
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "external_id": self.external_id,
            "provider": self.provider,
            "location": self.location,
            "in_play": self.in_play,
        }


@dataclass
class Player:
    """A player identity independent of any one event."""
    canonical_name: str
    display_name: str
    aliases: List[str] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class FieldEntry:
    """A player's participation record for an event."""
    event_key: str
    player_name: str
    canonical_name: str
    status: FieldStatus = FieldStatus.ACTIVE
    event_id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == FieldStatus.ACTIVE


@dataclass
class OddsOffer:
    """One bookmaker's price for one selection, as fetched."""
    selection: str
    bookmaker: str
    odds_decimal: float
    fetched_at: datetime
    odds_display: str = ""
    opponent: Optional[str] = None  # matchups only

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selection": self.selection,
            "bookmaker": self.bookmaker,
            "odds_decimal": self.odds_decimal,
            "odds_display": self.odds_display,
            "fetched_at": self.fetched_at.isoformat(),
            "opponent": self.opponent,
        }


@dataclass
class OddsMarket:
    """All offers for one market of one event."""
    market: Market
    offers: List[OddsOffer] = field(default_factory=list)


@dataclass
class OddsBundle:
    """Externally sourced odds for an event, before matching."""
    event_name: str
    event_date: Optional[date]
    markets: List[OddsMarket] = field(default_factory=list)
    provider: str = "datagolf"
    tour: Optional[Tour] = None


@dataclass(frozen=True)
class Predicted:
    """Probability taken verbatim from vendor pre-tournament predictions."""
    source: str = "datagolf"
    model: str = "baseline_history_fit"

    @property
    def label(self) -> str:
        return "predicted"


@dataclass(frozen=True)
class Simulated:
    """Probability estimated by Monte Carlo simulation."""
    sim_count: int
    seed: Optional[int] = None

    @property
    def label(self) -> str:
        return "simulated"


Provenance = Union[Predicted, Simulated]


@dataclass
class ProbabilityResult:
    """Model probability for one player in one market."""
    player: str  # canonical name
    display_name: str
    market: Market
    probability: float
    provenance: Provenance
    opponent: Optional[str] = None


@dataclass
class BestPrice:
    """Best allowed-book price for a selection."""
    selection: str
    bookmaker: str
    odds_decimal: float
    odds_display: str
    fetched_at: datetime
    implied_probability: float
    alternatives: List[OddsOffer] = field(default_factory=list)


@dataclass
class BetRecommendation:
    """A tiered recommendation produced by one run."""
    run_key: str
    event_key: str
    tour: Tour
    event_name: str
    selection: str
    canonical_name: str
    market: Market
    tier: Tier
    odds_decimal: Optional[float]
    odds_display: str
    bookmaker: Optional[str]
    offer_fetched_at: Optional[datetime]
    model_probability: float
    implied_probability: float
    edge: float
    expected_value: float
    confidence: int
    provenance: str
    is_fallback: bool = False
    opponent: Optional[str] = None
    context_labels: List[str] = field(default_factory=list)
    analysis: str = ""
    alt_offers: List[Dict[str, Any]] = field(default_factory=list)
    event_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_value(self) -> bool:
        return not self.is_fallback

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form. Storage ids are excluded so runs compare equal."""
        return {
            "run_key": self.run_key,
            "event_key": self.event_key,
            "tour": self.tour.value,
            "event_name": self.event_name,
            "selection": self.selection,
            "canonical_name": self.canonical_name,
            "market": self.market.value,
            "opponent": self.opponent,
            "tier": self.tier.value,
            "odds_decimal": self.odds_decimal,
            "odds_display": self.odds_display,
            "bookmaker": self.bookmaker,
            "offer_fetched_at": self.offer_fetched_at.isoformat() if self.offer_fetched_at else None,
            "model_probability": self.model_probability,
            "implied_probability": self.implied_probability,
            "edge": self.edge,
            "expected_value": self.expected_value,
            "confidence": self.confidence,
            "provenance": self.provenance,
            "is_fallback": self.is_fallback,
            "context_labels": list(self.context_labels),
            "analysis": self.analysis,
            "alt_offers": list(self.alt_offers),
        }


@dataclass
class DataQualityIssue:
    """A non-fatal data problem found during a run or a live refresh."""
    step: str
    message: str
    severity: Severity = Severity.WARNING
    tour: Optional[str] = None
    evidence: Optional[Dict[str, Any]] = None
    code: Optional[str] = None
    run_key: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "message": self.message,
            "severity": self.severity.value,
            "tour": self.tour,
            "code": self.code,
            "evidence": self.evidence,
        }


@dataclass
class RunArtifact:
    """One record per pipeline run."""
    run_key: str
    mode: RunMode
    window_start: datetime
    window_end: datetime
    dry_run: bool = False
    status: RunStatus = RunStatus.RUNNING
    events_discovered: int = 0
    events_processed: int = 0
    players_ingested: int = 0
    markets_ingested: int = 0
    recommendations_created: int = 0
    error_summary: str = ""
    failure_step: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    recommendations: List[BetRecommendation] = field(default_factory=list)
    issues: List[DataQualityIssue] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_key": self.run_key,
            "mode": self.mode.value,
            "dry_run": self.dry_run,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "status": self.status.value,
            "events_discovered": self.events_discovered,
            "events_processed": self.events_processed,
            "players_ingested": self.players_ingested,
            "markets_ingested": self.markets_ingested,
            "recommendations_created": self.recommendations_created,
            "error_summary": self.error_summary,
            "failure_step": self.failure_step,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class LeaderboardEntry:
    """One player's live scoring line."""
    player_name: str
    position: Optional[int] = None
    position_display: str = ""
    status: PlayerStatus = PlayerStatus.ACTIVE
    round_scores: List[Optional[int]] = field(default_factory=list)
    today: Optional[int] = None
    thru: Optional[int] = None
    total: Optional[int] = None
    current_round: Optional[int] = None

    @property
    def rounds_completed(self) -> int:
        return sum(1 for score in self.round_scores if score is not None)


@dataclass
class Settlement:
    """Authoritative result supplied by the settlement collaborator."""
    event_id: int
    canonical_name: str
    market: Market
    outcome: BetOutcome
    settled_at: Optional[datetime] = None
    opponent: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Market, str]:
        """(player, market, opponent); matchup bets on one player settle separately."""
        return (self.canonical_name, self.market, self.opponent or "")


@dataclass
class OddsMovement:
    """Change between baseline and current best price."""
    baseline_odds: float
    baseline_bookmaker: Optional[str]
    current_odds: float
    current_bookmaker: Optional[str]
    delta: float
    pct_change: float
    direction: Direction
    cross_book: bool
    baseline_source: str = "recommendation"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline_odds": self.baseline_odds,
            "baseline_bookmaker": self.baseline_bookmaker,
            "current_odds": self.current_odds,
            "current_bookmaker": self.current_bookmaker,
            "delta": self.delta,
            "pct_change": self.pct_change,
            "direction": self.direction.value,
            "cross_book": self.cross_book,
            "baseline_source": self.baseline_source,
        }


@dataclass
class LiveTrackingRow:
    """A tracked recommendation with live scoring and odds attached."""
    recommendation_id: Optional[int]
    selection: str
    market: Market
    tier: Tier
    opponent: Optional[str] = None
    position: Optional[int] = None
    position_display: str = ""
    player_status: Optional[PlayerStatus] = None
    round_scores: List[Optional[int]] = field(default_factory=list)
    today: Optional[int] = None
    thru: Optional[int] = None
    total: Optional[int] = None
    baseline_odds: Optional[float] = None
    baseline_bookmaker: Optional[str] = None
    baseline_substituted: bool = False
    current_odds: Optional[float] = None
    current_bookmaker: Optional[str] = None
    odds_status: str = "unavailable"
    movement: Optional[OddsMovement] = None
    bet_outcome: BetOutcome = BetOutcome.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "selection": self.selection,
            "market": self.market.value,
            "tier": self.tier.value,
            "opponent": self.opponent,
            "position": self.position,
            "position_display": self.position_display,
            "player_status": self.player_status.value if self.player_status else None,
            "round_scores": list(self.round_scores),
            "today": self.today,
            "thru": self.thru,
            "total": self.total,
            "baseline_odds": self.baseline_odds,
            "baseline_bookmaker": self.baseline_bookmaker,
            "baseline_substituted": self.baseline_substituted,
            "current_odds": self.current_odds,
            "current_bookmaker": self.current_bookmaker,
            "odds_status": self.odds_status,
            "movement": self.movement.to_dict() if self.movement else None,
            "bet_outcome": self.bet_outcome.value,
        }


@dataclass
class TrackedEvent:
    """An event with recommendations worth tracking."""
    event_id: int
    tour: Tour
    name: str
    status: EventStatus
    start_date: date
    end_date: date
    days_until_start: int
    tracked_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "tour": self.tour.value,
            "name": self.name,
            "status": self.status.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "days_until_start": self.days_until_start,
            "tracked_count": self.tracked_count,
        }


@dataclass
class LiveTrackingResult:
    """Live tracking view of one event."""
    event_id: int
    tour: Tour
    status: EventStatus
    rows: List[LiveTrackingRow] = field(default_factory=list)
    data_issues: List[DataQualityIssue] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "tour": self.tour.value,
            "status": self.status.value,
            "rows": [row.to_dict() for row in self.rows],
            "data_issues": [issue.to_dict() for issue in self.data_issues],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
