"""
Live tracking of persisted recommendations.

Joins each tracked recommendation with the in-play leaderboard and the
current allowed-book price, and reports odds movement and bet outcome.
Feed failures only ever affect the event they belong to.
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time as dtime
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .api import DataGolfAPI, FetchStatus, same_event
from .config import Config, get_config
from .database import Database
from .issues import IssueTracker
from .models import (
    BetOutcome, BetRecommendation, Direction, EventStatus, LeaderboardEntry,
    LiveTrackingResult, LiveTrackingRow, Market, OddsMovement, Player,
    Settlement, Severity, Tour, TourEvent, TrackedEvent,
)
from .odds import OddsBook, build_book, selection_key
from .players import PlayerRegistry, canonical_name
from .window import utc_now

logger = logging.getLogger(__name__)

BASELINE_FROM_RECOMMENDATION = "recommendation"
BASELINE_FROM_FIRST_SNAPSHOT = "first_live_snapshot"


class EventNotFoundError(LookupError):
    """No stored event with that id on that tour."""


class TTLCache:
    """Small thread-safe time-to-live cache."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any):
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def clear(self):
        with self._lock:
            self._entries.clear()


def compute_movement(
    baseline_odds: float,
    baseline_bookmaker: Optional[str],
    current_odds: float,
    current_bookmaker: Optional[str],
    baseline_source: str = BASELINE_FROM_RECOMMENDATION,
) -> OddsMovement:
    """
    Movement from baseline to current decimal odds.
    UP means the price lengthened (drifting), DOWN that it shortened.
    """
    delta = round(current_odds - baseline_odds, 2)
    pct_change = round(delta / baseline_odds * 100.0, 2) if baseline_odds else 0.0
    if delta > 0:
        direction = Direction.UP
    elif delta < 0:
        direction = Direction.DOWN
    else:
        direction = Direction.FLAT
    return OddsMovement(
        baseline_odds=baseline_odds,
        baseline_bookmaker=baseline_bookmaker,
        current_odds=current_odds,
        current_bookmaker=current_bookmaker,
        delta=delta,
        pct_change=pct_change,
        direction=direction,
        cross_book=bool(baseline_bookmaker and current_bookmaker and baseline_bookmaker != current_bookmaker),
        baseline_source=baseline_source,
    )


def determine_bet_outcome(
    market: Market,
    entry: Optional[LeaderboardEntry],
    settlement: Optional[Settlement] = None,
) -> BetOutcome:
    """
    Authoritative settlement first. Without one, a placement bet on a
    player who missed the cut, withdrew or was disqualified is lost;
    matchups are left for settlement.
    """
    if settlement is not None:
        return settlement.outcome
    if entry is not None and market.is_placement and entry.status.eliminated:
        return BetOutcome.LOST
    return BetOutcome.PENDING


def is_event_complete(entries: List[LeaderboardEntry], tour: Tour) -> bool:
    """Every player still in the event has a score for the final round."""
    active = [e for e in entries if not e.status.eliminated]
    if not active:
        return False
    return all(e.rounds_completed >= tour.rounds for e in active)


class LiveTrackingService:
    """Live view of tracked recommendations, cached per event."""

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        datagolf: Optional[DataGolfAPI] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cache_clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or get_config()
        self.db = db or Database(self.config.db_path)
        self.datagolf = datagolf or DataGolfAPI(db=self.db, config=self.config)
        self.clock = clock or utc_now
        self.cache = TTLCache(self.config.live_cache_seconds, clock=cache_clock)
        self._zone = ZoneInfo(self.config.time_zone)

    def _today(self):
        return self.clock().astimezone(self._zone).date()

    # =========================================================================
    # Tracked events
    # =========================================================================

    def get_active_tracked_events(self) -> List[TrackedEvent]:
        """
        Events with completed-run recommendations that have not ended,
        live events first, then by start date.
        """
        seen = set()
        tracked: List[Tuple[TourEvent, int]] = []
        for event, count in self.db.get_tracked_events(self._today()):
            key = (event.id, event.tour)
            if key in seen:
                continue
            seen.add(key)
            tracked.append((event, count))
        if not tracked:
            return []

        with ThreadPoolExecutor(max_workers=self.config.live_concurrency) as executor:
            statuses = list(executor.map(lambda pair: self._event_status(pair[0]), tracked))

        now = self.clock()
        events = [
            TrackedEvent(
                event_id=event.id,
                tour=event.tour,
                name=event.name,
                status=status,
                start_date=event.start_date,
                end_date=event.end_date,
                days_until_start=self._days_until(event, now),
                tracked_count=count,
            )
            for (event, count), status in zip(tracked, statuses)
        ]
        return sorted(events, key=lambda e: (e.status != EventStatus.LIVE, e.start_date, e.event_id))

    def _days_until(self, event: TourEvent, now: datetime) -> int:
        start = datetime.combine(event.start_date, dtime(0, 0), tzinfo=self._zone)
        seconds = (start - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def _event_status(self, event: TourEvent) -> EventStatus:
        status, _ = self._load_leaderboard(event, IssueTracker())
        return status

    # =========================================================================
    # Leaderboard
    # =========================================================================

    def _load_leaderboard(
        self, event: TourEvent, issues: IssueTracker
    ) -> Tuple[EventStatus, List[LeaderboardEntry]]:
        """Event state plus leaderboard rows; feed problems become issues."""
        if self._today() < event.start_date:
            issues.info("live-feed", f"{event.name} has not started", tour=event.tour.value,
                        code="EVENT_NOT_IN_PLAY")
            return EventStatus.UPCOMING, []

        cache_key = ("leaderboard", event.id, event.tour)
        cached = self.cache.get(cache_key)
        if cached is None:
            try:
                result = self.datagolf.get_live_leaderboard(event.tour, event)
                cached = (result.status, result.data, result.error, dict(result.meta))
            except ValueError as e:
                cached = (FetchStatus.ERROR, None, str(e), {})
            self.cache.set(cache_key, cached)
        status, data, error, meta = cached

        tour = event.tour.value
        if status == FetchStatus.ERROR:
            issues.warning("live-feed", f"Live feed unavailable for {event.name}: {error}",
                           tour=tour, code="STATS_MISSING")
            return EventStatus.IN_PROGRESS_NO_DATA, []
        if status == FetchStatus.EMPTY:
            if meta.get("mismatch"):
                issues.warning("live-feed", f"Live feed is showing '{meta.get('feed_event')}', "
                               f"not {event.name}", tour=tour, code="EVENT_NOT_IN_PLAY")
            else:
                issues.info("live-feed", f"No live scoring for {event.name} yet", tour=tour,
                            code="STATS_MISSING")
            return EventStatus.IN_PROGRESS_NO_DATA, []

        if is_event_complete(data, event.tour):
            return EventStatus.COMPLETED, data
        return EventStatus.LIVE, data

    # =========================================================================
    # Live odds
    # =========================================================================

    def _load_odds(
        self, event: TourEvent, markets: List[Market], issues: IssueTracker
    ) -> OddsBook:
        """Current allowed-book prices for the markets being tracked."""
        collected = []
        tour = event.tour.value
        for market in markets:
            try:
                if market == Market.TOURNAMENT_MATCHUP:
                    result = self.datagolf.get_matchup_odds(event.tour)
                else:
                    result = self.datagolf.get_outright_odds(event.tour, market)
            except ValueError as e:
                issues.error("live-odds", str(e), tour=tour, code="ODDS_MISSING")
                break
            if not result.ok:
                issues.info("live-odds", f"No live {market.value} odds: {result.error or 'empty'}",
                            tour=tour, code="ODDS_MISSING")
                continue
            bundle = result.data
            if not same_event(bundle.event_name, event):
                issues.info("live-odds", f"Live {market.value} odds are for '{bundle.event_name}'",
                            tour=tour, code="ODDS_MISSING")
                continue
            collected.extend(bundle.markets)
        return build_book(collected, self.config.allowed_books, as_of=self.clock(),
                          max_age_hours=self.config.odds_freshness_hours)

    # =========================================================================
    # Tracking
    # =========================================================================

    def get_live_tracking_for_event(self, event_id: int, tour: Tour) -> LiveTrackingResult:
        """Live rows for every tracked recommendation on an event."""
        cache_key = ("tracking", event_id, tour)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        event = self.db.get_tour_event(event_id)
        if event is None or event.tour != tour:
            raise EventNotFoundError(f"No {tour.value} event with id {event_id}")

        issues = IssueTracker()
        status, leaderboard = self._load_leaderboard(event, issues)
        recommendations = self.db.get_tracked_recommendations(event_id)

        registry = PlayerRegistry(
            Player(canonical_name=canonical_name(e.player_name), display_name=e.player_name)
            for e in leaderboard
        )
        by_name = {canonical_name(e.player_name): e for e in leaderboard}
        settlements = self.db.get_settlements(event_id)

        book = None
        if status != EventStatus.COMPLETED and recommendations:
            markets = sorted({r.market for r in recommendations}, key=lambda m: list(Market).index(m))
            book = self._load_odds(event, markets, issues)

        rows = [
            self._build_row(rec, event, status, registry, by_name, book, settlements, issues)
            for rec in recommendations
        ]
        result = LiveTrackingResult(
            event_id=event_id,
            tour=tour,
            status=status,
            rows=rows,
            data_issues=issues.issues(),
            updated_at=self.clock(),
        )
        self.cache.set(cache_key, result)
        logger.info(f"Live tracking {event.name}: {status.value}, {len(rows)} rows, {len(issues)} issues")
        return result

    def _build_row(
        self,
        rec: BetRecommendation,
        event: TourEvent,
        status: EventStatus,
        registry: PlayerRegistry,
        by_name: Dict[str, LeaderboardEntry],
        book: Optional[OddsBook],
        settlements: Dict[Tuple[str, Market, str], Settlement],
        issues: IssueTracker,
    ) -> LiveTrackingRow:
        tour = event.tour.value
        row = LiveTrackingRow(
            recommendation_id=rec.id,
            selection=rec.selection,
            market=rec.market,
            tier=rec.tier,
            opponent=rec.opponent,
        )

        entry = None
        if by_name:
            resolution = registry.resolve(rec.selection)
            if resolution.resolved:
                entry = by_name[resolution.player.canonical_name]
                if resolution.low_confidence:
                    issues.info("live-mapping", f"Matched {rec.selection} to {entry.player_name} by surname",
                                tour=tour, evidence={"selection": rec.selection, "matched": entry.player_name},
                                code="MAPPING_LOW_CONFIDENCE")
            elif resolution.ambiguous:
                issues.warning("live-mapping", f"{rec.selection} matches several live players; not mapped",
                               tour=tour,
                               evidence={"candidates": [p.display_name for p in resolution.candidates]},
                               code="MAPPING_AMBIGUOUS")
            else:
                issues.warning("live-mapping", f"{rec.selection} is not in the live feed", tour=tour,
                               evidence={"selection": rec.selection}, code="PLAYER_NOT_FOUND_IN_LIVE_FEED")

        if entry is not None:
            row.position = entry.position
            row.position_display = entry.position_display
            row.player_status = entry.status
            row.round_scores = list(entry.round_scores)
            row.today = entry.today
            row.thru = entry.thru
            row.total = entry.total

        price = None
        if book is not None:
            key = selection_key(rec.canonical_name, rec.opponent)
            price = book.best_price(rec.market, key)
            if price is None and book.disallowed_books(rec.market, key):
                issues.info("live-odds", f"{rec.selection} is only priced by books outside the allow-list",
                            tour=tour, evidence={"books": book.disallowed_books(rec.market, key)},
                            code="ODDS_BOOK_NOT_ALLOWED")
        if price is not None:
            row.current_odds = price.odds_decimal
            row.current_bookmaker = price.bookmaker
            row.odds_status = "available"

        baseline = self._baseline(rec, price, issues, tour)
        if baseline is not None:
            row.baseline_odds, row.baseline_bookmaker, source = baseline
            row.baseline_substituted = source != BASELINE_FROM_RECOMMENDATION
            if price is not None:
                row.movement = compute_movement(row.baseline_odds, row.baseline_bookmaker,
                                                price.odds_decimal, price.bookmaker, source)

        opponent = canonical_name(rec.opponent) if rec.opponent else ""
        row.bet_outcome = determine_bet_outcome(
            rec.market, entry, settlements.get((rec.canonical_name, rec.market, opponent))
        )
        return row

    def _baseline(self, rec: BetRecommendation, price, issues: IssueTracker,
                  tour: str) -> Optional[Tuple[float, Optional[str], str]]:
        """
        (odds, bookmaker, source) to measure movement from. The
        recommendation's own price when it has one; otherwise the first live
        snapshot, stored once and never overwritten.
        """
        if rec.odds_decimal:
            return rec.odds_decimal, rec.bookmaker, BASELINE_FROM_RECOMMENDATION
        if rec.id is None:
            return None
        stored = self.db.get_baseline(rec.id)
        if stored is None and price is not None:
            stored = self.db.save_baseline(rec.id, price.odds_decimal, price.bookmaker,
                                           BASELINE_FROM_FIRST_SNAPSHOT)
            issues.log("live-odds", f"No recommendation price for {rec.selection}; "
                       f"first live price {price.odds_decimal:.2f} stored as baseline",
                       severity=Severity.INFO, tour=tour,
                       evidence={"recommendation_id": rec.id, "bookmaker": price.bookmaker},
                       code="BASELINE_FALLBACK_CREATED")
        if stored is None:
            return None
        return stored["odds_decimal"], stored["bookmaker"], stored["source"]


def get_live_service(config: Optional[Config] = None, db: Optional[Database] = None) -> LiveTrackingService:
    """Live tracking service wired to the configured provider."""
    return LiveTrackingService(config=config, db=db)
