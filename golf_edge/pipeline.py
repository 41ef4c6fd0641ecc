"""
Weekly recommendation pipeline.

Discovers the window's events, matches odds to them, prices every
selection and hands the candidates to the recommendation engine.
Event-level work runs on a bounded thread pool and is re-ordered by
discovery order before ranking.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .api import DataGolfAPI, OddsAPI, FetchResult, FetchStatus, resolve_tour_code
from .config import Config, get_config
from .database import Database, DatabaseError
from .issues import IssueTracker
from .matcher import MatchPolicy, match_bundle
from .models import (
    FieldEntry, Market, OddsBundle, OddsMarket, Player, RunArtifact, RunMode,
    RunStatus, Severity, Tour, TourEvent, WeekWindow,
)
from .odds import build_book
from .players import canonical_name
from .probability import ProbabilityBuilder
from .simulator import TournamentSimulator
from .strategy import Candidate, RecommendationEngine, build_candidates
from .window import get_run_window, make_run_key, utc_now

logger = logging.getLogger(__name__)

# Outright markets requested from the provider, in fetch order
ODDS_MARKETS = (Market.WIN, Market.TOP_5, Market.TOP_10, Market.TOP_20, Market.MAKE_CUT, Market.FRL)


@dataclass
class EventResult:
    """Output of one event task."""
    order: int
    event: TourEvent
    candidates: List[Candidate] = field(default_factory=list)
    players: int = 0
    markets: int = 0


class WeeklyPipeline:
    """Runs one scoring week end to end."""

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        datagolf: Optional[DataGolfAPI] = None,
        odds_api: Optional[OddsAPI] = None,
        simulator_factory: Optional[Callable[[], TournamentSimulator]] = None,
    ):
        self.config = config or get_config()
        self.db = db or Database(self.config.db_path)
        self.datagolf = datagolf or DataGolfAPI(db=self.db, config=self.config)
        self.odds_api = odds_api
        self.simulator_factory = simulator_factory or self._default_simulator
        self.engine = RecommendationEngine(self.config)

    def _default_simulator(self) -> TournamentSimulator:
        # A fresh simulator per event keeps seeded draws independent of scheduling
        return TournamentSimulator(n_simulations=self.config.sim_count, seed=self.config.sim_seed)

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    def prepare(self, mode: Optional[RunMode] = None, dry_run: bool = False,
                now: Optional[datetime] = None) -> RunArtifact:
        """Create the run artifact and, unless dry, record it as running."""
        now = utc_now(now)
        mode = mode or self.config.run_mode
        window = get_run_window(mode, now, self.config.time_zone)
        artifact = RunArtifact(
            run_key=make_run_key(now, self.config.time_zone),
            mode=mode,
            window_start=window.start,
            window_end=window.end,
            dry_run=dry_run,
            started_at=now,
        )
        if not dry_run:
            try:
                self.db.save_run(artifact)
            except DatabaseError as e:
                self._fail(artifact, "persist", str(e))
        logger.info(
            f"Prepared {artifact.run_key} ({mode.value}{', dry run' if dry_run else ''}): "
            f"{window.start_date} to {window.end_date}"
        )
        return artifact

    def run(
        self,
        mode: Optional[RunMode] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RunArtifact:
        """Prepare and execute a run synchronously."""
        return self.execute(self.prepare(mode, dry_run, now), cancel_event=cancel_event, now=now)

    def execute(
        self,
        artifact: RunArtifact,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> RunArtifact:
        """
        Execute a prepared run. Never raises for data problems; the
        artifact's status, error summary and failure step say what happened.
        """
        if artifact.is_finished:
            return artifact

        now = utc_now(now or artifact.started_at)
        timeout = timeout if timeout is not None else self.config.run_timeout_seconds
        deadline = time.monotonic() + timeout if timeout else None
        cancel_event = cancel_event or threading.Event()
        issues = IssueTracker(artifact.run_key)
        window = WeekWindow(artifact.window_start, artifact.window_end)
        step = "discover"
        recommendations = []

        try:
            events = self._discover(window, now, issues, artifact.dry_run)
            artifact.events_discovered = len(events)
            if not events:
                self._fail(artifact, step, f"No events found in window. {issues.summary()}".strip())
            else:
                with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                    step = "odds"
                    ratings = self._fetch_ratings(issues)
                    odds = self._fetch_odds(executor, events, window, issues, cancel_event, deadline)
                    step = "events"
                    results = self._process_events(
                        executor, events, odds, ratings, issues, artifact.dry_run,
                        now, cancel_event, deadline,
                    )

                artifact.events_processed = len(results)
                artifact.players_ingested = sum(r.players for r in results)
                artifact.markets_ingested = sum(r.markets for r in results)
                candidates = [c for r in results for c in r.candidates]

                step = "recommend"
                if not candidates:
                    self._fail(artifact, "candidates",
                               f"No event produced usable candidates. {issues.summary()}".strip())
                else:
                    recommendations = self.engine.generate(artifact.run_key, candidates, issues)
                    artifact.recommendations_created = len(recommendations)
                    if len(recommendations) >= self.config.min_total_picks:
                        artifact.status = RunStatus.COMPLETED
                    else:
                        self._fail(
                            artifact, step,
                            f"Only {len(recommendations)} picks (minimum {self.config.min_total_picks}). "
                            f"{issues.summary()}".strip()
                        )
        except DatabaseError as e:
            logger.error(f"Database error during {artifact.run_key}: {e}")
            self._fail(artifact, "persist", str(e))
        except Exception as e:
            logger.exception(f"Run {artifact.run_key} failed during {step}")
            self._fail(artifact, step, f"{type(e).__name__}: {e}")

        artifact.recommendations = recommendations
        artifact.issues = issues.issues()
        artifact.finished_at = datetime.now(now.tzinfo)
        self._persist(artifact)

        logger.info(
            f"Run {artifact.run_key} {artifact.status.value}: "
            f"{artifact.events_processed}/{artifact.events_discovered} events, "
            f"{artifact.recommendations_created} recommendations, {len(issues)} issues"
        )
        return artifact

    def _fail(self, artifact: RunArtifact, step: str, summary: str):
        artifact.status = RunStatus.FAILED
        artifact.failure_step = step
        artifact.error_summary = summary
        artifact.finished_at = artifact.finished_at or datetime.now(artifact.started_at.tzinfo)

    def _persist(self, artifact: RunArtifact):
        if artifact.dry_run:
            return
        try:
            self.db.save_run_results(artifact, artifact.recommendations, artifact.issues)
        except DatabaseError as e:
            logger.error(f"Could not persist {artifact.run_key}: {e}")
            artifact.status = RunStatus.FAILED
            artifact.failure_step = "persist"
            artifact.error_summary = str(e)
            for rec in artifact.recommendations:
                rec.id = None

    # =========================================================================
    # Discovery
    # =========================================================================

    def _discover(self, window: WeekWindow, now: datetime, issues: IssueTracker,
                  dry_run: bool) -> List[TourEvent]:
        """Events for every configured tour, in tour then schedule order."""
        today = now.astimezone(window.start.tzinfo).date()
        events: List[TourEvent] = []
        for name in self.config.unknown_tours:
            issues.warning("schedule", f"Unsupported tour {name}; skipped",
                           tour=name, evidence={"configured": name}, code="TOUR_UNSUPPORTED")
        for tour in self.config.tours:
            try:
                result = self.datagolf.get_schedule(tour, window)
            except ValueError as e:
                issues.error("schedule", str(e), tour=tour.value, code="CONFIG_ERROR")
                continue
            if result.status == FetchStatus.ERROR:
                issues.error("schedule", f"Schedule fetch failed: {result.error}",
                             tour=tour.value, code="FETCH_FAILED")
                continue
            if not result.ok:
                issues.info("schedule", f"No {tour.value} events this week",
                            tour=tour.value, code="NO_EVENTS")
                continue

            for event in result.data:
                event.in_play = event.start_date <= today <= event.end_date
                if event.in_play and self.config.exclude_in_play:
                    issues.info("schedule", f"{event.name} is already in play; excluded",
                                tour=tour.value, code="EVENT_IN_PLAY")
                    continue
                if not dry_run:
                    self.db.upsert_tour_event(event)
                events.append(event)

        logger.info(f"Discovered {len(events)} events across {len(self.config.tours)} tours")
        return events

    def _fetch_ratings(self, issues: IssueTracker) -> Dict[str, float]:
        try:
            result = self.datagolf.get_skill_ratings()
        except ValueError as e:
            issues.error("ratings", str(e), code="CONFIG_ERROR")
            return {}
        if not result.ok:
            issues.warning("ratings", f"Skill ratings unavailable: {result.error or 'empty response'}",
                           code="RATINGS_MISSING")
            return {}
        return result.data

    # =========================================================================
    # Odds
    # =========================================================================

    def _fetch_odds(
        self,
        executor: ThreadPoolExecutor,
        events: List[TourEvent],
        window: WeekWindow,
        issues: IssueTracker,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> Dict[str, List[OddsMarket]]:
        """
        Fetch every tour's odds bundles concurrently and match them to events.
        Cancellation and the deadline are checked before every submission.
        """
        tours = []
        for event in events:
            if event.tour not in tours:
                tours.append(event.tour)

        jobs: List[Tuple[str, Tour, Callable[[], FetchResult]]] = []
        for tour in tours:
            for market in ODDS_MARKETS:
                jobs.append((market.value, tour, lambda t=tour, m=market: self.datagolf.get_outright_odds(t, m)))
            jobs.append(("tournament_matchup", tour, lambda t=tour: self.datagolf.get_matchup_odds(t)))
        if self.odds_api is not None and self.odds_api.is_configured():
            jobs.append(("the_odds_api", None, self.odds_api.get_outright_bundles))

        cancel_event = cancel_event or threading.Event()
        futures = []
        stop_reason = None
        for label, tour, job in jobs:
            stop_reason = self._stop_reason(cancel_event, deadline)
            if stop_reason:
                break
            futures.append((label, tour, executor.submit(job)))
        if stop_reason:
            skipped = len(jobs) - len(futures)
            issues.warning("odds-fetch", f"Run {stop_reason}; {skipped} odds fetches skipped",
                           evidence={"skipped": skipped}, code="ODDS_FETCH_SKIPPED")

        bundles: List[OddsBundle] = []
        for label, tour, future in futures:
            tour_name = tour.value if tour else None
            try:
                result = future.result()
            except ValueError as e:
                issues.error("odds-fetch", str(e), tour=tour_name, code="CONFIG_ERROR")
                continue
            if result.status == FetchStatus.ERROR:
                issues.warning("odds-fetch", f"{label} odds unavailable: {result.error}",
                               tour=tour_name, code="ODDS_FETCH_FAILED")
                continue
            if not result.ok:
                issues.info("odds-fetch", f"No {label} odds offered", tour=tour_name, code="ODDS_EMPTY")
                continue
            bundles.extend(result.data if isinstance(result.data, list) else [result.data])

        # Data Golf odds feeds describe the tour's current-week event and carry no date
        feed_date = window.start_date + timedelta(days=3)
        policy = MatchPolicy(self.config.match_threshold)
        matched: Dict[str, List[OddsMarket]] = {event.key: [] for event in events}
        for bundle in bundles:
            if bundle.event_date is None:
                bundle.event_date = feed_date
            decision = match_bundle(bundle, events, issues, policy)
            if decision.accepted:
                matched[decision.event.key].extend(bundle.markets)
        return matched

    # =========================================================================
    # Event tasks
    # =========================================================================

    def _process_events(
        self,
        executor: ThreadPoolExecutor,
        events: List[TourEvent],
        odds: Dict[str, List[OddsMarket]],
        ratings: Dict[str, float],
        issues: IssueTracker,
        dry_run: bool,
        now: datetime,
        cancel_event: threading.Event,
        deadline: Optional[float],
    ) -> List[EventResult]:
        """
        Run event tasks with at most `max_workers` in flight. Cancellation
        and the deadline are checked before every submission; tasks
        already running are allowed to finish.
        """
        in_flight = {}
        results: List[EventResult] = []
        next_index = 0
        stop_reason = None

        while True:
            while next_index < len(events) and len(in_flight) < self.config.max_workers:
                stop_reason = self._stop_reason(cancel_event, deadline)
                if stop_reason:
                    break
                event = events[next_index]
                future = executor.submit(
                    self._process_event, next_index, event, odds.get(event.key, []),
                    ratings, issues, dry_run, now,
                )
                in_flight[future] = event
                next_index += 1

            if not in_flight:
                break
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                event = in_flight.pop(future)
                try:
                    result = future.result()
                except DatabaseError:
                    raise
                except Exception as e:
                    logger.exception(f"Event task for {event.name} failed")
                    issues.error("event", f"{event.name} failed: {type(e).__name__}: {e}",
                                 tour=event.tour.value, evidence={"event": event.key},
                                 code="EVENT_FAILED")
                    continue
                if result is not None:
                    results.append(result)

        if stop_reason:
            skipped = len(events) - next_index
            issues.warning("pipeline", f"Run {stop_reason}; {skipped} events skipped",
                           evidence={"skipped": skipped}, code=f"RUN_{stop_reason.upper()}")

        # Barrier: ranking sees events in discovery order
        return sorted(results, key=lambda r: r.order)

    @staticmethod
    def _stop_reason(cancel_event: threading.Event, deadline: Optional[float]) -> Optional[str]:
        if cancel_event.is_set():
            return "cancelled"
        if deadline is not None and time.monotonic() >= deadline:
            return "timeout"
        return None

    def _process_event(
        self,
        order: int,
        event: TourEvent,
        odds_markets: List[OddsMarket],
        ratings: Dict[str, float],
        issues: IssueTracker,
        dry_run: bool,
        now: datetime,
    ) -> Optional[EventResult]:
        """Field, predictions, odds book and candidates for one event."""
        tour = event.tour.value
        predictions = None
        if resolve_tour_code(event.tour, "field"):
            field_result = self.datagolf.get_field(event.tour, event)
        else:
            # No field feed for this tour; the prediction list stands in for it
            predictions = self._fetch_predictions(event, issues)
            field_result = field_from_predictions(event, predictions)
        if not field_result.ok:
            severity = Severity.WARNING if field_result.status == FetchStatus.ERROR else Severity.INFO
            issues.log("field-fetch", f"No field for {event.name}: {field_result.error or 'empty'}",
                       severity=severity, tour=tour, evidence={"event": event.key},
                       code="FIELD_FETCH_FAILED" if severity == Severity.WARNING else "FIELD_EMPTY")
            return None
        entries = unique_entries(event, field_result.data, issues)

        if not dry_run:
            self.db.upsert_field_entries(event, entries)
            for market in odds_markets:
                self.db.save_odds_market(event.id, market)
            names = [e.player_name for e in field_result.data]
            names += [n for m in odds_markets for o in m.offers for n in (o.selection, o.opponent) if n]
            for player in player_aliases(entries, names):
                self.db.upsert_player(player)

        if not odds_markets:
            issues.warning("odds-match", f"No matched odds for {event.name}; event excluded",
                           tour=tour, evidence={"event": event.key}, code="ODDS_MISSING")
            return None

        book = build_book(odds_markets, self.config.allowed_books, as_of=now,
                          max_age_hours=self.config.odds_freshness_hours)
        markets = book.markets()
        prices = {m: book.best_prices(m, issues, tour) for m in markets}
        if not any(prices.values()):
            issues.warning("odds-book", f"No usable allowed-book prices for {event.name}; event excluded",
                           tour=tour, evidence={"event": event.key, "stale": book.stale_count},
                           code="ODDS_UNUSABLE")
            return None

        if predictions is None:
            predictions = self._fetch_predictions(event, issues)
        active = {e.canonical_name for e in entries if e.is_active}
        matchups = [
            tuple(key.split("|vs|"))
            for key in prices.get(Market.TOURNAMENT_MATCHUP, {})
        ]
        matchups = [(a, b) for a, b in matchups if a in active and b in active]

        builder = ProbabilityBuilder(self.simulator_factory(), issues)
        probabilities = builder.build(
            event, entries, predictions, ratings,
            markets=[m for m in markets if prices.get(m)],
            matchups=matchups,
        )
        candidates = build_candidates(event, probabilities, prices,
                                      self.config.min_sims_for_top_confidence, issues)
        logger.info(f"{event.name}: {len(candidates)} priced candidates")
        return EventResult(
            order=order,
            event=event,
            candidates=candidates,
            players=len(active),
            markets=len(markets),
        )

    def _fetch_predictions(self, event: TourEvent, issues: IssueTracker):
        result = self.datagolf.get_pre_tournament_preds(event.tour, event)
        if result.ok:
            return result.data
        issues.info("predictions", f"No vendor predictions for {event.name}; simulating",
                    tour=event.tour.value, evidence={"reason": result.error},
                    code="PREDICTIONS_MISSING")
        return []


def get_pipeline(config: Optional[Config] = None, db: Optional[Database] = None) -> WeeklyPipeline:
    """Pipeline wired to the configured providers."""
    config = config or get_config()
    db = db or Database(config.db_path)
    odds_api = OddsAPI(config=config) if config.odds_api_key else None
    return WeeklyPipeline(config=config, db=db, odds_api=odds_api)


def field_from_predictions(event: TourEvent, predictions) -> FetchResult:
    """Field entries for tours without a field feed, one per predicted player."""
    entries = [
        FieldEntry(
            event_key=event.key,
            event_id=event.id,
            player_name=prediction.player_name,
            canonical_name=prediction.canonical_name,
        )
        for prediction in predictions or []
        if prediction.canonical_name
    ]
    if not entries:
        return FetchResult.empty(f"No field source for {event.name}")
    return FetchResult.success(entries)


def unique_entries(event: TourEvent, entries: List[FieldEntry],
                   issues: Optional[IssueTracker] = None) -> List[FieldEntry]:
    """First entry per canonical name; each later duplicate is logged as ambiguous."""
    kept: Dict[str, FieldEntry] = {}
    for entry in entries:
        first = kept.get(entry.canonical_name)
        if first is None:
            kept[entry.canonical_name] = entry
            continue
        if issues is not None:
            issues.warning(
                "field-fetch",
                f"'{entry.player_name}' and '{first.player_name}' both resolve to "
                f"{entry.canonical_name} in {event.name}; keeping the first",
                tour=event.tour.value,
                evidence={"event": event.key, "canonical": entry.canonical_name,
                          "names": [first.player_name, entry.player_name]},
                code="PLAYER_AMBIGUOUS",
            )
    return list(kept.values())


def player_aliases(entries: List[FieldEntry], names: Iterable[str]) -> List[Player]:
    """Field players with the other raw spellings the feeds used for them."""
    players = {
        e.canonical_name: Player(canonical_name=e.canonical_name, display_name=e.player_name)
        for e in entries
    }
    for name in names:
        player = players.get(canonical_name(name))
        if player and name != player.display_name and name not in player.aliases:
            player.aliases.append(name)
    return [p for p in players.values() if p.aliases]
