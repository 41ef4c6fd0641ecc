"""
Probability builder.
Vendor predictions where the provider has them, simulation otherwise.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .issues import IssueTracker
from .models import (
    FieldEntry, Market, OUTRIGHT_MARKETS, Predicted, ProbabilityResult,
    Severity, Simulated, TourEvent,
)
from .players import canonical_name
from .simulator import TournamentSimulator, params_from_rating

logger = logging.getLogger(__name__)


@dataclass
class PlayerPrediction:
    """Vendor pre-tournament prediction for one player."""
    player_name: str
    win: Optional[float] = None
    top_5: Optional[float] = None
    top_10: Optional[float] = None
    top_20: Optional[float] = None
    make_cut: Optional[float] = None

    @property
    def canonical_name(self) -> str:
        return canonical_name(self.player_name)

    def get(self, market: Market) -> Optional[float]:
        return {
            Market.WIN: self.win,
            Market.TOP_5: self.top_5,
            Market.TOP_10: self.top_10,
            Market.TOP_20: self.top_20,
            Market.MAKE_CUT: self.make_cut,
        }.get(market)


def normalize_probability(value) -> Optional[float]:
    """Provider values as a fraction; anything above 1 is read as a percentage."""
    if value is None or value == "":
        return None
    try:
        prob = float(value)
    except (TypeError, ValueError):
        return None
    if prob > 1.0:
        prob = prob / 100.0
    if prob < 0.0 or prob > 1.0:
        return None
    return prob


class ProbabilityBuilder:
    """Builds ProbabilityResult rows for one event."""

    def __init__(self, simulator: TournamentSimulator, issues: IssueTracker):
        self.simulator = simulator
        self.issues = issues

    def build(
        self,
        event: TourEvent,
        field: Sequence[FieldEntry],
        predictions: Optional[Sequence[PlayerPrediction]] = None,
        skill_ratings: Optional[Dict[str, float]] = None,
        markets: Iterable[Market] = OUTRIGHT_MARKETS,
        matchups: Sequence[Tuple[str, str]] = (),
    ) -> List[ProbabilityResult]:
        """
        Probabilities for the active field.

        Predicted values are used verbatim for the players and markets the
        provider covers; the simulator fills every remaining
        (player, market) pair, and prices first-round-leader and matchups.
        """
        wanted: Set[Market] = set(markets)
        active = [entry for entry in field if entry.is_active]
        if not active:
            self.issues.log(
                "probability", f"No active players for {event.name}; no probabilities built",
                severity=Severity.WARNING, tour=event.tour.value,
                evidence={"event": event.key}, code="FIELD_EMPTY",
            )
            return []

        by_name = {p.canonical_name: p for p in (predictions or [])}
        results: List[ProbabilityResult] = []
        uncovered: List[Tuple[FieldEntry, Market]] = []
        predicted = Predicted()

        for entry in active:
            prediction = by_name.get(entry.canonical_name)
            for market in sorted(wanted - {Market.FRL, Market.TOURNAMENT_MATCHUP}, key=_market_order):
                value = prediction.get(market) if prediction else None
                value = normalize_probability(value)
                if value is None:
                    uncovered.append((entry, market))
                    continue
                results.append(ProbabilityResult(
                    player=entry.canonical_name,
                    display_name=entry.player_name,
                    market=market,
                    probability=value,
                    provenance=predicted,
                ))

        needs_sim = bool(uncovered) or Market.FRL in wanted or (
            Market.TOURNAMENT_MATCHUP in wanted and matchups
        )
        if needs_sim:
            results.extend(self._simulate(event, active, skill_ratings or {}, uncovered, wanted, matchups))

        logger.info(
            f"{event.name}: {len(results)} probabilities "
            f"({sum(1 for r in results if isinstance(r.provenance, Predicted))} predicted)"
        )
        return results

    def _simulate(
        self,
        event: TourEvent,
        active: Sequence[FieldEntry],
        ratings: Dict[str, float],
        uncovered: Sequence[Tuple[FieldEntry, Market]],
        wanted: Set[Market],
        matchups: Sequence[Tuple[str, str]],
    ) -> List[ProbabilityResult]:
        unrated = [e.player_name for e in active if e.canonical_name not in ratings]
        if unrated:
            self.issues.log(
                "probability",
                f"{len(unrated)} players in {event.name} have no skill rating; using field-average parameters",
                severity=Severity.INFO, tour=event.tour.value,
                evidence={"players": unrated[:20]}, code="RATING_MISSING",
            )

        params = [params_from_rating(e.canonical_name, ratings.get(e.canonical_name)) for e in active]
        sim = self.simulator.simulate(
            params,
            rounds=event.tour.rounds,
            has_cut=event.tour.has_cut,
            keep_totals=Market.TOURNAMENT_MATCHUP in wanted and bool(matchups),
        )
        provenance = Simulated(sim_count=sim.n_simulations, seed=sim.seed)
        display = {e.canonical_name: e.player_name for e in active}

        results = []
        pairs = list(uncovered)
        if Market.FRL in wanted:
            pairs.extend((e, Market.FRL) for e in active)
        for entry, market in pairs:
            value = sim.probability(entry.canonical_name, market)
            if value is None:
                continue
            results.append(ProbabilityResult(
                player=entry.canonical_name,
                display_name=entry.player_name,
                market=market,
                probability=value,
                provenance=provenance,
            ))

        if Market.TOURNAMENT_MATCHUP in wanted:
            for player, opponent in matchups:
                value = sim.matchup_probability(player, opponent)
                if value is None:
                    continue
                results.append(ProbabilityResult(
                    player=player,
                    display_name=display.get(player, player),
                    market=Market.TOURNAMENT_MATCHUP,
                    probability=value,
                    provenance=provenance,
                    opponent=opponent,
                ))
        return results


def _market_order(market: Market) -> int:
    return list(Market).index(market)
