"""
Recommendation engine.
Edge, expected value, confidence and tier for each priced selection,
plus the per-tier selection policy.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Config, get_config, PAR_MAX_ODDS, BIRDIE_MAX_ODDS, LONG_SHOT_MIN_ODDS
from .issues import IssueTracker
from .models import (
    BestPrice, BetRecommendation, Market, Predicted, ProbabilityResult,
    Provenance, Simulated, Tier, TIER_ORDER, TourEvent,
)
from .odds import selection_key

logger = logging.getLogger(__name__)


def tier_for_odds(odds_decimal: float) -> Tier:
    """Risk bucket from decimal odds. Boundaries: 6.0 PAR, 11.0 BIRDIE, 61.0 LONG_SHOTS."""
    if odds_decimal <= PAR_MAX_ODDS:
        return Tier.PAR
    if odds_decimal <= BIRDIE_MAX_ODDS:
        return Tier.BIRDIE
    if odds_decimal < LONG_SHOT_MIN_ODDS:
        return Tier.EAGLE
    return Tier.LONG_SHOTS


def compute_edge(model_probability: float, implied_probability: float) -> float:
    return model_probability - implied_probability


def expected_value(model_probability: float, odds_decimal: float) -> float:
    """Expected profit per unit stake."""
    return model_probability * (odds_decimal - 1.0) - (1.0 - model_probability)


def _edge_rating(edge: float) -> int:
    if edge >= 0.10:
        return 5
    if edge >= 0.05:
        return 4
    if edge >= 0.02:
        return 3
    if edge >= 0.01:
        return 2
    return 1


def confidence_rating(edge: float, provenance: Provenance, min_sims_for_top: int = 5000) -> int:
    """
    1-5 rating. Edge sets the base; simulated probabilities lose a point
    against predicted ones, and small simulations are capped at 3.
    """
    rating = _edge_rating(edge)
    if isinstance(provenance, Predicted):
        return rating
    if isinstance(provenance, Simulated):
        rating = max(1, rating - 1)
        if provenance.sim_count < min_sims_for_top:
            rating = min(rating, 3)
        return rating
    raise TypeError(f"Unknown provenance: {provenance!r}")


@dataclass
class Candidate:
    """A priced selection before tier selection."""
    event: TourEvent
    probability: ProbabilityResult
    price: BestPrice
    edge: float
    expected_value: float
    confidence: int
    tier: Tier

    @property
    def sort_key(self):
        return (
            -self.edge,
            -self.confidence,
            -self.price.odds_decimal,
            self.probability.player,
            self.probability.market.value,
            self.probability.opponent or "",
            self.event.key,
        )


def build_candidates(
    event: TourEvent,
    probabilities: Sequence[ProbabilityResult],
    prices: Dict[Market, Dict[str, BestPrice]],
    min_sims_for_top: int = 5000,
    issues: Optional[IssueTracker] = None,
) -> List[Candidate]:
    """
    Join probabilities with best prices. Unpriced probabilities drop out;
    priced selections with no field player are logged to ``issues``.
    """
    candidates = []
    matched = set()
    for prob in probabilities:
        key = selection_key(prob.player, prob.opponent)
        price = prices.get(prob.market, {}).get(key)
        if price is None or price.implied_probability is None:
            continue
        matched.add((prob.market, key))
        edge = compute_edge(prob.probability, price.implied_probability)
        candidates.append(Candidate(
            event=event,
            probability=prob,
            price=price,
            edge=edge,
            expected_value=expected_value(prob.probability, price.odds_decimal),
            confidence=confidence_rating(edge, prob.provenance, min_sims_for_top),
            tier=tier_for_odds(price.odds_decimal),
        ))

    if issues is not None:
        for market in sorted(prices, key=lambda m: m.value):
            for key, price in sorted(prices[market].items()):
                if (market, key) in matched:
                    continue
                issues.warning(
                    "candidates",
                    f"{price.selection} ({market.value}) is priced but has no player probability in {event.name}",
                    tour=event.tour.value,
                    evidence={"event": event.key, "selection": key, "market": market.value},
                    code="ODDS_SELECTION_UNMATCHED",
                )
    return candidates


class RecommendationEngine:
    """Tiered selection over candidates from every event in a run."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

    def is_value(self, candidate: Candidate) -> bool:
        return candidate.edge > 0 and candidate.expected_value >= self.config.min_ev_threshold

    def select(
        self,
        candidates: Sequence[Candidate],
        issues: Optional[IssueTracker] = None,
    ) -> Dict[Tier, List[Tuple[Candidate, bool]]]:
        """
        Per tier: value picks by edge (then confidence, then odds) up to the
        tier maximum; if there are too few and fallback is on, backfill with
        the best remaining candidates whatever their edge. A tier still short
        of the minimum is logged to ``issues``.

        Returns tier -> [(candidate, is_fallback)], value picks first.
        """
        selected: Dict[Tier, List[Tuple[Candidate, bool]]] = {}
        for tier in TIER_ORDER:
            pool = sorted((c for c in candidates if c.tier == tier), key=lambda c: c.sort_key)
            pool = _one_per_player(pool)
            value = [c for c in pool if self.is_value(c)][:self.config.max_picks_per_tier]
            picks = [(c, False) for c in value]
            if len(picks) < self.config.min_picks_per_tier and self.config.allow_fallback:
                taken = {id(c) for c in value}
                for candidate in pool:
                    if len(picks) >= self.config.min_picks_per_tier:
                        break
                    if id(candidate) not in taken:
                        picks.append((candidate, True))
            if len(picks) < self.config.min_picks_per_tier and issues is not None:
                issues.warning(
                    "recommend",
                    f"Tier {tier.value} below minimum: {len(picks)} of {self.config.min_picks_per_tier} picks",
                    evidence={"tier": tier.value, "count": len(picks), "candidates": len(pool),
                              "minimum": self.config.min_picks_per_tier},
                    code="TIER_BELOW_MINIMUM",
                )
            selected[tier] = picks
        return selected

    def generate(
        self,
        run_key: str,
        candidates: Sequence[Candidate],
        issues: Optional[IssueTracker] = None,
    ) -> List[BetRecommendation]:
        """Recommendations for a run, tiers in PAR..LONG_SHOTS order."""
        selected = self.select(candidates, issues)
        recommendations = []
        for tier in TIER_ORDER:
            for candidate, is_fallback in selected[tier]:
                recommendations.append(self._to_recommendation(run_key, candidate, is_fallback))
        fallback = sum(1 for r in recommendations if r.is_fallback)
        logger.info(f"Selected {len(recommendations)} recommendations ({fallback} fallback)")
        return recommendations

    def _to_recommendation(self, run_key: str, candidate: Candidate, is_fallback: bool) -> BetRecommendation:
        prob = candidate.probability
        price = candidate.price
        labels = [
            candidate.tier.value.lower(),
            prob.market.value,
            prob.provenance.label,
            "fallback" if is_fallback else "value",
        ]
        if prob.opponent:
            labels.append("head_to_head")
        return BetRecommendation(
            run_key=run_key,
            event_key=candidate.event.key,
            event_id=candidate.event.id,
            tour=candidate.event.tour,
            event_name=candidate.event.name,
            selection=prob.display_name,
            canonical_name=prob.player,
            market=prob.market,
            opponent=prob.opponent,
            tier=candidate.tier,
            odds_decimal=price.odds_decimal,
            odds_display=price.odds_display,
            bookmaker=price.bookmaker,
            offer_fetched_at=price.fetched_at,
            model_probability=round(prob.probability, 6),
            implied_probability=round(price.implied_probability, 6),
            edge=round(candidate.edge, 6),
            expected_value=round(candidate.expected_value, 6),
            confidence=candidate.confidence,
            provenance=prob.provenance.label,
            is_fallback=is_fallback,
            context_labels=labels,
            analysis=build_analysis(candidate, is_fallback),
            alt_offers=[
                {"bookmaker": o.bookmaker, "odds_decimal": o.odds_decimal, "odds_display": o.odds_display}
                for o in price.alternatives
            ],
        )


def _one_per_player(pool: Sequence[Candidate]) -> List[Candidate]:
    seen = set()
    kept = []
    for candidate in pool:
        key = (candidate.event.key, candidate.probability.player)
        if key in seen:
            continue
        seen.add(key)
        kept.append(candidate)
    return kept


def build_analysis(candidate: Candidate, is_fallback: bool) -> str:
    """Short paragraph plus bullets explaining a pick."""
    prob = candidate.probability
    price = candidate.price
    market = prob.market.value.replace("_", " ")
    if prob.opponent:
        market = f"matchup vs {prob.opponent.title()}"
    verdict = "Fallback pick: the market price is fair or better than our number." if is_fallback \
        else "Value pick: our number beats the market."
    lines = [
        f"{prob.display_name} {market} at {price.odds_display} ({price.odds_decimal:.2f}) with {price.bookmaker}. {verdict}",
        f"- Model probability {prob.probability:.1%} vs implied {price.implied_probability:.1%}",
        f"- Edge {candidate.edge:+.1%}, EV {candidate.expected_value:+.3f} per unit",
        f"- Source: {prob.provenance.label}",
    ]
    if price.alternatives:
        alts = ", ".join(f"{o.bookmaker} {o.odds_decimal:.2f}" for o in price.alternatives[:3])
        lines.append(f"- Also available: {alts}")
    return "\n".join(lines)


def rank_recommendations(recommendations: Sequence[BetRecommendation]) -> List[BetRecommendation]:
    """Run-wide ordering: value before fallback, then edge, confidence and odds."""
    return sorted(
        recommendations,
        key=lambda r: (
            r.is_fallback, -r.edge, -r.confidence, -(r.odds_decimal or 0.0),
            r.canonical_name, r.market.value,
        ),
    )


def get_engine(config: Optional[Config] = None) -> RecommendationEngine:
    """Get a recommendation engine instance."""
    return RecommendationEngine(config)
