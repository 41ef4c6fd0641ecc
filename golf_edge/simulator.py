"""
Monte Carlo tournament simulator.
Samples round scores from per-player skill distributions and prices
finishing-position markets from the simulated leaderboards.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import (
    get_config, CUT_SIZE, ROUND_SHOCK_SD, DEFAULT_MEAN, DEFAULT_VOLATILITY,
    MIN_VOLATILITY, PROBABILITY_FLOOR, PROBABILITY_CEILING,
)
from .models import Market

logger = logging.getLogger(__name__)

BATCH_SIZE = 2000
MISSED_CUT_SCORE = 10_000  # sorts below every finisher


@dataclass
class PlayerParams:
    """Round-score distribution for one player (strokes relative to field)."""
    name: str
    mean: float = DEFAULT_MEAN
    volatility: float = DEFAULT_VOLATILITY


def params_from_rating(name: str, rating: Optional[float]) -> PlayerParams:
    """Better-rated players score lower and vary less."""
    if rating is None:
        return PlayerParams(name=name)
    return PlayerParams(
        name=name,
        mean=-rating / 2.0,
        volatility=max(MIN_VOLATILITY, 2.5 - rating / 10.0),
    )


@dataclass
class SimulationResult:
    """Per-player market probabilities from one simulated field."""
    players: List[str]
    n_simulations: int
    seed: Optional[int]
    has_cut: bool
    probabilities: Dict[Market, np.ndarray] = field(default_factory=dict)
    totals: Optional[np.ndarray] = None  # (n_simulations, players), missed cut = MISSED_CUT_SCORE

    def index(self, name: str) -> int:
        return self.players.index(name)

    def probability(self, name: str, market: Market) -> Optional[float]:
        values = self.probabilities.get(market)
        if values is None or name not in self.players:
            return None
        return float(values[self.index(name)])

    def matchup_probability(self, name: str, opponent: str) -> Optional[float]:
        """P(name beats opponent over 72 holes), ties counted as half."""
        if self.totals is None or name not in self.players or opponent not in self.players:
            return None
        a = self.totals[:, self.index(name)]
        b = self.totals[:, self.index(opponent)]
        wins = np.count_nonzero(a < b) + 0.5 * np.count_nonzero(a == b)
        return _clamp(wins / self.n_simulations)


def _clamp(value: float) -> float:
    return float(min(PROBABILITY_CEILING, max(PROBABILITY_FLOOR, value)))


def tie_aware_positions(scores: np.ndarray) -> np.ndarray:
    """
    Finishing position per player for each simulated tournament:
    1 + number of players with a strictly lower score.
    Integer scores only; rows are tournaments, columns players.
    """
    n_rows, n_cols = scores.shape
    ordered = np.sort(scores, axis=1)
    # Offset each row so one flat searchsorted ranks every tournament at once
    span = int(ordered.max() - ordered.min()) + 1 if scores.size else 1
    offsets = (np.arange(n_rows, dtype=np.int64) * span)[:, None]
    base = int(ordered.min()) if scores.size else 0
    flat_sorted = (ordered.astype(np.int64) - base + offsets).ravel()
    flat_scores = (scores.astype(np.int64) - base + offsets).ravel()
    rank = np.searchsorted(flat_sorted, flat_scores, side="left").reshape(n_rows, n_cols)
    return rank - (np.arange(n_rows, dtype=np.int64) * n_cols)[:, None] + 1


class TournamentSimulator:
    """Seedable Monte Carlo engine over round scores."""

    def __init__(
        self,
        n_simulations: Optional[int] = None,
        seed: Optional[int] = None,
        cut_size: int = CUT_SIZE,
        round_shock_sd: float = ROUND_SHOCK_SD,
        batch_size: int = BATCH_SIZE,
    ):
        """Initialize simulator."""
        if n_simulations is None:
            n_simulations = get_config().sim_count
        self.n_simulations = n_simulations
        self.seed = seed
        self.cut_size = cut_size
        self.round_shock_sd = round_shock_sd
        self.batch_size = batch_size

    def simulate(
        self,
        players: Sequence[PlayerParams],
        rounds: int = 4,
        has_cut: bool = True,
        keep_totals: bool = False,
    ) -> SimulationResult:
        """
        Simulate the field `n_simulations` times.

        Each round every player draws mean + shared round shock + own noise,
        rounded to whole strokes. After round 2 the top `cut_size` and ties
        continue when the field is larger than the cut.
        """
        names = [p.name for p in players]
        result = SimulationResult(
            players=names, n_simulations=self.n_simulations,
            seed=self.seed, has_cut=has_cut
        )
        n_players = len(players)
        if n_players == 0 or self.n_simulations <= 0:
            return result

        logger.info(f"Simulating {self.n_simulations:,} tournaments for {n_players} players")
        rng = np.random.default_rng(self.seed)
        means = np.array([p.mean for p in players], dtype=float)
        vols = np.array([p.volatility for p in players], dtype=float)
        applies_cut = has_cut and rounds > 2 and n_players > self.cut_size
        top_markets = [m for m in (Market.TOP_5, Market.TOP_10, Market.TOP_20) if n_players > m.top_n]

        sums = {m: np.zeros(n_players) for m in [Market.WIN, Market.FRL, Market.MAKE_CUT] + top_markets}
        totals_batches = []

        done = 0
        while done < self.n_simulations:
            batch = min(self.batch_size, self.n_simulations - done)
            shocks = rng.normal(0.0, self.round_shock_sd, size=(batch, rounds, 1))
            noise = rng.normal(0.0, 1.0, size=(batch, rounds, n_players)) * vols
            scores = np.rint(means + shocks + noise).astype(np.int64)

            # First round leader, dead heats share the credit
            r1 = scores[:, 0, :]
            leaders = r1 == r1.min(axis=1, keepdims=True)
            sums[Market.FRL] += (leaders / leaders.sum(axis=1, keepdims=True)).sum(axis=0)

            if applies_cut:
                after_two = scores[:, :2, :].sum(axis=1)
                cut_line = np.partition(after_two, self.cut_size - 1, axis=1)[:, self.cut_size - 1]
                made = after_two <= cut_line[:, None]
            else:
                made = np.ones((batch, n_players), dtype=bool)
            sums[Market.MAKE_CUT] += made.sum(axis=0)

            totals = scores.sum(axis=1)
            totals = np.where(made, totals, MISSED_CUT_SCORE)
            positions = tie_aware_positions(totals)

            winners = positions == 1
            sums[Market.WIN] += (winners / winners.sum(axis=1, keepdims=True)).sum(axis=0)
            for market in top_markets:
                sums[market] += ((positions <= market.top_n) & made).sum(axis=0)

            if keep_totals:
                totals_batches.append(totals)
            done += batch

        n = float(self.n_simulations)
        for market, counts in sums.items():
            if market == Market.MAKE_CUT and not applies_cut:
                continue
            result.probabilities[market] = np.clip(counts / n, PROBABILITY_FLOOR, PROBABILITY_CEILING)
        if keep_totals:
            result.totals = np.concatenate(totals_batches, axis=0)
        return result


def get_simulator(seed: Optional[int] = None) -> TournamentSimulator:
    """Simulator configured from the environment."""
    config = get_config()
    return TournamentSimulator(
        n_simulations=config.sim_count,
        seed=seed if seed is not None else config.sim_seed,
    )
