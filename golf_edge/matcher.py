"""
Odds-to-event matching.

Scoring (how alike are a bundle and an event) and policy (what to do
with the scores) are kept apart so each can be tested on its own.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

from .config import MATCH_THRESHOLD
from .issues import IssueTracker
from .models import OddsBundle, TourEvent, Severity

logger = logging.getLogger(__name__)

STOPWORDS = {"the", "in", "at", "and", "of", "winner", "outright", "outrights", "odds"}
DATE_TOLERANCE_DAYS = 4
NAME_WEIGHT = 0.7
DATE_WEIGHT = 0.3

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def normalize_tokens(text: str) -> Set[str]:
    """Lowercase alphanumeric tokens with stop words removed."""
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return {t for t in cleaned.split() if t and t not in STOPWORDS}


def name_similarity(a: str, b: str) -> float:
    """Token overlap in [0, 1], insensitive to case, whitespace and punctuation."""
    tokens_a = normalize_tokens(a)
    tokens_b = normalize_tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def date_proximity(a: Optional[date], b: Optional[date]) -> float:
    """1.0 on the same day, falling linearly to 0 at DATE_TOLERANCE_DAYS apart."""
    if a is None or b is None:
        return 0.0
    days = abs((a - b).days)
    return max(0.0, 1.0 - days / DATE_TOLERANCE_DAYS)


def match_confidence(
    bundle_name: str,
    bundle_date: Optional[date],
    event_name: str,
    event_date: Optional[date],
) -> float:
    """
    Confidence in [0, 1] that a bundle describes an event.

    Without any name overlap the confidence is 0 whatever the dates say.
    For a fixed date the score rises monotonically with name similarity.
    """
    name_score = name_similarity(bundle_name, event_name)
    if name_score == 0.0:
        return 0.0
    score = NAME_WEIGHT * name_score + DATE_WEIGHT * date_proximity(bundle_date, event_date)
    return round(min(1.0, score), 6)


def score_candidates(bundle: OddsBundle, events: Sequence[TourEvent]) -> List[Tuple[TourEvent, float]]:
    """Confidence of the bundle against every candidate event, best first."""
    scored = [
        (event, match_confidence(bundle.event_name, bundle.event_date, event.name, event.start_date))
        for event in events
        if bundle.tour is None or bundle.tour == event.tour
    ]
    return sorted(scored, key=lambda pair: -pair[1])


class MatchOutcome(Enum):
    ACCEPTED = "accepted"
    LOW_CONFIDENCE = "low_confidence"
    NO_MATCH = "no_match"
    CONFLICT = "conflict"


@dataclass
class MatchDecision:
    outcome: MatchOutcome
    event: Optional[TourEvent] = None
    confidence: float = 0.0
    candidates: List[Tuple[TourEvent, float]] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.outcome == MatchOutcome.ACCEPTED


class MatchPolicy:
    """Accept only a single candidate at or above the threshold."""

    def __init__(self, threshold: float = MATCH_THRESHOLD):
        self.threshold = threshold

    def decide(self, scored: Sequence[Tuple[TourEvent, float]]) -> MatchDecision:
        above = [(e, c) for e, c in scored if c >= self.threshold]
        if len(above) > 1:
            return MatchDecision(MatchOutcome.CONFLICT, confidence=above[0][1], candidates=list(above))
        if len(above) == 1:
            event, confidence = above[0]
            return MatchDecision(MatchOutcome.ACCEPTED, event=event, confidence=confidence,
                                 candidates=list(scored))
        best = max((c for _, c in scored), default=0.0)
        if best > 0.0:
            return MatchDecision(MatchOutcome.LOW_CONFIDENCE, confidence=best, candidates=list(scored))
        return MatchDecision(MatchOutcome.NO_MATCH, candidates=list(scored))


def match_bundle(
    bundle: OddsBundle,
    events: Sequence[TourEvent],
    issues: IssueTracker,
    policy: Optional[MatchPolicy] = None,
) -> MatchDecision:
    """Score a bundle, apply the policy and record an issue for anything not accepted."""
    policy = policy or MatchPolicy()
    decision = policy.decide(score_candidates(bundle, events))
    tour = bundle.tour.value if bundle.tour else None
    evidence = {
        "bundle": bundle.event_name,
        "bundle_date": bundle.event_date.isoformat() if bundle.event_date else None,
        "provider": bundle.provider,
        "candidates": [
            {"event": e.name, "key": e.key, "confidence": c}
            for e, c in decision.candidates[:5]
        ],
    }

    if decision.outcome == MatchOutcome.ACCEPTED:
        logger.info(
            f"Matched odds '{bundle.event_name}' to {decision.event.name} "
            f"(confidence {decision.confidence:.2f})"
        )
    elif decision.outcome == MatchOutcome.CONFLICT:
        issues.log("odds-match", f"Odds bundle '{bundle.event_name}' matches "
                   f"{len(decision.candidates)} events above threshold; skipped",
                   severity=Severity.WARNING, tour=tour, evidence=evidence, code="MATCH_CONFLICT")
    elif decision.outcome == MatchOutcome.LOW_CONFIDENCE:
        issues.log("odds-match", f"Low-confidence match for odds bundle '{bundle.event_name}' "
                   f"({decision.confidence:.2f} < {policy.threshold}); skipped",
                   severity=Severity.WARNING, tour=tour, evidence=evidence, code="MATCH_LOW_CONFIDENCE")
    else:
        issues.log("odds-match", f"No event matches odds bundle '{bundle.event_name}'",
                   severity=Severity.INFO, tour=tour, evidence=evidence, code="MATCH_NONE")
    return decision
