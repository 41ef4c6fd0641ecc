"""
Tests for matcher.py - Odds bundle to event matching.
"""

from datetime import date

import pytest

from golf_edge.issues import IssueTracker
from golf_edge.matcher import (
    MatchOutcome, MatchPolicy, date_proximity, match_bundle, match_confidence, name_similarity,
)
from golf_edge.models import Market, Severity, Tour

from conftest import make_bundle, make_event

THURSDAY = date(2026, 7, 16)


class TestMatchConfidence:
    """Tests for the pure scoring function."""

    def test_identical_name_and_date_accepts(self):
        assert match_confidence("John Deere Classic", THURSDAY, "John Deere Classic", THURSDAY) == 1.0

    def test_article_and_case_ignored(self):
        score = match_confidence("The Open Championship", THURSDAY, "Open Championship", THURSDAY)
        assert score >= 0.8

    def test_dissimilar_name_scores_zero(self):
        assert match_confidence("Zurich Classic", date(2026, 4, 23), "3M Open", THURSDAY) == 0.0
        # Matching dates alone are not enough
        assert match_confidence("Zurich Classic", THURSDAY, "3M Open", THURSDAY) == 0.0

    def test_monotonic_in_name_similarity(self):
        names = ["Scottish", "Genesis Scottish", "Genesis Scottish Open"]
        scores = [match_confidence(n, THURSDAY, "Genesis Scottish Open", THURSDAY) for n in names]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_near_date_scores_lower_than_exact(self):
        exact = match_confidence("3M Open", THURSDAY, "3M Open", THURSDAY)
        near = match_confidence("3M Open", date(2026, 7, 18), "3M Open", THURSDAY)
        far = match_confidence("3M Open", date(2026, 8, 18), "3M Open", THURSDAY)
        assert exact > near > far > 0.0

    def test_punctuation_and_whitespace(self):
        assert name_similarity("AT&T  Pebble-Beach", "at t pebble beach") == 1.0

    def test_date_proximity(self):
        assert date_proximity(THURSDAY, THURSDAY) == 1.0
        assert date_proximity(THURSDAY, None) == 0.0
        assert date_proximity(THURSDAY, date(2026, 7, 20)) == 0.0


class TestMatchPolicy:
    """Tests for accept/skip decisions and the issues they log."""

    def test_scenario_open_championship(self):
        events = [make_event(name="Open Championship", external_id="100")]
        bundle = make_bundle("The Open Championship", Market.WIN, {}, event_date=THURSDAY)
        issues = IssueTracker()

        decision = match_bundle(bundle, events, issues)

        assert decision.accepted
        assert decision.event.external_id == "100"
        assert decision.confidence >= 0.8
        assert len(issues) == 0

    def test_low_confidence_is_skipped(self):
        events = [make_event(name="Genesis Scottish Open")]
        bundle = make_bundle("Scottish Championship", Market.WIN, {}, event_date=date(2026, 7, 19))
        issues = IssueTracker()

        decision = match_bundle(bundle, events, issues)

        assert decision.outcome == MatchOutcome.LOW_CONFIDENCE
        assert decision.event is None
        assert issues.issues()[0].code == "MATCH_LOW_CONFIDENCE"
        assert issues.issues()[0].step == "odds-match"

    def test_no_match_logs_info(self):
        issues = IssueTracker()
        decision = match_bundle(make_bundle("Masters", Market.WIN, {}), [make_event()], issues)
        assert decision.outcome == MatchOutcome.NO_MATCH
        assert issues.issues()[0].severity == Severity.INFO

    def test_conflict_is_never_resolved(self):
        events = [
            make_event(name="Open Championship", external_id="1"),
            make_event(name="Open Championship", external_id="2"),
        ]
        issues = IssueTracker()
        decision = match_bundle(make_bundle("Open Championship", Market.WIN, {}, event_date=THURSDAY),
                                events, issues)

        assert decision.outcome == MatchOutcome.CONFLICT
        assert decision.event is None
        assert issues.issues()[0].code == "MATCH_CONFLICT"
        assert len(issues.issues()[0].evidence["candidates"]) == 2

    def test_bundle_tour_restricts_candidates(self):
        events = [make_event(Tour.DPWT, name="Open Championship", external_id="9")]
        decision = match_bundle(make_bundle("Open Championship", Market.WIN, {}, tour=Tour.PGA,
                                            event_date=THURSDAY), events, IssueTracker())
        assert decision.outcome == MatchOutcome.NO_MATCH

    @pytest.mark.parametrize("threshold,outcome", [
        (0.5, MatchOutcome.ACCEPTED),
        (0.95, MatchOutcome.LOW_CONFIDENCE),
    ])
    def test_threshold_is_configurable(self, threshold, outcome):
        policy = MatchPolicy(threshold)
        scored = [(make_event(), 0.9)]
        assert policy.decide(scored).outcome == outcome
