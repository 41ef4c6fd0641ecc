"""
Tests for cli.py - Command-line interface.
"""

import os
from datetime import date
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
from click.testing import CliRunner
from rich.console import Console

from golf_edge.cli import cli
from golf_edge.database import Database
from golf_edge.models import BetOutcome, DataQualityIssue, Market, Player, RunStatus, Severity, Tier

from conftest import NOW, make_event, make_rec, make_run


@pytest.fixture
def runner():
    """Runner with a console wide enough that table cells never wrap."""
    with patch("golf_edge.cli.console", Console(width=200)):
        yield CliRunner()


@pytest.fixture
def cli_env(clean_env, temp_dir):
    """CLI commands writing to a temporary data directory."""
    with patch.dict(os.environ, {"GOLF_EDGE_DATA_DIR": str(temp_dir)}):
        yield temp_dir


@pytest.fixture
def stored_run(cli_env):
    """A completed run with two picks on an event far in the future."""
    db = Database(cli_env / "data.db")
    event = db.upsert_tour_event(make_event(start=date(2099, 7, 16)))
    run = make_run(status=RunStatus.COMPLETED, finished=NOW)
    recs = [
        make_rec(run.run_key, event),
        make_rec(run.run_key, event, selection="Ludvig Åberg", odds=21.0, tier=Tier.EAGLE),
    ]
    issue = DataQualityIssue(run_key=run.run_key, step="field-fetch", severity=Severity.WARNING,
                             message="No field for Genesis Scottish Open", tour="DPWT",
                             code="FIELD_MISSING")
    db.save_run_results(run, recs, [issue])
    return db, event, run


class TestWindowCommand:

    def test_window_for_given_time(self, runner, cli_env):
        result = runner.invoke(cli, ["window", "--now", "2026-07-14T09:00:00+00:00"])
        assert result.exit_code == 0
        assert "run_2026-07-14_100000" in result.output
        assert "13 Jul 2026" in result.output
        assert "19 Jul 2026" in result.output

    def test_bad_timestamp(self, runner, cli_env):
        result = runner.invoke(cli, ["window", "--now", "next tuesday"])
        assert result.exit_code != 0
        assert "ISO 8601" in result.output


class TestRunCommand:

    def test_run_prints_summary(self, runner, cli_env):
        event = make_event()
        artifact = make_run(status=RunStatus.COMPLETED, finished=NOW)
        artifact.recommendations = [make_rec(artifact.run_key, event)]
        artifact.recommendations_created = 1
        pipeline = MagicMock()
        pipeline.prepare.return_value = artifact
        pipeline.execute.return_value = artifact

        with patch("golf_edge.cli.get_pipeline", return_value=pipeline) as factory:
            result = runner.invoke(cli, ["run", "--dry-run", "--seed", "11"])

        assert result.exit_code == 0
        assert "COMPLETED" in result.output
        assert "Scottie Scheffler" in result.output
        assert factory.call_args[0][0].sim_seed == 11
        pipeline.prepare.assert_called_once_with(mode=None, dry_run=True)
        pipeline.db.clear_expired_cache.assert_called_once_with()

    def test_failed_run_exits_nonzero(self, runner, cli_env):
        artifact = make_run(status=RunStatus.FAILED, finished=NOW)
        artifact.failure_step = "discover"
        artifact.error_summary = "No events found in window."
        pipeline = MagicMock()
        pipeline.prepare.return_value = artifact
        pipeline.execute.return_value = artifact

        with patch("golf_edge.cli.get_pipeline", return_value=pipeline):
            result = runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "Failed at discover" in result.output


class TestStoredResults:

    def test_recommendations_without_runs(self, runner, cli_env):
        result = runner.invoke(cli, ["recommendations"])
        assert result.exit_code == 0
        assert "No completed runs yet" in result.output

    def test_recommendations_by_tier(self, runner, stored_run):
        result = runner.invoke(cli, ["recommendations", "--tier", "EAGLE"])
        assert result.exit_code == 0
        assert "Ludvig" in result.output
        assert "Scheffler" not in result.output

    def test_csv_export(self, runner, stored_run, cli_env):
        target = cli_env / "picks.csv"

        result = runner.invoke(cli, ["recommendations", "--csv", str(target)])

        assert result.exit_code == 0
        df = pd.read_csv(target)
        assert len(df) == 2
        assert set(df["selection"]) == {"Scottie Scheffler", "Ludvig Åberg"}
        assert "analysis" not in df.columns
        assert df["context_labels"].iloc[0] == "value"

    def test_runs_and_issues(self, runner, stored_run):
        _, _, run = stored_run

        result = runner.invoke(cli, ["runs"])
        assert result.exit_code == 0
        assert run.run_key in result.output

        result = runner.invoke(cli, ["issues", "--severity", "warning"])
        assert result.exit_code == 0
        assert "FIELD_MISSING" in result.output

    def test_no_issues(self, runner, cli_env):
        result = runner.invoke(cli, ["issues"])
        assert result.exit_code == 0
        assert "No issues recorded" in result.output


class TestPlayersCommand:

    def test_no_players(self, runner, cli_env):
        result = runner.invoke(cli, ["players"])
        assert result.exit_code == 0
        assert "No players recorded yet" in result.output

    def test_players_with_aliases(self, runner, cli_env):
        db = Database(cli_env / "data.db")
        db.upsert_player(Player(canonical_name="ludvig aberg", display_name="Ludvig Åberg",
                                aliases=["Åberg, Ludvig"]))
        db.upsert_player(Player(canonical_name="jon rahm", display_name="Jon Rahm"))

        result = runner.invoke(cli, ["players", "--search", "aberg"])

        assert result.exit_code == 0
        assert "Åberg, Ludvig" in result.output
        assert "Jon Rahm" not in result.output


class TestLiveCommands:

    def test_events_lists_upcoming(self, runner, stored_run):
        result = runner.invoke(cli, ["events"])
        assert result.exit_code == 0
        assert "John Deere Classic" in result.output
        assert "upcoming" in result.output

    def test_live_for_upcoming_event(self, runner, stored_run):
        _, event, _ = stored_run
        result = runner.invoke(cli, ["live", str(event.id), "--tour", "PGA"])
        assert result.exit_code == 0
        assert "upcoming" in result.output
        assert "Scottie Scheffler" in result.output

    def test_live_unknown_event(self, runner, stored_run):
        _, event, _ = stored_run
        result = runner.invoke(cli, ["live", str(event.id), "--tour", "LIV"])
        assert result.exit_code == 1

    def test_settle(self, runner, stored_run):
        db, event, _ = stored_run

        result = runner.invoke(cli, ["settle", str(event.id), "Ludvig Åberg", "win", "lost"])

        assert result.exit_code == 0
        settled = db.get_settlements(event.id)
        assert settled[("ludvig aberg", Market.WIN, "")].outcome == BetOutcome.LOST

    def test_settle_matchups_separately(self, runner, stored_run):
        db, event, _ = stored_run
        matchup = Market.TOURNAMENT_MATCHUP.value

        runner.invoke(cli, ["settle", str(event.id), "Jon Rahm", matchup, "won", "--opponent", "Rory McIlroy"])
        result = runner.invoke(cli, ["settle", str(event.id), "Jon Rahm", matchup, "lost",
                                     "--opponent", "Ludvig Åberg"])

        assert result.exit_code == 0
        assert "vs Ludvig Åberg" in result.output
        settled = db.get_settlements(event.id)
        assert settled[("jon rahm", Market.TOURNAMENT_MATCHUP, "rory mcilroy")].outcome == BetOutcome.WON
        assert settled[("jon rahm", Market.TOURNAMENT_MATCHUP, "ludvig aberg")].outcome == BetOutcome.LOST

    def test_settle_unknown_event(self, runner, cli_env):
        result = runner.invoke(cli, ["settle", "999", "Jon Rahm", "win", "won"])
        assert result.exit_code == 1
        assert "No event with id 999" in result.output
