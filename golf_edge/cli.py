"""
Command-line interface for golf-edge.
Built with Click and Rich for beautiful terminal output.
"""

import sys
import logging
from datetime import datetime
from typing import List, Optional

import click
import pandas as pd
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from . import __version__
from .config import get_config
from .database import Database, DatabaseError
from .live import EventNotFoundError, LiveTrackingService
from .models import (
    BetOutcome, BetRecommendation, Direction, EventStatus, Market, RunArtifact,
    RunMode, RunStatus, Settlement, Severity, Tier, TIER_ORDER, Tour,
)
from .pipeline import get_pipeline
from .players import canonical_name
from .window import get_run_window, make_run_key, utc_now

console = Console()
logging.basicConfig(level=logging.INFO, format="%(message)s")

TIER_COLORS = {
    Tier.PAR: "green",
    Tier.BIRDIE: "cyan",
    Tier.EAGLE: "yellow",
    Tier.LONG_SHOTS: "magenta",
}
STATUS_COLORS = {
    EventStatus.LIVE: "green",
    EventStatus.UPCOMING: "cyan",
    EventStatus.COMPLETED: "white",
    EventStatus.IN_PROGRESS_NO_DATA: "yellow",
}
OUTCOME_COLORS = {
    BetOutcome.WON: "green",
    BetOutcome.LOST: "red",
    BetOutcome.PUSH: "yellow",
    BetOutcome.VOID: "yellow",
    BetOutcome.PENDING: "white",
}


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    try:
        return utc_now(datetime.fromisoformat(value))
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO 8601 timestamp", param_hint="--now")


def _open_db() -> Database:
    try:
        return Database()
    except DatabaseError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="golf-edge")
def cli():
    """golf-edge - tiered golf betting recommendations and live tracking."""
    pass


@cli.command()
@click.option("--now", default=None, help="ISO timestamp to compute the window for (default: now)")
@click.option("--mode", type=click.Choice([m.value for m in RunMode]), default=None)
def window(now: Optional[str], mode: Optional[str]):
    """Show the scoring window a run would use."""
    config = get_config()
    moment = _parse_now(now)
    run_mode = RunMode(mode) if mode else config.run_mode
    week = get_run_window(run_mode, moment, config.time_zone)
    console.print(Panel(
        f"Mode: [cyan]{run_mode.value}[/]\n"
        f"From: [green]{week.start.strftime('%a %d %b %Y %H:%M:%S %Z')}[/]\n"
        f"To:   [green]{week.end.strftime('%a %d %b %Y %H:%M:%S %Z')}[/]\n"
        f"Run key: {make_run_key(moment, config.time_zone)}",
        title="Scoring Window",
        border_style="cyan"
    ))


@cli.command()
@click.option("--mode", type=click.Choice([m.value for m in RunMode]), default=None,
              help="Run mode (default: RUN_MODE)")
@click.option("--dry-run", is_flag=True, help="Compute recommendations without writing anything")
@click.option("--seed", type=int, default=None, help="Simulation seed")
@click.option("--sims", type=int, default=None, help="Simulations per event")
@click.option("--timeout", type=int, default=None, help="Run timeout in seconds")
def run(mode: Optional[str], dry_run: bool, seed: Optional[int], sims: Optional[int], timeout: Optional[int]):
    """Run the weekly recommendation pipeline."""
    config = get_config()
    if seed is not None:
        config.sim_seed = seed
    if sims:
        config.sim_count = sims

    try:
        pipeline = get_pipeline(config)
        pipeline.db.clear_expired_cache()
    except DatabaseError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    artifact = pipeline.prepare(mode=RunMode(mode) if mode else None, dry_run=dry_run)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task(f"Running {artifact.run_key}...", total=None)
        artifact = pipeline.execute(artifact, timeout=timeout)
        progress.update(task, completed=True)

    _print_run_summary(artifact)
    _print_tier_tables(artifact.recommendations)
    sys.exit(0 if artifact.status == RunStatus.COMPLETED else 1)


def _print_run_summary(artifact: RunArtifact):
    color = "green" if artifact.status == RunStatus.COMPLETED else "red"
    lines = [
        f"Status: [{color}]{artifact.status.value.upper()}[/]{'  (dry run)' if artifact.dry_run else ''}",
        f"Window: {artifact.window_start.date()} to {artifact.window_end.date()}",
        f"Events: {artifact.events_processed}/{artifact.events_discovered} processed",
        f"Players: {artifact.players_ingested} | Markets: {artifact.markets_ingested}",
        f"Recommendations: {artifact.recommendations_created}",
    ]
    if artifact.issues:
        counts = {s: sum(1 for i in artifact.issues if i.severity == s) for s in Severity}
        lines.append(
            f"Issues: [red]{counts[Severity.ERROR]} errors[/], "
            f"[yellow]{counts[Severity.WARNING]} warnings[/], {counts[Severity.INFO]} info"
        )
    if artifact.error_summary:
        lines.append(f"\n[red]Failed at {artifact.failure_step}:[/] {artifact.error_summary}")
    console.print(Panel("\n".join(lines), title=artifact.run_key, border_style=color))


def _print_tier_tables(recommendations: List[BetRecommendation]):
    for tier in TIER_ORDER:
        picks = [r for r in recommendations if r.tier == tier]
        if not picks:
            continue
        table = Table(
            title=f"{tier.value.replace('_', ' ')}",
            box=box.ROUNDED,
            show_header=True,
            header_style=f"bold {TIER_COLORS[tier]}"
        )
        table.add_column("Player", width=22)
        table.add_column("Market", width=16)
        table.add_column("Event", width=24)
        table.add_column("Odds", justify="right", width=7)
        table.add_column("Book", width=12)
        table.add_column("Model", justify="right", width=7)
        table.add_column("Edge", justify="right", width=7)
        table.add_column("EV", justify="right", width=7)
        table.add_column("Conf", justify="center", width=5)

        for rec in picks:
            market = rec.market.value
            if rec.opponent:
                market = f"vs {rec.opponent.title()}"
            edge_style = "green" if rec.edge > 0 else "red"
            table.add_row(
                rec.selection + (" [dim](fb)[/]" if rec.is_fallback else ""),
                market,
                rec.event_name,
                rec.odds_display,
                rec.bookmaker or "-",
                f"{rec.model_probability*100:.1f}%",
                f"[{edge_style}]{rec.edge*100:+.1f}%[/]",
                f"{rec.expected_value:+.2f}",
                "*" * rec.confidence,
            )
        console.print(table)


@cli.command()
@click.option("--run", "run_key", default=None, help="Run key (default: latest completed run)")
@click.option("--tier", type=click.Choice([t.value for t in Tier]), default=None)
@click.option("--tour", type=click.Choice([t.value for t in Tour]), default=None)
@click.option("--csv", "csv_path", type=click.Path(dir_okay=False), default=None, help="Export to CSV")
def recommendations(run_key: Optional[str], tier: Optional[str], tour: Optional[str], csv_path: Optional[str]):
    """Show stored recommendations."""
    db = _open_db()
    if run_key is None:
        latest = db.get_latest_completed_run()
        if latest is None:
            console.print("[yellow]No completed runs yet. Run 'golf-edge run' first.[/]")
            return
        run_key = latest.run_key

    recs = db.list_recommendations(
        run_key=run_key,
        tier=Tier(tier) if tier else None,
        tour=Tour(tour) if tour else None,
    )
    if not recs:
        console.print(f"[yellow]No recommendations for {run_key}.[/]")
        return

    if csv_path:
        df = pd.DataFrame([r.to_dict() for r in recs])
        df["context_labels"] = df["context_labels"].apply(lambda labels: "|".join(labels))
        df = df.drop(columns=["analysis", "alt_offers"])
        df.to_csv(csv_path, index=False)
        console.print(f"[green]Exported {len(df)} recommendations to {csv_path}[/]")
        return

    console.print(f"[cyan]Recommendations from {run_key}[/]")
    _print_tier_tables(recs)

    top = next((r for r in recs if not r.is_fallback), recs[0])
    console.print(Panel(top.analysis, title="TOP PICK ANALYSIS", border_style="green"))


@cli.command()
@click.option("--limit", "-n", default=10, help="Number of runs")
def runs(limit: int):
    """List recent pipeline runs."""
    db = _open_db()
    history = db.list_runs(limit=limit)
    if not history:
        console.print("[yellow]No runs recorded yet.[/]")
        return

    table = Table(title="Recent Runs", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Run", width=24)
    table.add_column("Mode", width=18)
    table.add_column("Status", width=10)
    table.add_column("Events", justify="center", width=7)
    table.add_column("Picks", justify="center", width=6)
    table.add_column("Failure", width=30)

    for r in history:
        color = {RunStatus.COMPLETED: "green", RunStatus.FAILED: "red"}.get(r.status, "yellow")
        table.add_row(
            r.run_key,
            r.mode.value,
            f"[{color}]{r.status.value}[/]",
            f"{r.events_processed}/{r.events_discovered}",
            str(r.recommendations_created),
            (f"{r.failure_step}: {r.error_summary}" if r.failure_step else "-")[:60],
        )
    console.print(table)


@cli.command()
@click.option("--run", "run_key", default=None, help="Run key (default: all runs)")
@click.option("--severity", type=click.Choice([s.value for s in Severity]), default=None)
@click.option("--limit", "-n", default=50)
def issues(run_key: Optional[str], severity: Optional[str], limit: int):
    """List data-quality issues."""
    db = _open_db()
    found = db.get_issues(run_key=run_key, severity=Severity(severity) if severity else None, limit=limit)
    if not found:
        console.print("[green]No issues recorded.[/]")
        return

    table = Table(title="Data Issues", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Severity", width=8)
    table.add_column("Step", width=12)
    table.add_column("Tour", width=5)
    table.add_column("Code", width=24)
    table.add_column("Message", width=60)

    colors = {Severity.ERROR: "red", Severity.WARNING: "yellow", Severity.INFO: "white"}
    for issue in found:
        table.add_row(
            f"[{colors[issue.severity]}]{issue.severity.value}[/]",
            issue.step,
            issue.tour or "-",
            issue.code or "-",
            issue.message,
        )
    console.print(table)


@cli.command()
@click.option("--search", "-s", default=None, help="Only players whose name or alias contains this text")
def players(search: Optional[str]):
    """List known players and the feed spellings recorded for them."""
    db = _open_db()
    known = db.get_players()
    if search:
        needle = canonical_name(search)
        known = [
            p for p in known
            if needle in p.canonical_name or any(needle in canonical_name(a) for a in p.aliases)
        ]
    if not known:
        console.print("[yellow]No players recorded yet.[/]")
        return

    table = Table(title="Players", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Player", width=28)
    table.add_column("Key", width=28)
    table.add_column("Aliases", width=50)
    for p in known:
        table.add_row(p.display_name, p.canonical_name, ", ".join(p.aliases) or "-")
    console.print(table)


@cli.command()
def events():
    """List events with tracked recommendations."""
    service = LiveTrackingService(db=_open_db())
    tracked = service.get_active_tracked_events()
    if not tracked:
        console.print("[yellow]No tracked events. Recommendations appear here after a completed run.[/]")
        return

    table = Table(title="Tracked Events", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right", width=4)
    table.add_column("Tour", width=5)
    table.add_column("Event", width=32)
    table.add_column("Status", width=20)
    table.add_column("Starts", width=12)
    table.add_column("Picks", justify="center", width=6)

    for event in tracked:
        starts = event.start_date.strftime("%b %d")
        if event.days_until_start:
            starts += f" ({event.days_until_start}d)"
        table.add_row(
            str(event.event_id),
            event.tour.value,
            event.name,
            f"[{STATUS_COLORS[event.status]}]{event.status.value}[/]",
            starts,
            str(event.tracked_count),
        )
    console.print(table)


@cli.command()
@click.argument("event_id", type=int)
@click.option("--tour", type=click.Choice([t.value for t in Tour]), required=True)
def live(event_id: int, tour: str):
    """Live tracking for an event's recommendations."""
    service = LiveTrackingService(db=_open_db())
    try:
        result = service.get_live_tracking_for_event(event_id, Tour(tour))
    except EventNotFoundError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    console.print(Panel.fit(
        f"Status: [{STATUS_COLORS[result.status]}]{result.status.value}[/]",
        title=f"{tour} event {event_id}",
    ))

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Player", width=22)
    table.add_column("Market", width=16)
    table.add_column("Pos", justify="center", width=5)
    table.add_column("Total", justify="right", width=5)
    table.add_column("Thru", justify="center", width=4)
    table.add_column("Baseline", justify="right", width=8)
    table.add_column("Now", justify="right", width=8)
    table.add_column("Move", justify="right", width=9)
    table.add_column("Bet", width=8)

    arrows = {Direction.UP: "[red]^[/]", Direction.DOWN: "[green]v[/]", Direction.FLAT: "="}
    for row in result.rows:
        market = f"vs {row.opponent.title()}" if row.opponent else row.market.value
        move = "-"
        if row.movement:
            move = f"{arrows[row.movement.direction]} {row.movement.pct_change:+.0f}%"
        baseline = f"{row.baseline_odds:.2f}" if row.baseline_odds else "-"
        if row.baseline_substituted:
            baseline += "*"
        table.add_row(
            row.selection,
            market,
            row.position_display or "-",
            f"{row.total:+d}" if row.total is not None else "-",
            str(row.thru) if row.thru is not None else "-",
            baseline,
            f"{row.current_odds:.2f}" if row.current_odds else row.odds_status,
            move,
            f"[{OUTCOME_COLORS[row.bet_outcome]}]{row.bet_outcome.value}[/]",
        )
    console.print(table)

    for issue in result.data_issues:
        console.print(f"  [yellow]{issue.code or issue.step}[/]: {issue.message}")


@cli.command()
@click.argument("event_id", type=int)
@click.argument("player")
@click.argument("market", type=click.Choice([m.value for m in Market]))
@click.argument("outcome", type=click.Choice([o.value for o in BetOutcome if o != BetOutcome.PENDING]))
@click.option("--opponent", default=None, help="Opponent, for a tournament matchup")
def settle(event_id: int, player: str, market: str, outcome: str, opponent: Optional[str]):
    """Record an authoritative result for a player's market."""
    db = _open_db()
    event = db.get_tour_event(event_id)
    if event is None:
        console.print(f"[red]No event with id {event_id}[/]")
        sys.exit(1)

    db.save_settlement(Settlement(
        event_id=event_id,
        canonical_name=canonical_name(player),
        market=Market(market),
        outcome=BetOutcome(outcome),
        settled_at=utc_now(),
        opponent=canonical_name(opponent) if opponent else None,
    ))
    against = f" vs {opponent}" if opponent else ""
    console.print(f"[green]Settled {player}{against} {market} at {event.name}: {outcome}[/]")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
