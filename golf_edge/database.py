"""
SQLite database layer for the golf betting edge pipeline.
Handles persistence of events, fields, odds snapshots, runs and recommendations.
"""

import sqlite3
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable, Tuple
from contextlib import contextmanager

from .models import (
    TourEvent, Tour, Player, FieldEntry, OddsMarket,
    Market, RunArtifact, RunMode, RunStatus, BetRecommendation, Tier,
    DataQualityIssue, Severity, Settlement, BetOutcome,
)
from .config import get_config
from .players import canonical_name

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Storage failure; fatal to the run that hit it."""


def _describe(error: sqlite3.Error) -> str:
    message = str(error).lower()
    if "permission" in message or "readonly" in message or "read-only" in message:
        return f"Permission denied: {error}"
    if "disk" in message and "full" in message:
        return f"Disk full: {error}"
    if "unable to open" in message:
        return f"Cannot open database: {error}"
    return f"Database error: {error}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection."""
        if db_path is None:
            db_path = get_config().db_path
        self.db_path = db_path
        try:
            self._init_db()
        except sqlite3.Error as e:
            raise DatabaseError(_describe(e)) from e

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _guarded(self):
        """Connection whose sqlite errors surface as DatabaseError."""
        try:
            with self._connection() as conn:
                yield conn
        except sqlite3.Error as e:
            raise DatabaseError(_describe(e)) from e

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tour_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tour TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    name TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    location TEXT,
                    in_play INTEGER DEFAULT 0,
                    updated_at TEXT,
                    UNIQUE(tour, external_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    canonical_name TEXT NOT NULL UNIQUE,
                    display_name TEXT NOT NULL,
                    aliases_json TEXT,
                    updated_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS field_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL REFERENCES tour_events(id),
                    player_id INTEGER NOT NULL REFERENCES players(id),
                    canonical_name TEXT NOT NULL,
                    player_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TEXT,
                    UNIQUE(event_id, canonical_name)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS odds_markets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL REFERENCES tour_events(id),
                    market_key TEXT NOT NULL,
                    UNIQUE(event_id, market_key)
                )
            """)

            # Append-only price snapshots
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS odds_offers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market_id INTEGER NOT NULL REFERENCES odds_markets(id),
                    selection TEXT NOT NULL,
                    selection_key TEXT NOT NULL,
                    opponent TEXT,
                    bookmaker TEXT NOT NULL,
                    odds_decimal REAL NOT NULL,
                    odds_display TEXT,
                    fetched_at TEXT NOT NULL,
                    UNIQUE(market_id, selection_key, bookmaker, fetched_at)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_key TEXT NOT NULL UNIQUE,
                    mode TEXT NOT NULL,
                    dry_run INTEGER DEFAULT 0,
                    window_start TEXT NOT NULL,
                    window_end TEXT NOT NULL,
                    status TEXT NOT NULL,
                    events_discovered INTEGER DEFAULT 0,
                    events_processed INTEGER DEFAULT 0,
                    players_ingested INTEGER DEFAULT 0,
                    markets_ingested INTEGER DEFAULT 0,
                    recommendations_created INTEGER DEFAULT 0,
                    error_summary TEXT,
                    failure_step TEXT,
                    started_at TEXT,
                    finished_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bet_recommendations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_key TEXT NOT NULL REFERENCES runs(run_key),
                    event_id INTEGER REFERENCES tour_events(id),
                    event_key TEXT NOT NULL,
                    tour TEXT NOT NULL,
                    event_name TEXT NOT NULL,
                    selection TEXT NOT NULL,
                    canonical_name TEXT NOT NULL,
                    market TEXT NOT NULL,
                    opponent TEXT,
                    tier TEXT NOT NULL,
                    odds_decimal REAL,
                    odds_display TEXT,
                    bookmaker TEXT,
                    offer_fetched_at TEXT,
                    model_probability REAL NOT NULL,
                    implied_probability REAL NOT NULL,
                    edge REAL NOT NULL,
                    expected_value REAL NOT NULL,
                    confidence INTEGER NOT NULL,
                    provenance TEXT NOT NULL,
                    is_fallback INTEGER DEFAULT 0,
                    context_json TEXT,
                    analysis TEXT,
                    alt_offers_json TEXT,
                    created_at TEXT,
                    UNIQUE(run_key, event_key, canonical_name, market, opponent)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS data_issues (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_key TEXT,
                    tour TEXT,
                    step TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    code TEXT,
                    message TEXT NOT NULL,
                    evidence_json TEXT,
                    created_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS live_baselines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recommendation_id INTEGER NOT NULL UNIQUE REFERENCES bet_recommendations(id),
                    odds_decimal REAL NOT NULL,
                    bookmaker TEXT,
                    source TEXT NOT NULL,
                    captured_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settlements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL REFERENCES tour_events(id),
                    canonical_name TEXT NOT NULL,
                    market TEXT NOT NULL,
                    opponent TEXT NOT NULL DEFAULT '',
                    outcome TEXT NOT NULL,
                    settled_at TEXT,
                    UNIQUE(event_id, canonical_name, market, opponent)
                )
            """)

            # Cache table for provider responses
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Tour event operations
    # =========================================================================

    def upsert_tour_event(self, event: TourEvent) -> TourEvent:
        """Insert or update an event by (tour, external_id); the row id is stable."""
        with self._guarded() as conn:
            conn.execute("""
                INSERT INTO tour_events
                (tour, external_id, provider, name, start_date, end_date, location, in_play, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tour, external_id) DO UPDATE SET
                    provider = excluded.provider,
                    name = excluded.name,
                    start_date = excluded.start_date,
                    end_date = excluded.end_date,
                    location = excluded.location,
                    in_play = excluded.in_play,
                    updated_at = excluded.updated_at
            """, (
                event.tour.value,
                event.external_id,
                event.provider,
                event.name,
                event.start_date.isoformat(),
                event.end_date.isoformat(),
                event.location,
                1 if event.in_play else 0,
                _now(),
            ))
            row = conn.execute(
                "SELECT id FROM tour_events WHERE tour = ? AND external_id = ?",
                (event.tour.value, event.external_id)
            ).fetchone()
        event.id = row["id"]
        return event

    def get_tour_event(self, event_id: int) -> Optional[TourEvent]:
        with self._guarded() as conn:
            row = conn.execute("SELECT * FROM tour_events WHERE id = ?", (event_id,)).fetchone()
            return self._row_to_event(row) if row else None

    def _row_to_event(self, row: sqlite3.Row) -> TourEvent:
        return TourEvent(
            id=row["id"],
            tour=Tour(row["tour"]),
            external_id=row["external_id"],
            provider=row["provider"],
            name=row["name"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            location=row["location"] or "",
            in_play=bool(row["in_play"]),
        )

    # =========================================================================
    # Player and field operations
    # =========================================================================

    def upsert_player(self, player: Player) -> Player:
        with self._guarded() as conn:
            row = conn.execute(
                "SELECT id, aliases_json FROM players WHERE canonical_name = ?",
                (player.canonical_name,)
            ).fetchone()
            if row:
                aliases = json.loads(row["aliases_json"] or "[]")
                merged = aliases + [a for a in player.aliases if a not in aliases]
                conn.execute(
                    "UPDATE players SET display_name = ?, aliases_json = ?, updated_at = ? WHERE id = ?",
                    (player.display_name, json.dumps(merged), _now(), row["id"])
                )
                player.id = row["id"]
                player.aliases = merged
            else:
                cursor = conn.execute(
                    "INSERT INTO players (canonical_name, display_name, aliases_json, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (player.canonical_name, player.display_name, json.dumps(player.aliases), _now())
                )
                player.id = cursor.lastrowid
        return player

    def get_players(self) -> List[Player]:
        with self._guarded() as conn:
            rows = conn.execute("SELECT * FROM players ORDER BY canonical_name").fetchall()
            return [
                Player(
                    id=r["id"],
                    canonical_name=r["canonical_name"],
                    display_name=r["display_name"],
                    aliases=json.loads(r["aliases_json"] or "[]"),
                )
                for r in rows
            ]

    def upsert_field_entries(self, event: TourEvent, entries: Iterable[FieldEntry]) -> int:
        """Refresh an event's field keyed by (event, canonical name). Returns rows written."""
        if event.id is None:
            raise DatabaseError(f"Event {event.key} has not been saved")
        count = 0
        with self._guarded() as conn:
            for entry in entries:
                conn.execute(
                    "INSERT INTO players (canonical_name, display_name, aliases_json, updated_at) "
                    "VALUES (?, ?, '[]', ?) ON CONFLICT(canonical_name) DO NOTHING",
                    (entry.canonical_name, entry.player_name, _now())
                )
                player_id = conn.execute(
                    "SELECT id FROM players WHERE canonical_name = ?", (entry.canonical_name,)
                ).fetchone()["id"]
                conn.execute("""
                    INSERT INTO field_entries
                    (event_id, player_id, canonical_name, player_name, status, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(event_id, canonical_name) DO UPDATE SET
                        player_name = excluded.player_name,
                        status = excluded.status,
                        updated_at = excluded.updated_at
                """, (event.id, player_id, entry.canonical_name, entry.player_name,
                      entry.status.value, _now()))
                entry.event_id = event.id
                count += 1
        return count

    # =========================================================================
    # Odds operations
    # =========================================================================

    def save_odds_market(self, event_id: int, market: OddsMarket) -> int:
        """Append offer snapshots for a market; repeated snapshots are ignored."""
        with self._guarded() as conn:
            conn.execute(
                "INSERT INTO odds_markets (event_id, market_key) VALUES (?, ?) "
                "ON CONFLICT(event_id, market_key) DO NOTHING",
                (event_id, market.market.value)
            )
            market_id = conn.execute(
                "SELECT id FROM odds_markets WHERE event_id = ? AND market_key = ?",
                (event_id, market.market.value)
            ).fetchone()["id"]
            written = 0
            for offer in market.offers:
                key = canonical_name(offer.selection)
                if offer.opponent:
                    key = f"{key}|vs|{canonical_name(offer.opponent)}"
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO odds_offers
                    (market_id, selection, selection_key, opponent, bookmaker,
                     odds_decimal, odds_display, fetched_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (market_id, offer.selection, key, offer.opponent, offer.bookmaker,
                      offer.odds_decimal, offer.odds_display, _iso(offer.fetched_at)))
                written += cursor.rowcount
        return written

    # =========================================================================
    # Run operations
    # =========================================================================

    def save_run(self, run: RunArtifact, conn: Optional[sqlite3.Connection] = None):
        """Insert or update a run row by run_key."""
        params = (
            run.run_key, run.mode.value, 1 if run.dry_run else 0,
            _iso(run.window_start), _iso(run.window_end), run.status.value,
            run.events_discovered, run.events_processed, run.players_ingested,
            run.markets_ingested, run.recommendations_created, run.error_summary,
            run.failure_step, _iso(run.started_at), _iso(run.finished_at),
        )
        sql = """
            INSERT INTO runs
            (run_key, mode, dry_run, window_start, window_end, status,
             events_discovered, events_processed, players_ingested, markets_ingested,
             recommendations_created, error_summary, failure_step, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_key) DO UPDATE SET
                status = excluded.status,
                events_discovered = excluded.events_discovered,
                events_processed = excluded.events_processed,
                players_ingested = excluded.players_ingested,
                markets_ingested = excluded.markets_ingested,
                recommendations_created = excluded.recommendations_created,
                error_summary = excluded.error_summary,
                failure_step = excluded.failure_step,
                finished_at = excluded.finished_at
        """
        if conn is not None:
            conn.execute(sql, params)
            return
        with self._guarded() as own:
            own.execute(sql, params)

    def save_run_results(
        self,
        run: RunArtifact,
        recommendations: List[BetRecommendation],
        issues: List[DataQualityIssue],
    ):
        """Write run status, recommendations and issues in one transaction."""
        with self._guarded() as conn:
            self.save_run(run, conn=conn)
            for rec in recommendations:
                self._insert_recommendation(conn, rec)
            for issue in issues:
                self._insert_issue(conn, issue)
        logger.info(f"Persisted run {run.run_key}: {len(recommendations)} recommendations, {len(issues)} issues")

    def get_run(self, run_key: str) -> Optional[RunArtifact]:
        with self._guarded() as conn:
            row = conn.execute("SELECT * FROM runs WHERE run_key = ?", (run_key,)).fetchone()
            return self._row_to_run(row) if row else None

    def list_runs(self, limit: int = 20) -> List[RunArtifact]:
        with self._guarded() as conn:
            rows = conn.execute(
                "SELECT * FROM runs ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [self._row_to_run(r) for r in rows]

    def get_latest_completed_run(self) -> Optional[RunArtifact]:
        with self._guarded() as conn:
            row = conn.execute(
                "SELECT * FROM runs WHERE status = ? ORDER BY finished_at DESC, id DESC LIMIT 1",
                (RunStatus.COMPLETED.value,)
            ).fetchone()
            return self._row_to_run(row) if row else None

    def _row_to_run(self, row: sqlite3.Row) -> RunArtifact:
        return RunArtifact(
            id=row["id"],
            run_key=row["run_key"],
            mode=RunMode(row["mode"]),
            dry_run=bool(row["dry_run"]),
            window_start=_parse_dt(row["window_start"]),
            window_end=_parse_dt(row["window_end"]),
            status=RunStatus(row["status"]),
            events_discovered=row["events_discovered"],
            events_processed=row["events_processed"],
            players_ingested=row["players_ingested"],
            markets_ingested=row["markets_ingested"],
            recommendations_created=row["recommendations_created"],
            error_summary=row["error_summary"] or "",
            failure_step=row["failure_step"],
            started_at=_parse_dt(row["started_at"]),
            finished_at=_parse_dt(row["finished_at"]),
        )

    # =========================================================================
    # Recommendation operations
    # =========================================================================

    def _insert_recommendation(self, conn: sqlite3.Connection, rec: BetRecommendation):
        # Recommendations are immutable; a retried write is ignored
        cursor = conn.execute("""
            INSERT OR IGNORE INTO bet_recommendations
            (run_key, event_id, event_key, tour, event_name, selection, canonical_name,
             market, opponent, tier, odds_decimal, odds_display, bookmaker, offer_fetched_at,
             model_probability, implied_probability, edge, expected_value, confidence,
             provenance, is_fallback, context_json, analysis, alt_offers_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rec.run_key, rec.event_id, rec.event_key, rec.tour.value, rec.event_name,
            rec.selection, rec.canonical_name, rec.market.value, rec.opponent or "",
            rec.tier.value, rec.odds_decimal, rec.odds_display, rec.bookmaker,
            _iso(rec.offer_fetched_at), rec.model_probability, rec.implied_probability,
            rec.edge, rec.expected_value, rec.confidence, rec.provenance,
            1 if rec.is_fallback else 0, json.dumps(rec.context_labels), rec.analysis,
            json.dumps(rec.alt_offers), _now(),
        ))
        if cursor.rowcount:
            rec.id = cursor.lastrowid

    def list_recommendations(
        self,
        run_key: Optional[str] = None,
        tier: Optional[Tier] = None,
        tour: Optional[Tour] = None,
        event_id: Optional[int] = None,
    ) -> List[BetRecommendation]:
        """Recommendations filtered by run, tier, tour and event."""
        clauses, params = [], []
        if run_key:
            clauses.append("run_key = ?")
            params.append(run_key)
        if tier:
            clauses.append("tier = ?")
            params.append(tier.value)
        if tour:
            clauses.append("tour = ?")
            params.append(tour.value)
        if event_id is not None:
            clauses.append("event_id = ?")
            params.append(event_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._guarded() as conn:
            rows = conn.execute(
                f"SELECT * FROM bet_recommendations {where} ORDER BY id", params
            ).fetchall()
            return [self._row_to_recommendation(r) for r in rows]

    def get_tracked_recommendations(self, event_id: int) -> List[BetRecommendation]:
        """Recommendations for an event from its most recent completed run."""
        with self._guarded() as conn:
            row = conn.execute("""
                SELECT r.run_key FROM bet_recommendations r
                JOIN runs ON runs.run_key = r.run_key
                WHERE r.event_id = ? AND runs.status = ?
                ORDER BY runs.finished_at DESC, runs.id DESC LIMIT 1
            """, (event_id, RunStatus.COMPLETED.value)).fetchone()
        if not row:
            return []
        return self.list_recommendations(run_key=row["run_key"], event_id=event_id)

    def get_tracked_events(self, today: date) -> List[Tuple[TourEvent, int]]:
        """Events that have completed-run recommendations and have not ended."""
        with self._guarded() as conn:
            rows = conn.execute("""
                SELECT e.*, COUNT(DISTINCT r.id) AS tracked_count
                FROM tour_events e
                JOIN bet_recommendations r ON r.event_id = e.id
                JOIN runs ON runs.run_key = r.run_key
                WHERE runs.status = ? AND e.end_date >= ?
                GROUP BY e.id
                ORDER BY e.start_date, e.tour
            """, (RunStatus.COMPLETED.value, today.isoformat())).fetchall()
            return [(self._row_to_event(r), r["tracked_count"]) for r in rows]

    def _row_to_recommendation(self, row: sqlite3.Row) -> BetRecommendation:
        return BetRecommendation(
            id=row["id"],
            run_key=row["run_key"],
            event_id=row["event_id"],
            event_key=row["event_key"],
            tour=Tour(row["tour"]),
            event_name=row["event_name"],
            selection=row["selection"],
            canonical_name=row["canonical_name"],
            market=Market(row["market"]),
            opponent=row["opponent"] or None,
            tier=Tier(row["tier"]),
            odds_decimal=row["odds_decimal"],
            odds_display=row["odds_display"] or "",
            bookmaker=row["bookmaker"],
            offer_fetched_at=_parse_dt(row["offer_fetched_at"]),
            model_probability=row["model_probability"],
            implied_probability=row["implied_probability"],
            edge=row["edge"],
            expected_value=row["expected_value"],
            confidence=row["confidence"],
            provenance=row["provenance"],
            is_fallback=bool(row["is_fallback"]),
            context_labels=json.loads(row["context_json"] or "[]"),
            analysis=row["analysis"] or "",
            alt_offers=json.loads(row["alt_offers_json"] or "[]"),
        )

    # =========================================================================
    # Data issue operations
    # =========================================================================

    def _insert_issue(self, conn: sqlite3.Connection, issue: DataQualityIssue):
        conn.execute("""
            INSERT INTO data_issues (run_key, tour, step, severity, code, message, evidence_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            issue.run_key, issue.tour, issue.step, issue.severity.value, issue.code,
            issue.message, json.dumps(issue.evidence, default=str) if issue.evidence else None,
            _iso(issue.created_at) or _now(),
        ))

    def get_issues(
        self,
        run_key: Optional[str] = None,
        severity: Optional[Severity] = None,
        limit: int = 200,
    ) -> List[DataQualityIssue]:
        clauses, params = [], []
        if run_key:
            clauses.append("run_key = ?")
            params.append(run_key)
        if severity:
            clauses.append("severity = ?")
            params.append(severity.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._guarded() as conn:
            rows = conn.execute(
                f"SELECT * FROM data_issues {where} ORDER BY id DESC LIMIT ?", params
            ).fetchall()
        return [
            DataQualityIssue(
                run_key=r["run_key"],
                tour=r["tour"],
                step=r["step"],
                severity=Severity(r["severity"]),
                code=r["code"],
                message=r["message"],
                evidence=json.loads(r["evidence_json"]) if r["evidence_json"] else None,
                created_at=_parse_dt(r["created_at"]),
            )
            for r in rows
        ]

    # =========================================================================
    # Live tracking operations
    # =========================================================================

    def save_baseline(
        self, recommendation_id: int, odds_decimal: float,
        bookmaker: Optional[str], source: str
    ) -> Dict[str, Any]:
        """Record a baseline once; an existing baseline is never overwritten."""
        with self._guarded() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO live_baselines
                (recommendation_id, odds_decimal, bookmaker, source, captured_at)
                VALUES (?, ?, ?, ?, ?)
            """, (recommendation_id, odds_decimal, bookmaker, source, _now()))
        return self.get_baseline(recommendation_id)

    def get_baseline(self, recommendation_id: int) -> Optional[Dict[str, Any]]:
        with self._guarded() as conn:
            row = conn.execute(
                "SELECT * FROM live_baselines WHERE recommendation_id = ?", (recommendation_id,)
            ).fetchone()
            return dict(row) if row else None

    def save_settlement(self, settlement: Settlement):
        with self._guarded() as conn:
            conn.execute("""
                INSERT INTO settlements (event_id, canonical_name, market, opponent, outcome, settled_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(event_id, canonical_name, market, opponent) DO UPDATE SET
                    outcome = excluded.outcome,
                    settled_at = excluded.settled_at
            """, (settlement.event_id, settlement.canonical_name, settlement.market.value,
                  settlement.opponent or "", settlement.outcome.value,
                  _iso(settlement.settled_at) or _now()))

    def get_settlements(self, event_id: int) -> Dict[Tuple[str, Market, str], Settlement]:
        """Settlements for an event keyed by Settlement.key."""
        with self._guarded() as conn:
            rows = conn.execute("SELECT * FROM settlements WHERE event_id = ?", (event_id,)).fetchall()
        settlements = [
            Settlement(
                event_id=r["event_id"],
                canonical_name=r["canonical_name"],
                market=Market(r["market"]),
                outcome=BetOutcome(r["outcome"]),
                settled_at=_parse_dt(r["settled_at"]),
                opponent=r["opponent"] or None,
            )
            for r in rows
        ]
        return {s.key: s for s in settlements}

    # =========================================================================
    # Cache operations
    # =========================================================================

    def set_cache(self, key: str, value: Any, expires_at: datetime):
        """Set a cache entry."""
        with self._guarded() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), expires_at.isoformat())
            )

    def get_cache(self, key: str) -> Optional[Any]:
        """Get a cache entry if not expired."""
        with self._guarded() as conn:
            row = conn.execute("SELECT value, expires_at FROM cache WHERE key = ?", (key,)).fetchone()
            if row:
                expires = datetime.fromisoformat(row["expires_at"])
                if expires > datetime.now():
                    try:
                        return json.loads(row["value"])
                    except json.JSONDecodeError as e:
                        logger.warning(f"Discarding corrupted cache entry {key}: {e}")
                # Expired or unreadable, delete it
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        return None

    def clear_expired_cache(self) -> int:
        """Remove all expired cache entries. Returns the number removed."""
        with self._guarded() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE expires_at < ?", (datetime.now().isoformat(),))
            return cursor.rowcount

    # =========================================================================
    # Statistics
    # =========================================================================

    def table_counts(self) -> Dict[str, int]:
        """Row count per table, used to show what a run wrote."""
        tables = ("tour_events", "players", "field_entries", "odds_markets", "odds_offers",
                  "runs", "bet_recommendations", "data_issues")
        with self._guarded() as conn:
            return {t: conn.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0] for t in tables}
