"""
Data Golf and odds feed clients for the golf betting edge pipeline.
Fetches schedules, fields, predictions, ratings, live scoring and odds.
"""

import json
import logging
import re
import time
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass, field

import requests

from .config import (
    get_config, Config, TOUR_CODES, ENDPOINT_TOUR_SUPPORT, DATAGOLF_MARKETS,
)
from .database import Database
from .matcher import name_similarity
from .models import (
    Tour, TourEvent, FieldEntry, FieldStatus, Market, OddsBundle, OddsMarket,
    OddsOffer, LeaderboardEntry, PlayerStatus, WeekWindow,
)
from .odds import normalize_book_key, decimal_to_fractional
from .players import canonical_name, display_name
from .probability import PlayerPrediction

logger = logging.getLogger(__name__)

# Same-event check for single-event feeds (field, predictions, live)
EVENT_NAME_MATCH = 0.5

# Keys in an outrights row that are not bookmakers
_NON_BOOK_KEYS = {"player_name", "dg_id", "datagolf", "am", "country", "event_name"}


class ProviderError(Exception):
    """A provider request that kept failing or returned an unreadable body."""


class FetchStatus(Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


@dataclass
class FetchResult:
    """Typed outcome of a provider fetch."""
    status: FetchStatus
    data: Any = None
    error: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any, **meta) -> "FetchResult":
        return cls(FetchStatus.SUCCESS, data=data, meta=meta)

    @classmethod
    def empty(cls, reason: str = "", **meta) -> "FetchResult":
        return cls(FetchStatus.EMPTY, data=[], error=reason, meta=meta)

    @classmethod
    def failure(cls, error: str, **meta) -> "FetchResult":
        return cls(FetchStatus.ERROR, data=None, error=error, meta=meta)

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.SUCCESS


def resolve_tour_code(tour: Tour, category: str) -> Optional[str]:
    """Data Golf tour code for an internal tour and endpoint family."""
    return TOUR_CODES.get(tour, {}).get(category)


def endpoint_supports(endpoint: str, tour_code: Optional[str]) -> bool:
    if not tour_code:
        return False
    supported = ENDPOINT_TOUR_SUPPORT.get(endpoint)
    return supported is None or tour_code in supported


def parse_date(value: Any) -> Optional[date]:
    """Leading YYYY-MM-DD of a provider date string."""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_timestamp(value: Any, default: Optional[datetime] = None) -> datetime:
    """Provider timestamps ('2026-07-14 10:05:00 UTC', ISO 8601) as aware UTC datetimes."""
    default = default or datetime.now(timezone.utc)
    if not value:
        return default
    text = str(value).strip().replace(" UTC", "").replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def same_event(feed_name: Optional[str], event: TourEvent) -> bool:
    """Whether a single-event feed describes the expected event."""
    if not feed_name:
        return True
    return name_similarity(feed_name, event.name) >= EVENT_NAME_MATCH


_POSITION_DIGITS = re.compile(r"(\d+)")


def parse_position(value: Any) -> Tuple[Optional[int], PlayerStatus, str]:
    """
    Leaderboard position text to (numeric position, status, display).
    'T10' -> 10, 'MC'/'CUT' -> MC, 'WD' -> WD, 'DQ' -> DQ.
    """
    if value is None or value == "":
        return None, PlayerStatus.ACTIVE, ""
    if isinstance(value, (int, float)):
        return int(value), PlayerStatus.ACTIVE, str(int(value))
    text = str(value).strip().upper()
    if text in ("MC", "CUT", "MISSED CUT"):
        return None, PlayerStatus.MC, "MC"
    if text in ("WD", "W/D", "WITHDRAWN"):
        return None, PlayerStatus.WD, "WD"
    if text in ("DQ", "DISQUALIFIED"):
        return None, PlayerStatus.DQ, "DQ"
    match = _POSITION_DIGITS.search(text)
    if match:
        return int(match.group(1)), PlayerStatus.ACTIVE, text
    return None, PlayerStatus.ACTIVE, text


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_leaderboard_row(row: Dict[str, Any], rounds: int = 4) -> LeaderboardEntry:
    """Scoring fields from one in-play row."""
    position, status, shown = parse_position(row.get("current_pos", row.get("position")))
    thru = row.get("thru")
    if isinstance(thru, str) and thru.strip().upper() == "F":
        thru = 18
    return LeaderboardEntry(
        player_name=display_name(row.get("player_name", "")),
        position=position,
        position_display=shown,
        status=status,
        round_scores=[_int_or_none(row.get(f"R{i}")) for i in range(1, rounds + 1)],
        today=_int_or_none(row.get("today")),
        thru=_int_or_none(thru),
        total=_int_or_none(row.get("current_score", row.get("total"))),
        current_round=_int_or_none(row.get("round_num", row.get("current_round"))),
    )


def _field_status(row: Dict[str, Any]) -> FieldStatus:
    text = str(row.get("status", "") or "").strip().lower()
    if text in ("wd", "withdrawn"):
        return FieldStatus.WITHDRAWN
    if text in ("dq", "disqualified"):
        return FieldStatus.DISQUALIFIED
    if text in ("mc", "cut"):
        return FieldStatus.CUT
    return FieldStatus.ACTIVE


class DataGolfAPI:
    """Client for Data Golf API."""

    BASE_URL = "https://feeds.datagolf.com"

    def __init__(self, api_key: Optional[str] = None, db: Optional[Database] = None,
                 config: Optional[Config] = None):
        """Initialize API client."""
        config = config or get_config()
        self.api_key = api_key or config.datagolf_api_key
        self.timeout = config.request_timeout
        self.max_retries = config.max_retries
        self.base_delay = config.retry_base_delay
        self.db = db or Database()
        self._session = requests.Session()

    def _request(self, endpoint: str, params: Optional[Dict] = None, cache_hours: float = 1) -> Any:
        """
        Make API request with caching and bounded retries.

        Returns the decoded payload, which may be empty. Raises ProviderError
        when the request keeps failing or the body is not JSON.
        """
        if not self.api_key:
            raise ValueError(
                "DATAGOLF_API_KEY not configured. "
                "Set the DATAGOLF_API_KEY environment variable. "
                "Get a key at https://datagolf.com/api-access"
            )

        params = dict(params or {})
        params.setdefault("file_format", "json")
        cache_key = f"datagolf:{endpoint}:{json.dumps(params, sort_keys=True)}"
        if cache_hours > 0:
            cached = self.db.get_cache(cache_key)
            if cached:
                logger.debug(f"Using cached data for {endpoint}")
                return cached

        url = f"{self.BASE_URL}{endpoint}"
        params["key"] = self.api_key

        for attempt in range(self.max_retries):
            try:
                response = self._session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()

                try:
                    data = response.json()
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse JSON from {endpoint}: {e}")
                    raise ProviderError(f"Failed to parse JSON from {endpoint}: {e}") from e

                if data and isinstance(data, (dict, list)):
                    if cache_hours > 0:
                        expires = datetime.now() + timedelta(hours=cache_hours)
                        self.db.set_cache(cache_key, data, expires)
                else:
                    logger.warning(f"Empty response from {endpoint}")
                return data
            except requests.RequestException as e:
                status = getattr(getattr(e, "response", None), "status_code", None)
                retryable = status is None or status == 429 or status >= 500
                if retryable and attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(
                        f"API request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay}s..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(f"API request to {endpoint} failed after {attempt + 1} attempts: {e}")
                    raise ProviderError(f"API request failed: {e}") from e

        raise ProviderError(f"API request to {endpoint} was not attempted")

    def _fetch(self, endpoint: str, params: Dict, cache_hours: float) -> FetchResult:
        try:
            data = self._request(endpoint, params=params, cache_hours=cache_hours)
        except ProviderError as e:
            return FetchResult.failure(str(e), endpoint=endpoint)
        if not data:
            return FetchResult.empty(f"Empty response from {endpoint}", endpoint=endpoint)
        return FetchResult.success(data, endpoint=endpoint)

    # =========================================================================
    # Schedule & field
    # =========================================================================

    def get_schedule(self, tour: Tour, window: WeekWindow) -> FetchResult:
        """Events on a tour whose dates intersect the window."""
        code = resolve_tour_code(tour, "schedule")
        if not code:
            return FetchResult.failure(f"No schedule tour code for {tour.value}")
        result = self._fetch(
            "/get-schedule",
            {"tour": code, "season": str(window.start_date.year), "upcoming_only": "no"},
            cache_hours=24,
        )
        if not result.ok:
            return result

        rows = result.data.get("schedule", []) if isinstance(result.data, dict) else result.data
        events = []
        for row in rows or []:
            start = parse_date(row.get("start_date") or row.get("date"))
            event_id = row.get("event_id")
            if start is None or event_id in (None, ""):
                continue
            end = parse_date(row.get("end_date")) or start + timedelta(days=tour.rounds - 1)
            if not window.overlaps(start, end):
                continue
            events.append(TourEvent(
                tour=tour,
                name=row.get("event_name", "").strip(),
                start_date=start,
                end_date=end,
                external_id=str(event_id),
                provider="datagolf",
                location=row.get("location") or row.get("course") or "",
            ))
        if not events:
            return FetchResult.empty(f"No {tour.value} events in window")
        logger.info(f"Found {len(events)} {tour.value} events in window")
        return FetchResult.success(events)

    def get_field(self, tour: Tour, event: TourEvent) -> FetchResult:
        """Current field for an event, as FieldEntry rows."""
        code = resolve_tour_code(tour, "field")
        if not code:
            return FetchResult.failure(f"Field data is not available for {tour.value}")
        result = self._fetch("/field-updates", {"tour": code}, cache_hours=1)
        if not result.ok:
            return result

        data = result.data if isinstance(result.data, dict) else {"field": result.data}
        feed_name = data.get("event_name")
        if not same_event(feed_name, event):
            return FetchResult.failure(
                f"Field feed is for '{feed_name}', not '{event.name}'",
                feed_event=feed_name,
            )

        # Duplicate names are passed through; the pipeline logs and resolves them
        entries = []
        for row in data.get("field", []):
            name = row.get("player_name", "")
            key = canonical_name(name)
            if not key:
                continue
            entries.append(FieldEntry(
                event_key=event.key,
                event_id=event.id,
                player_name=display_name(name),
                canonical_name=key,
                status=_field_status(row),
            ))
        if not entries:
            return FetchResult.empty(f"No field entries for {event.name}")
        return FetchResult.success(entries)

    # =========================================================================
    # Predictions & ratings
    # =========================================================================

    def get_pre_tournament_preds(self, tour: Tour, event: TourEvent) -> FetchResult:
        """
        Vendor win/top-N/make-cut probabilities for the tour's current event.
        Returns PlayerPrediction rows.
        """
        code = resolve_tour_code(tour, "preds")
        if not code:
            return FetchResult.failure(f"No predictions tour code for {tour.value}")
        result = self._fetch(
            "/preds/pre-tournament",
            {"tour": code, "add_position": "1", "dead_heat": "1", "odds_format": "percent"},
            cache_hours=1,
        )
        if not result.ok:
            return result

        data = result.data
        if not same_event(data.get("event_name"), event):
            return FetchResult.empty(
                f"Predictions are for '{data.get('event_name')}', not '{event.name}'"
            )
        rows = data.get("baseline_history_fit") or data.get("baseline") or []
        predictions = [
            PlayerPrediction(
                player_name=display_name(row.get("player_name", "")),
                win=_pred(row, "win"),
                top_5=_pred(row, "top_5"),
                top_10=_pred(row, "top_10"),
                top_20=_pred(row, "top_20"),
                make_cut=_pred(row, "make_cut"),
            )
            for row in rows
            if row.get("player_name")
        ]
        if not predictions:
            return FetchResult.empty(f"No predictions for {event.name}")
        logger.info(f"Fetched predictions for {len(predictions)} players")
        return FetchResult.success(predictions)

    def get_skill_ratings(self) -> FetchResult:
        """Canonical name -> strokes-gained total rating."""
        result = self._fetch("/preds/skill-ratings", {"display": "value"}, cache_hours=24)
        if not result.ok:
            return result
        ratings = {}
        for player in result.data.get("players", []):
            key = canonical_name(player.get("player_name", ""))
            value = player.get("sg_total")
            if key and value is not None:
                ratings[key] = float(value)
        if not ratings:
            return FetchResult.empty("No skill ratings returned")
        return FetchResult.success(ratings)

    # =========================================================================
    # Live scoring
    # =========================================================================

    def get_live_leaderboard(self, tour: Tour, event: TourEvent) -> FetchResult:
        """In-play leaderboard rows for an event (never cached)."""
        code = resolve_tour_code(tour, "live")
        if not code:
            return FetchResult.failure(f"No live tour code for {tour.value}")
        result = self._fetch(
            "/preds/in-play",
            {"tour": code, "dead_heat": "no", "odds_format": "percent"},
            cache_hours=0,
        )
        if not result.ok:
            return result

        info = result.data.get("info", {}) if isinstance(result.data, dict) else {}
        feed_name = info.get("event_name")
        if not same_event(feed_name, event):
            return FetchResult.empty(
                f"Live feed is for '{feed_name}', not '{event.name}'",
                feed_event=feed_name, mismatch=True,
            )
        rows = result.data.get("data", []) if isinstance(result.data, dict) else []
        current_round = _int_or_none(info.get("current_round"))
        entries = []
        for row in rows:
            entry = parse_leaderboard_row(row, rounds=tour.rounds)
            if entry.current_round is None:
                entry.current_round = current_round
            entries.append(entry)
        if not entries:
            return FetchResult.empty(f"No live scoring for {event.name}")
        return FetchResult.success(entries, current_round=current_round, feed_event=feed_name)

    # =========================================================================
    # Odds
    # =========================================================================

    def get_outright_odds(self, tour: Tour, market: Market) -> FetchResult:
        """Outright prices for the tour's current event as an OddsBundle."""
        code = resolve_tour_code(tour, "odds")
        dg_market = DATAGOLF_MARKETS.get(market)
        if not dg_market:
            return FetchResult.failure(f"Market {market.value} is not an outright market")
        if not endpoint_supports("/betting-tools/outrights", code):
            return FetchResult.failure(f"Outrights not supported for {tour.value}")
        result = self._fetch(
            "/betting-tools/outrights",
            {"tour": code, "market": dg_market, "odds_format": "decimal"},
            cache_hours=0.25,
        )
        if not result.ok:
            return result

        data = result.data
        fetched_at = parse_timestamp(data.get("last_updated"))
        offers = []
        for row in data.get("odds", []):
            name = display_name(row.get("player_name", ""))
            if not name:
                continue
            for book, price in row.items():
                if book in _NON_BOOK_KEYS or not isinstance(price, (int, float, str)):
                    continue
                odds = _decimal(price)
                if odds is None:
                    continue
                offers.append(OddsOffer(
                    selection=name,
                    bookmaker=normalize_book_key(book),
                    odds_decimal=odds,
                    odds_display=decimal_to_fractional(odds),
                    fetched_at=fetched_at,
                ))
        if not offers:
            return FetchResult.empty(f"No {market.value} odds for {tour.value}")
        bundle = OddsBundle(
            event_name=data.get("event_name", ""),
            event_date=parse_date(data.get("event_date") or data.get("start_date")),
            markets=[OddsMarket(market=market, offers=offers)],
            provider="datagolf",
            tour=tour,
        )
        return FetchResult.success(bundle)

    def get_matchup_odds(self, tour: Tour) -> FetchResult:
        """Tournament matchup prices as an OddsBundle; each side is one offer."""
        code = resolve_tour_code(tour, "odds")
        if not endpoint_supports("/betting-tools/matchups", code):
            return FetchResult.failure(f"Matchups not supported for {tour.value}")
        result = self._fetch(
            "/betting-tools/matchups",
            {"tour": code, "market": "tournament_matchups", "odds_format": "decimal"},
            cache_hours=0.25,
        )
        if not result.ok:
            return result

        data = result.data
        fetched_at = parse_timestamp(data.get("last_updated"))
        offers = []
        rows = data.get("match_list", []) if isinstance(data.get("match_list"), list) else []
        for row in rows:
            p1 = display_name(row.get("p1_player_name", ""))
            p2 = display_name(row.get("p2_player_name", ""))
            if not p1 or not p2:
                continue
            for book, prices in (row.get("odds") or {}).items():
                if book == "datagolf" or not isinstance(prices, dict):
                    continue
                for side, name, opponent in (("p1", p1, p2), ("p2", p2, p1)):
                    odds = _decimal(prices.get(side))
                    if odds is None:
                        continue
                    offers.append(OddsOffer(
                        selection=name,
                        opponent=opponent,
                        bookmaker=normalize_book_key(book),
                        odds_decimal=odds,
                        odds_display=decimal_to_fractional(odds),
                        fetched_at=fetched_at,
                    ))
        if not offers:
            return FetchResult.empty(f"No matchup odds for {tour.value}")
        return FetchResult.success(OddsBundle(
            event_name=data.get("event_name", ""),
            event_date=None,
            markets=[OddsMarket(market=Market.TOURNAMENT_MATCHUP, offers=offers)],
            provider="datagolf",
            tour=tour,
        ))


def _pred(row: Dict[str, Any], market: str) -> Any:
    """Prediction column; older payloads suffix it with _prob."""
    value = row.get(market)
    return value if value is not None else row.get(f"{market}_prob")


def _decimal(value: Any) -> Optional[float]:
    try:
        odds = float(value)
    except (TypeError, ValueError):
        return None
    return odds if odds > 1.0 else None


def get_api(config: Optional[Config] = None, db: Optional[Database] = None) -> DataGolfAPI:
    """Get Data Golf API client instance."""
    return DataGolfAPI(db=db, config=config)


class OddsAPI:
    """
    Outright odds from The Odds API (https://the-odds-api.com/).
    Each golf sport key is one tournament; its outrights become a win bundle.
    """

    BASE_URL = "https://api.the-odds-api.com/v4"

    def __init__(self, api_key: Optional[str] = None, config: Optional[Config] = None):
        config = config or get_config()
        self.api_key = api_key or config.odds_api_key
        self.timeout = config.request_timeout
        self._session = requests.Session()

    def is_configured(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key)

    def _get(self, path: str, params: Dict[str, Any]) -> FetchResult:
        try:
            response = self._session.get(
                f"{self.BASE_URL}{path}",
                params={"apiKey": self.api_key, **params},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return FetchResult.success(response.json())
        except requests.RequestException as e:
            logger.error(f"Odds API error: {e}")
            return FetchResult.failure(f"Odds API error: {e}")
        except ValueError as e:
            logger.error(f"Odds API returned invalid JSON: {e}")
            return FetchResult.failure(f"Odds API returned invalid JSON: {e}")

    def get_golf_sports(self) -> FetchResult:
        """Active golf sport keys, e.g. 'golf_masters_tournament_winner'."""
        if not self.api_key:
            return FetchResult.failure("ODDS_API_KEY not configured")
        result = self._get("/sports", {})
        if not result.ok:
            return result
        sports = [
            {"key": s["key"], "title": s.get("title", "")}
            for s in result.data
            if "golf" in s.get("key", "").lower() and s.get("active")
        ]
        return FetchResult.success(sports) if sports else FetchResult.empty("No active golf markets")

    def get_outright_bundles(self, regions: str = "uk,us") -> FetchResult:
        """Win-market OddsBundles for every active golf tournament."""
        sports = self.get_golf_sports()
        if not sports.ok:
            return sports

        bundles = []
        for sport in sports.data:
            result = self._get(
                f"/sports/{sport['key']}/odds",
                {"regions": regions, "markets": "outrights", "oddsFormat": "decimal"},
            )
            if not result.ok:
                logger.warning(f"Skipping {sport['key']}: {result.error}")
                continue
            for event in result.data or []:
                bundle = self._parse_event(event, sport.get("title", ""))
                if bundle.markets and bundle.markets[0].offers:
                    bundles.append(bundle)
        if not bundles:
            return FetchResult.empty("No golf outright odds available")
        return FetchResult.success(bundles)

    def _parse_event(self, event: Dict[str, Any], title: str) -> OddsBundle:
        offers = []
        for bookmaker in event.get("bookmakers", []):
            book = normalize_book_key(bookmaker.get("key", ""))
            for market in bookmaker.get("markets", []):
                if market.get("key") != "outrights":
                    continue
                fetched_at = parse_timestamp(market.get("last_update") or bookmaker.get("last_update"))
                for outcome in market.get("outcomes", []):
                    odds = _decimal(outcome.get("price"))
                    if not outcome.get("name") or odds is None:
                        continue
                    offers.append(OddsOffer(
                        selection=outcome["name"],
                        bookmaker=book,
                        odds_decimal=odds,
                        odds_display=decimal_to_fractional(odds),
                        fetched_at=fetched_at,
                    ))
        return OddsBundle(
            event_name=event.get("sport_title") or title,
            event_date=parse_date(event.get("commence_time")),
            markets=[OddsMarket(market=Market.WIN, offers=offers)],
            provider="the_odds_api",
        )


def get_odds_api(config: Optional[Config] = None) -> OddsAPI:
    """Get Odds API client instance."""
    return OddsAPI(config=config)
