"""
Odds book: bookmaker normalisation, allow-listing and best-price selection.
"""

import logging
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import BOOK_KEY_ALIASES, DEFAULT_ALLOWED_BOOKS
from .issues import IssueTracker
from .models import BestPrice, Market, OddsMarket, OddsOffer, Severity
from .players import canonical_name

logger = logging.getLogger(__name__)

MAX_ALT_OFFERS = 5


def normalize_book_key(book: str) -> str:
    """Lowercase, underscore-joined bookmaker key with known aliases folded."""
    key = (book or "").strip().lower().replace("\x00", "")
    key = "_".join(key.split())
    return BOOK_KEY_ALIASES.get(key, key)


def implied_probability(odds_decimal: Optional[float]) -> Optional[float]:
    """1 / decimal odds. No overround removal."""
    if odds_decimal is None or odds_decimal <= 1.0:
        return None
    return 1.0 / odds_decimal


def decimal_to_fractional(odds_decimal: float) -> str:
    """Display form of decimal odds, e.g. 11.0 -> '10/1', 2.5 -> '3/2'."""
    if odds_decimal is None or odds_decimal <= 1.0:
        return "0/1"
    frac = Fraction(odds_decimal - 1.0).limit_denominator(100)
    return f"{frac.numerator}/{frac.denominator}"


def selection_key(name: str, opponent: Optional[str] = None) -> str:
    """Book key for a selection; matchups are keyed with their opponent."""
    key = canonical_name(name)
    if opponent:
        return f"{key}|vs|{canonical_name(opponent)}"
    return key


class OddsBook:
    """
    Current allowed-book prices per market and selection.

    Offers are snapshots; only the most recent offer per
    (selection, bookmaker) counts, and offers older than
    `max_age` relative to `as_of` are treated as stale.
    """

    def __init__(
        self,
        allowed_books: Sequence[str] = DEFAULT_ALLOWED_BOOKS,
        as_of: Optional[datetime] = None,
        max_age: Optional[timedelta] = None,
    ):
        self.allowed_books = frozenset(normalize_book_key(b) for b in allowed_books)
        self.as_of = as_of
        self.max_age = max_age
        # market -> selection key -> bookmaker -> offer
        self._current: Dict[Market, Dict[str, Dict[str, OddsOffer]]] = {}
        self._disallowed: Dict[Market, Dict[str, set]] = {}
        self._names: Dict[str, str] = {}
        self.stale_count = 0

    def add_market(self, market: OddsMarket):
        for offer in market.offers:
            self.add_offer(market.market, offer)

    def add_offer(self, market: Market, offer: OddsOffer):
        if offer.odds_decimal is None or offer.odds_decimal <= 1.0:
            return
        if self._is_stale(offer):
            self.stale_count += 1
            return
        book = normalize_book_key(offer.bookmaker)
        key = selection_key(offer.selection, offer.opponent)
        self._names.setdefault(key, offer.selection)
        if book not in self.allowed_books:
            self._disallowed.setdefault(market, {}).setdefault(key, set()).add(book)
            return

        books = self._current.setdefault(market, {}).setdefault(key, {})
        existing = books.get(book)
        if existing is None or offer.fetched_at > existing.fetched_at:
            books[book] = OddsOffer(
                selection=offer.selection,
                bookmaker=book,
                odds_decimal=offer.odds_decimal,
                fetched_at=offer.fetched_at,
                odds_display=offer.odds_display or decimal_to_fractional(offer.odds_decimal),
                opponent=offer.opponent,
            )

    def _is_stale(self, offer: OddsOffer) -> bool:
        if self.as_of is None or self.max_age is None:
            return False
        return self.as_of - offer.fetched_at > self.max_age

    def markets(self) -> List[Market]:
        return [m for m in Market if m in self._current or m in self._disallowed]

    def selections(self, market: Market) -> List[str]:
        """Selection keys with at least one offer, allowed or not."""
        keys = set(self._current.get(market, {})) | set(self._disallowed.get(market, {}))
        return sorted(keys)

    def offers(self, market: Market, key: str) -> List[OddsOffer]:
        """Current allowed offers, best price first."""
        books = self._current.get(market, {}).get(key, {})
        return sorted(books.values(), key=_price_order)

    def disallowed_books(self, market: Market, key: str) -> List[str]:
        return sorted(self._disallowed.get(market, {}).get(key, set()))

    def best_price(self, market: Market, key: str) -> Optional[BestPrice]:
        """
        Maximum decimal odds among allowed books. Equal prices go to the
        earliest fetch, then to the bookmaker key.
        """
        ranked = self.offers(market, key)
        if not ranked:
            return None
        best = ranked[0]
        return BestPrice(
            selection=best.selection,
            bookmaker=best.bookmaker,
            odds_decimal=best.odds_decimal,
            odds_display=best.odds_display,
            fetched_at=best.fetched_at,
            implied_probability=implied_probability(best.odds_decimal),
            alternatives=ranked[1:1 + MAX_ALT_OFFERS],
        )

    def best_prices(
        self,
        market: Market,
        issues: Optional[IssueTracker] = None,
        tour: Optional[str] = None,
    ) -> Dict[str, BestPrice]:
        """Best price per selection; selections without an allowed book are logged."""
        prices = {}
        for key in self.selections(market):
            price = self.best_price(market, key)
            if price:
                prices[key] = price
            elif issues is not None:
                issues.log(
                    "odds-book",
                    f"No allowed bookmaker prices {self._names.get(key, key)} ({market.value})",
                    severity=Severity.INFO,
                    tour=tour,
                    evidence={"selection": key, "market": market.value,
                              "books": self.disallowed_books(market, key)},
                    code="ODDS_BOOK_NOT_ALLOWED",
                )
        return prices


def _price_order(offer: OddsOffer) -> Tuple[float, datetime, str]:
    return (-offer.odds_decimal, offer.fetched_at, offer.bookmaker)


def build_book(
    markets: Iterable[OddsMarket],
    allowed_books: Sequence[str],
    as_of: Optional[datetime] = None,
    max_age_hours: Optional[float] = None,
) -> OddsBook:
    """Odds book over a set of markets."""
    max_age = timedelta(hours=max_age_hours) if max_age_hours else None
    book = OddsBook(allowed_books, as_of=as_of, max_age=max_age)
    for market in markets:
        book.add_market(market)
    if book.stale_count:
        logger.info(f"Ignored {book.stale_count} stale odds offers")
    return book
