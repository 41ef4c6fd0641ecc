"""
Player name canonicalisation and cross-source resolution.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .models import Player

_NON_WORD = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")
_SUFFIXES = {"jr", "sr", "ii", "iii", "iv"}


def canonical_name(name: str) -> str:
    """
    Matching key for a player name.

    "Scheffler, Scottie" and "Scottie  Scheffler" both become
    "scottie scheffler"; accents and punctuation are dropped.
    """
    if not name:
        return ""
    text = name.strip()
    if "," in text:
        last, _, first = text.partition(",")
        text = f"{first.strip()} {last.strip()}"
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_WORD.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip().lower()
    return text


def display_name(name: str) -> str:
    """Human form of a provider name ("Last, First" -> "First Last")."""
    text = _WHITESPACE.sub(" ", (name or "").strip())
    if "," in text:
        last, _, first = text.partition(",")
        return f"{first.strip()} {last.strip()}".strip()
    return text


def _surname_key(canonical: str) -> Optional[str]:
    parts = [p for p in canonical.split(" ") if p and p not in _SUFFIXES]
    if len(parts) < 2:
        return None
    return f"{parts[0][0]} {parts[-1]}"


@dataclass
class NameResolution:
    """Outcome of resolving a name against known players."""
    query: str
    player: Optional[Player] = None
    method: Optional[str] = None  # exact, alias or fallback
    candidates: List[Player] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.player is not None

    @property
    def ambiguous(self) -> bool:
        return self.player is None and len(self.candidates) > 1

    @property
    def low_confidence(self) -> bool:
        return self.method == "fallback"


class PlayerRegistry:
    """Known players keyed by canonical name, with aliases and a surname fallback."""

    def __init__(self, players: Iterable[Player] = ()):
        self._players: Dict[str, Player] = {}
        self._aliases: Dict[str, str] = {}
        for player in players:
            self.add(player)

    def add(self, player: Player) -> Player:
        existing = self._players.get(player.canonical_name)
        if existing:
            for alias in player.aliases:
                self.add_alias(existing.canonical_name, alias)
            return existing
        self._players[player.canonical_name] = player
        for alias in player.aliases:
            self._aliases[canonical_name(alias)] = player.canonical_name
        return player

    def add_name(self, name: str) -> Player:
        """Register a raw provider name, returning its player."""
        key = canonical_name(name)
        return self.add(Player(canonical_name=key, display_name=display_name(name)))

    def add_alias(self, canonical: str, alias: str):
        key = canonical_name(alias)
        if key and key != canonical and canonical in self._players:
            self._aliases[key] = canonical
            if alias not in self._players[canonical].aliases:
                self._players[canonical].aliases.append(alias)

    def get(self, canonical: str) -> Optional[Player]:
        return self._players.get(canonical)

    def __contains__(self, canonical: str) -> bool:
        return canonical in self._players

    def __len__(self) -> int:
        return len(self._players)

    def players(self) -> List[Player]:
        return list(self._players.values())

    def resolve(self, name: str) -> NameResolution:
        """
        Resolve a name: exact canonical, then alias, then first-initial
        plus surname. A fallback hit on more than one player is ambiguous
        and resolves to nobody.
        """
        key = canonical_name(name)
        result = NameResolution(query=name)
        if not key:
            return result

        if key in self._players:
            result.player = self._players[key]
            result.method = "exact"
            return result

        if key in self._aliases:
            result.player = self._players[self._aliases[key]]
            result.method = "alias"
            return result

        surname = _surname_key(key)
        if surname:
            candidates = [
                p for p in self._players.values()
                if _surname_key(p.canonical_name) == surname
            ]
            result.candidates = candidates
            if len(candidates) == 1:
                result.player = candidates[0]
                result.method = "fallback"
        return result
