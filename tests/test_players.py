"""
Tests for players.py - Name canonicalisation and resolution.
"""

import pytest

from golf_edge.models import Player
from golf_edge.players import PlayerRegistry, canonical_name, display_name


class TestCanonicalName:
    """Tests for canonical_name and display_name."""

    @pytest.mark.parametrize("raw,expected", [
        ("Scheffler, Scottie", "scottie scheffler"),
        ("  Scottie   Scheffler ", "scottie scheffler"),
        ("Åberg, Ludvig", "ludvig aberg"),
        ("Matt Fitzpatrick.", "matt fitzpatrick"),
        ("Davis Love III", "davis love iii"),
        ("", ""),
    ])
    def test_canonical_name(self, raw, expected):
        assert canonical_name(raw) == expected

    def test_display_name_flips_last_first(self):
        assert display_name("McIlroy, Rory") == "Rory McIlroy"
        assert display_name("Rory  McIlroy") == "Rory McIlroy"


class TestPlayerRegistry:
    """Tests for PlayerRegistry.resolve."""

    @pytest.fixture
    def registry(self):
        registry = PlayerRegistry()
        registry.add_name("Scheffler, Scottie")
        registry.add_name("Kim, Tom")
        registry.add_name("Kim, Si Woo")
        registry.add(Player(canonical_name="matt fitzpatrick", display_name="Matt Fitzpatrick",
                            aliases=["Matthew Fitzpatrick"]))
        return registry

    def test_exact(self, registry):
        result = registry.resolve("Scottie Scheffler")
        assert result.method == "exact"
        assert result.player.display_name == "Scottie Scheffler"
        assert not result.low_confidence

    def test_alias(self, registry):
        result = registry.resolve("Fitzpatrick, Matthew")
        assert result.method == "alias"
        assert result.player.canonical_name == "matt fitzpatrick"

    def test_surname_fallback_is_low_confidence(self, registry):
        result = registry.resolve("S. Scheffler")
        assert result.resolved
        assert result.low_confidence

    def test_ambiguous_fallback_resolves_to_nobody(self, registry):
        registry.add_name("Kim, Tony")
        result = registry.resolve("T Kim")
        assert not result.resolved
        assert result.ambiguous
        assert len(result.candidates) == 2

    def test_unknown(self, registry):
        result = registry.resolve("Jon Rahm")
        assert not result.resolved
        assert not result.ambiguous

    def test_add_existing_merges_aliases(self, registry):
        registry.add(Player(canonical_name="tom kim", display_name="Tom Kim", aliases=["Joohyung Kim"]))
        assert len(registry) == 4
        assert registry.resolve("Joohyung Kim").player.canonical_name == "tom kim"
