"""Tests for name, date and amount scoring."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from clubledger.domain.similarity import (
    amount_match,
    date_proximity,
    name_similarity,
    normalize_name,
    round_half_up,
)


class TestNameSimilarity:
    """Tests for name_similarity."""

    def test_exact_match(self):
        assert name_similarity("Jean Dupont", "Jean Dupont") == 100

    def test_case_titles_and_accents_ignored(self):
        assert name_similarity("Mr Jean Dupont", "jean dupont") == 100
        assert name_similarity("José", "jose") == 100
        assert name_similarity("Jean-Pierre Dupont", "Jean Pierre Dupont") == 100

    def test_containment(self):
        assert name_similarity("Dupont", "Jean Dupont") == 90
        assert name_similarity("Jean Dupont", "Dupont") == 90

    @pytest.mark.parametrize(
        "name1,name2",
        [
            ("Dupont Jean", "Jean Dupont"),
            ("Jean Dupont", "Dupont Jean"),
            ("Marie Lambert", "LAMBERT MARIE"),
        ],
    )
    def test_inverted_order(self, name1, name2):
        """Bank counterparties often read "Surname Firstname"."""
        assert name_similarity(name1, name2) == 95

    def test_one_exact_word(self):
        assert name_similarity("Jean Dupont", "Marie Dupont") == 80

    def test_partial_words_only(self):
        assert name_similarity("Jean Dupont", "Jeanne Duponteau") == 70

    def test_character_fallback_is_capped(self):
        assert name_similarity("Dupond", "Dupont") == 50

    def test_no_overlap(self):
        assert name_similarity("abc", "xyz") == 0

    def test_empty_input(self):
        assert name_similarity("", "Jean Dupont") == 0
        assert name_similarity("Jean Dupont", "") == 0


def test_normalize_name():
    assert normalize_name("Mme Hélène Van-Damme") == "helenevandamme"


def test_round_half_up():
    assert round_half_up(95.5) == 96
    assert round_half_up(95.49) == 95
    assert round_half_up(0.5) == 1


class TestDateProximity:
    """Tests for date_proximity."""

    @pytest.mark.parametrize(
        "days,expected",
        [(0, 100), (3, 90), (4, 75), (7, 75), (14, 60), (30, 40), (60, 20), (61, 0)],
    )
    def test_steps(self, days, expected):
        base = date(2024, 3, 1)
        assert date_proximity(base, base + timedelta(days=days)) == expected

    def test_symmetric(self):
        assert date_proximity(date(2024, 3, 10), date(2024, 3, 1)) == 60


class TestAmountMatch:
    """Tests for amount_match."""

    def test_within_one_cent(self):
        assert amount_match(Decimal("7.00"), Decimal("7.01")) == 100

    def test_linear_decay(self):
        assert amount_match(Decimal("10.00"), Decimal("9.00")) == pytest.approx(80.0)

    def test_floor_at_zero(self):
        assert amount_match(Decimal("7.00"), Decimal("14.00")) == 0

    def test_zero_expected(self):
        assert amount_match(Decimal("0"), Decimal("5.00")) == 0
