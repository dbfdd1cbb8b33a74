"""Scoring functions used to compare a payable with a bank transaction.

All scores are integers from 0 to 100. The functions are pure and take no
store, so the match-quality evaluator and the auto-matcher can call them on
in-memory entities.
"""

import math
import re
import unicodedata
from datetime import date
from decimal import Decimal

from clubledger.utils.date_parser import days_between

TITLE_PATTERN = re.compile(r"\b(mr|mme|mlle|dr|prof|m\.|mme\.|dr\.)\b")
WORD_SEPARATOR = re.compile(r"[\s-]+")

# Upper bound for the character-difference fallback
FUZZY_CAP = 50


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_name(name: str) -> str:
    """Lowercase, drop titles, whitespace, hyphens and accents."""
    text = TITLE_PATTERN.sub("", name.lower())
    text = re.sub(r"\s+", "", text).replace("-", "")
    return strip_accents(text)


def name_words(name: str) -> list[str]:
    """Split a name into words on spaces and hyphens, ignoring single letters."""
    text = TITLE_PATTERN.sub("", name.lower())
    return [w for w in WORD_SEPARATOR.split(text) if len(w) > 1]


def _char_difference_score(n1: str, n2: str) -> int:
    max_len = max(len(n1), len(n2))
    if max_len == 0:
        return 0

    distance = sum(1 for c1, c2 in zip(n1, n2) if c1 != c2)
    distance += abs(len(n1) - len(n2))

    similarity = max(0.0, 100 - (distance / max_len) * 100)
    return round_half_up(min(similarity, FUZZY_CAP))


def name_similarity(name1: str, name2: str) -> int:
    """Score how likely two strings name the same person.

    Bank counterparty fields often read "Surname Firstname", so an inverted
    word order scores nearly as high as an exact match.

    Args:
        name1: First name string (e.g. a registration's display name)
        name2: Second name string (e.g. a counterparty or memo)

    Returns:
        Similarity from 0 to 100
    """
    if not name1 or not name2:
        return 0

    n1 = normalize_name(name1)
    n2 = normalize_name(name2)

    if n1 == n2:
        return 100

    if n1 in n2 or n2 in n1:
        return 90

    words1 = name_words(name1)
    words2 = list(reversed(name_words(name2)))

    if "".join(words1) == "".join(words2):
        return 95

    matching_words = 0
    perfect_matches = 0
    for w1 in words1:
        for w2 in words2:
            if w1 == w2:
                perfect_matches += 1
                matching_words += 1
                break
            if w1 in w2 or w2 in w1:
                matching_words += 1
                break

    longest = max(len(words1), len(words2))
    if perfect_matches > 0:
        return round_half_up(70 + (perfect_matches / longest) * 20)

    if matching_words > 0:
        return round_half_up((matching_words / longest) * 70)

    return _char_difference_score(n1, n2)


def date_proximity(date1: date, date2: date) -> int:
    """Step score over the absolute number of days between two dates."""
    days = days_between(date1, date2)

    if days == 0:
        return 100
    if days <= 3:
        return 90
    if days <= 7:
        return 75
    if days <= 14:
        return 60
    if days <= 30:
        return 40
    if days <= 60:
        return 20
    return 0


def amount_match(expected: Decimal, actual: Decimal) -> float:
    """Score how closely an actual amount matches the expected one.

    A difference of at most one cent scores 100; beyond that the score decays
    linearly and reaches 0 once the difference is half the expected amount.
    """
    difference = abs(actual - expected)
    if difference <= Decimal("0.01"):
        return 100.0
    if expected == 0:
        return 0.0
    return max(0.0, 100 - float(difference / abs(expected)) * 200)
