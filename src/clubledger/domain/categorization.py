"""Categorization of bank transactions into accounting categories.

Two mechanisms work side by side:

* ``categorize`` applies fixed heuristics (keyword rules, known
  counterparties, typical amounts) and returns the most confident result.
* The learned-pattern store records every categorization a user confirms,
  keyed by a primary keyword and a rounded amount, and ``get_suggestions``
  replays the most used patterns for similar transactions.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from clubledger.database.base import Database
from clubledger.domain.entities import (
    CategorizationPattern,
    CategorizationResult,
    PatternSuggestion,
    Transaction,
)
from clubledger.domain.errors import NotFoundError, PersistenceError, entity_not_found
from clubledger.domain.similarity import strip_accents

logger = logging.getLogger(__name__)

EVENT_CATEGORY = "evenement"
UNKNOWN_KEYWORD = "inconnu"
DEFAULT_IMPORT_CATEGORY = "autre"
MAX_KEYWORDS = 5
SUGGESTION_LIMIT = 3

# Keywords this short only match as whole words ("rc" must not fire inside "marc")
WHOLE_WORD_MAX_LENGTH = 3


@dataclass(frozen=True)
class CategorizationRule:
    keywords: tuple[str, ...]
    category: str
    account_code: str
    confidence: int


# Evaluated in order; an empty account code is resolved from the sign and text
RULES = (
    CategorizationRule(("cotisation membre", "cotisation annuelle", "adhesion"), "cotisation", "730-00-712", 95),
    CategorizationRule(("lifras cotisation", "lifras club"), "cotisation", "730-00-610", 98),
    CategorizationRule(("lifras membre", "licence lifras", "febras"), "cotisation", "730-00-611", 95),
    CategorizationRule(("piscine", "location piscine", "woluwe sport", "poseidon"), "piscine", "610-00-621", 95),
    CategorizationRule(("compresseur", "gonflage", "air comprime"), "materiel", "612-00-623", 90),
    CategorizationRule(
        ("materiel plongee", "detendeur", "palmes", "masque", "combinaison"), "materiel", "612-00-624", 85
    ),
    CategorizationRule(("calyfiesta", "soiree annuelle", "fete du club"), EVENT_CATEGORY, "", 95),
    CategorizationRule(("sortie mer", "ecole de mer", "zeeland", "zelande"), EVENT_CATEGORY, "", 90),
    CategorizationRule(("sortie plongee", "week-end plongee", "voyage plongee"), EVENT_CATEGORY, "", 85),
    CategorizationRule(
        ("formation", "brevet", "cours", "n1", "n2", "n3", "p1", "p2", "p3", "moniteur"),
        "formation",
        "616-00-645",
        90,
    ),
    CategorizationRule(("ovh", "site web", "hebergement", "domaine", "hosting"), "administration", "614-00-643", 98),
    CategorizationRule(
        ("banque", "frais bancaire", "commission", "frais de compte"), "frais_bancaires", "657-00-660", 95
    ),
    CategorizationRule(("assurance", "ethias", "rc", "responsabilite civile"), "assurance", "611-00-616", 95),
    CategorizationRule(
        ("subside", "subsidie", "commune", "communal", "adeps", "sport"), "subside", "15-000-770", 95
    ),
)

KNOWN_COUNTERPARTY_CONFIDENCE = 90
KNOWN_COUNTERPARTIES = {
    "ovh": ("administration", "614-00-643"),
    "ethias": ("assurance", "611-00-616"),
    "woluwe sport": ("piscine", "610-00-621"),
    "poseidon": ("piscine", "610-00-621"),
    "commune": ("subside", "15-000-770"),
    "lifras": ("cotisation", None),
}

TYPICAL_MEMBERSHIP_AMOUNTS = {Decimal("195"), Decimal("160"), Decimal("180"), Decimal("70")}
POOL_RENTAL_RANGE = (Decimal("500"), Decimal("600"))

PRIORITY_KEYWORDS = (
    "inscription",
    "cotisation",
    "sortie",
    "formation",
    "piscine",
    "materiel",
    "calyfiesta",
    "croisette",
    "zeeland",
    "zelande",
    "lifras",
    "febras",
    "subside",
    "assurance",
    "ovh",
)


@dataclass(frozen=True)
class PatternImportStats:
    imported: int = 0
    skipped: int = 0
    errors: int = 0


def normalize_text(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    return re.sub(r"\s+", " ", strip_accents(text.lower())).strip()


def contains_keyword(text: str, keyword: str) -> bool:
    """Whether ``keyword`` occurs in ``text``.

    Longer keywords match anywhere, so plurals ("frais bancaires") and
    inflections still hit; short ones must stand as a word of their own.
    """
    if len(keyword) > WHOLE_WORD_MAX_LENGTH:
        return keyword in text
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


def extract_keywords(communication: str) -> list[str]:
    """Return up to five words longer than three characters."""
    if not communication:
        return []
    words = [w for w in normalize_text(communication).split(" ") if len(w) > 3]
    return words[:MAX_KEYWORDS]


def extract_primary_keyword(communication: str) -> str:
    """Pick the word that best identifies the kind of payment."""
    if not communication:
        return UNKNOWN_KEYWORD

    normalized = normalize_text(communication)
    for keyword in PRIORITY_KEYWORDS:
        if keyword in normalized:
            return keyword

    words = [w for w in normalized.split(" ") if len(w) > 3]
    return words[0] if words else UNKNOWN_KEYWORD


def round_amount(amount: Decimal) -> int:
    """Bucket an amount so that near-identical payments share a pattern.

    Below 50 the amount is rounded to a unit, below 200 to the nearest ten,
    and above that to the nearest fifty.
    """
    absolute = abs(amount)

    def nearest(value: Decimal) -> int:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    if absolute < 50:
        return nearest(absolute)
    if absolute < 200:
        return nearest(absolute / 10) * 10
    return nearest(absolute / 50) * 50


def pattern_id_for(primary_keyword: str, rounded_amount: int, account_code: str) -> str:
    """Composite key of a learned pattern, e.g. "cotisation_70_730_00_712"."""
    safe_code = re.sub(r"[^a-z0-9]", "_", account_code, flags=re.IGNORECASE)
    return f"{primary_keyword}_{rounded_amount}_{safe_code}"


def _event_account_code(search_text: str, is_expense: bool) -> str:
    if contains_keyword(search_text, "calyfiesta"):
        return "664-00-650" if is_expense else "664-00-750"
    if contains_keyword(search_text, "mer"):
        return "617-00-630" if is_expense else "617-00-730"
    return "618-00-632" if is_expense else "618-00-732"


def categorize_by_rules(search_text: str, is_expense: bool) -> CategorizationResult:
    best = CategorizationResult()
    for rule in RULES:
        for keyword in rule.keywords:
            if not contains_keyword(search_text, keyword):
                continue
            if rule.confidence > best.confidence:
                account_code = rule.account_code
                if rule.category == EVENT_CATEGORY and not account_code:
                    account_code = _event_account_code(search_text, is_expense)
                best = CategorizationResult(
                    confidence=rule.confidence,
                    category=rule.category,
                    account_code=account_code,
                    reason=f'Keyword detected: "{keyword}"',
                )
    return best


def categorize_by_counterparty(counterparty_name: str, is_expense: bool) -> CategorizationResult:
    name = normalize_text(counterparty_name or "")
    for supplier, (category, account_code) in KNOWN_COUNTERPARTIES.items():
        if supplier in name:
            if account_code is None:
                account_code = "730-00-610" if is_expense else "730-00-711"
            return CategorizationResult(
                confidence=KNOWN_COUNTERPARTY_CONFIDENCE,
                category=category,
                account_code=account_code,
                reason=f"Known counterparty: {supplier}",
            )
    return CategorizationResult()


def categorize_by_amount(amount: Decimal) -> CategorizationResult:
    absolute = abs(amount)
    if absolute in TYPICAL_MEMBERSHIP_AMOUNTS:
        return CategorizationResult(
            confidence=70,
            category="cotisation",
            account_code="730-00-712" if amount > 0 else "730-00-612",
            reason=f"Typical membership fee amount: {absolute}",
        )

    low, high = POOL_RENTAL_RANGE
    if low <= absolute <= high and amount < 0:
        return CategorizationResult(
            confidence=60,
            category="piscine",
            account_code="610-00-621",
            reason=f"Typical pool rental amount: {absolute}",
        )

    return CategorizationResult()


def categorize(transaction: Transaction) -> CategorizationResult:
    """Guess the category and account code of a transaction.

    Keyword rules, known counterparties and typical amounts are evaluated
    independently; the most confident result wins and ties go to the
    earlier heuristic.

    Args:
        transaction: Transaction to categorize

    Returns:
        CategorizationResult (confidence 0 when nothing applies)
    """
    is_expense = transaction.amount < 0
    search_text = normalize_text(
        f"{transaction.counterparty_name} {transaction.communication} {transaction.details}"
    )

    best = categorize_by_rules(search_text, is_expense)
    for candidate in (
        categorize_by_counterparty(transaction.counterparty_name, is_expense),
        categorize_by_amount(transaction.amount),
    ):
        if candidate.confidence > best.confidence:
            best = candidate
    return best


class CategorizationService:
    """Service for categorizing transactions and learning from confirmations."""

    def __init__(self, db: Database):
        """Initialize categorization service.

        Args:
            db: Database instance
        """
        self.db = db

    def categorize(self, transaction: Transaction) -> CategorizationResult:
        """Guess the category and account code of a transaction."""
        return categorize(transaction)

    def categorize_by_id(self, transaction_id: str) -> CategorizationResult:
        """Categorize a stored transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(entity_not_found("transaction", transaction_id))
        return categorize(transaction)

    def learn_from_user_input(
        self, transaction: Transaction, category: str, account_code: str
    ) -> Optional[CategorizationPattern]:
        """Record a categorization confirmed by a user.

        Creates the pattern for (primary keyword, rounded amount, account
        code) or increments its use count.

        Args:
            transaction: Transaction the user categorized
            category: Chosen category
            account_code: Chosen account code

        Returns:
            The stored pattern, or None if category or account code is missing

        Raises:
            PersistenceError: If the pattern cannot be written
        """
        if not category or not account_code:
            logger.warning("Not learning from transaction %s: missing category or account code", transaction.id)
            return None

        primary_keyword = extract_primary_keyword(transaction.communication)
        keywords = tuple(extract_keywords(transaction.communication))
        rounded = round_amount(transaction.amount)
        pattern_id = pattern_id_for(primary_keyword, rounded, account_code)
        now = datetime.now()

        existing = self.db.get_pattern(pattern_id)
        if existing is None:
            pattern = CategorizationPattern(
                id=pattern_id,
                primary_keyword=primary_keyword,
                keywords=keywords,
                rounded_amount=rounded,
                category=category,
                account_code=account_code,
                use_count=1,
                last_used=now,
                created_at=now,
                counterparty_normalized=normalize_text(transaction.counterparty_name),
            )
            logger.info("Created categorization pattern %s", pattern_id)
        else:
            pattern = CategorizationPattern(
                id=existing.id,
                primary_keyword=existing.primary_keyword,
                keywords=keywords or existing.keywords,
                rounded_amount=existing.rounded_amount,
                category=existing.category,
                account_code=existing.account_code,
                use_count=existing.use_count + 1,
                last_used=now,
                created_at=existing.created_at,
                counterparty_normalized=existing.counterparty_normalized,
            )
            logger.info("Updated categorization pattern %s (used %d times)", pattern_id, pattern.use_count)

        self.db.save_pattern(pattern)
        return pattern

    def apply_category(
        self, transaction_id: str, category: str, account_code: str
    ) -> Optional[CategorizationPattern]:
        """Store a user's categorization on a transaction and learn from it.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(entity_not_found("transaction", transaction_id))

        self.db.update_transaction(transaction_id, category=category, account_code=account_code)
        return self.learn_from_user_input(transaction, category, account_code)

    def get_suggestions(self, transaction: Transaction) -> list[PatternSuggestion]:
        """Suggest categorizations from the learned patterns.

        Lookups are tried in order (keyword and rounded amount, keyword
        alone, then normalized counterparty name for older patterns) and
        the first non-empty one is returned, most used first.

        Args:
            transaction: Transaction to find suggestions for

        Returns:
            Up to three suggestions
        """
        if not transaction.communication and not transaction.amount:
            return []

        primary_keyword = extract_primary_keyword(transaction.communication)
        rounded = round_amount(transaction.amount)

        patterns = self.db.find_patterns(
            primary_keyword=primary_keyword, rounded_amount=rounded, limit=SUGGESTION_LIMIT
        )
        if patterns:
            reason = f'Keyword "{primary_keyword}" and amount {rounded}'
            return self._to_suggestions(patterns, reason)

        patterns = self.db.find_patterns(primary_keyword=primary_keyword, limit=SUGGESTION_LIMIT)
        if patterns:
            return self._to_suggestions(patterns, f'Keyword "{primary_keyword}"')

        if transaction.counterparty_name:
            patterns = self.db.find_patterns(
                counterparty_normalized=normalize_text(transaction.counterparty_name),
                limit=SUGGESTION_LIMIT,
            )
            if patterns:
                reason = f'Counterparty "{transaction.counterparty_name}" (older pattern)'
                return self._to_suggestions(patterns, reason)

        logger.debug("No learned suggestion for %s (%s)", primary_keyword, rounded)
        return []

    def _to_suggestions(
        self, patterns: list[CategorizationPattern], reason: str
    ) -> list[PatternSuggestion]:
        return [
            PatternSuggestion(
                category=p.category,
                account_code=p.account_code,
                count=p.use_count or 1,
                match_reason=reason,
            )
            for p in patterns
        ]

    def import_patterns_from_transactions(self) -> PatternImportStats:
        """Seed the pattern store from already categorized transactions.

        Transactions without an account code or counterparty, and split
        parents, are skipped. A write failure is counted and the import goes
        on.

        Returns:
            PatternImportStats with imported, skipped and error counts
        """
        imported = skipped = errors = 0

        for transaction in self.db.list_transactions():
            if not transaction.account_code or not transaction.counterparty_name:
                skipped += 1
                continue
            if transaction.is_parent:
                skipped += 1
                continue

            try:
                self.learn_from_user_input(
                    transaction,
                    transaction.category or DEFAULT_IMPORT_CATEGORY,
                    transaction.account_code,
                )
            except PersistenceError as e:
                logger.error("Could not import pattern from transaction %s: %s", transaction.id, e)
                errors += 1
                continue
            imported += 1

        logger.info(
            "Pattern import complete: %d imported, %d skipped, %d errors", imported, skipped, errors
        )
        return PatternImportStats(imported=imported, skipped=skipped, errors=errors)
