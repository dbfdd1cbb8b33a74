"""Greedy batch matching of unsettled payables against bank transactions."""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from clubledger.database.base import Database
from clubledger.domain.entities import EntityType, MatchedBy, Payable, Transaction
from clubledger.domain.errors import NotFoundError, PersistenceError, entity_not_found
from clubledger.domain.linking import LinkingService
from clubledger.domain.match_quality import MatchQuality, calculate_match_quality
from clubledger.utils.amount_parser import to_decimal

logger = logging.getLogger(__name__)

EXACT_MATCH_THRESHOLD = Decimal("0.01")
EXACT_MATCH_CONFIDENCE = 100
TOLERANCE_MATCH_CONFIDENCE = 90

MIN_SPLIT_RATIO = 2
MAX_SPLIT_RATIO = 10
SPLIT_RATIO_TOLERANCE = Decimal("0.1")

CASH_COMMENT = "Auto-marked as cash payment (no matching transaction)"


@dataclass(frozen=True)
class AutoMatchOptions:
    """Tunable parameters for a batch auto-match run."""

    amount_tolerance: Decimal = Decimal("0.50")
    date_tolerance: int = 45
    auto_mark_cash: bool = False
    auto_link: bool = False


@dataclass(frozen=True)
class AutoMatch:
    payable: Payable
    transaction: Transaction
    confidence: int
    quality: MatchQuality


@dataclass(frozen=True)
class SplitSuggestion:
    """A transaction that looks like several payments of the same price."""

    payable: Payable
    transaction: Transaction
    suggested_splits: int
    message: str


@dataclass
class AutoMatchResult:
    """Outcome of a batch auto-match run."""

    matched: list[AutoMatch] = field(default_factory=list)
    needs_split: list[SplitSuggestion] = field(default_factory=list)
    cash_suggested: list[Payable] = field(default_factory=list)
    unmatched: list[Payable] = field(default_factory=list)
    available_transactions: list[Transaction] = field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    matched_amount: Decimal = Decimal("0")
    linked: int = 0
    cash_marked: int = 0
    failures: int = 0


def is_unsettled(payable: Payable) -> bool:
    return not payable.transaction_id and not payable.paid


def is_candidate(transaction: Transaction) -> bool:
    """Whether a transaction may settle a registration."""
    return (
        transaction.amount > 0
        and not transaction.is_parent
        and not transaction.links_of_type(EntityType.REGISTRATION)
    )


def _split_count(transaction: Transaction, price: Decimal) -> Optional[int]:
    if price <= 0:
        return None
    ratio = transaction.amount / price
    nearest = ratio.to_integral_value(rounding=ROUND_HALF_UP)
    if MIN_SPLIT_RATIO <= ratio <= MAX_SPLIT_RATIO and abs(ratio - nearest) < SPLIT_RATIO_TOLERANCE:
        return int(nearest)
    return None


def match_payables(
    payables: Sequence[Payable],
    transactions: Sequence[Transaction],
    options: Optional[AutoMatchOptions] = None,
) -> AutoMatchResult:
    """Allocate transactions to payables, first match wins.

    Payables already linked or paid and transactions that cannot settle a
    registration are ignored. Payables are processed in the order given; a
    matched transaction leaves the pool at once, while a transaction flagged
    for splitting stays available.

    Args:
        payables: Payables in processing order
        transactions: Candidate transactions
        options: Matching parameters

    Returns:
        AutoMatchResult (no writes are made)
    """
    options = options or AutoMatchOptions()
    tolerance = to_decimal(options.amount_tolerance)
    result = AutoMatchResult()

    unsettled = [p for p in payables if is_unsettled(p)]
    if not unsettled:
        return result

    candidates = [t for t in transactions if is_candidate(t)]
    result.available_transactions = list(candidates)
    result.total_amount = sum((p.amount_due for p in unsettled), Decimal("0"))

    pool = list(candidates)
    for payable in unsettled:
        price = payable.amount_due

        match = next((t for t in pool if abs(t.amount - price) < EXACT_MATCH_THRESHOLD), None)
        confidence = EXACT_MATCH_CONFIDENCE
        if match is None:
            match = next((t for t in pool if abs(t.amount - price) <= tolerance), None)
            confidence = TOLERANCE_MATCH_CONFIDENCE

        if match is not None:
            quality = calculate_match_quality(
                payable, match, date_warning_days=options.date_tolerance
            )
            result.matched.append(AutoMatch(payable, match, confidence, quality))
            result.matched_amount += match.amount
            pool = [t for t in pool if t.id != match.id]
            continue

        split = None
        for transaction in pool:
            splits = _split_count(transaction, price)
            if splits is not None:
                split = SplitSuggestion(
                    payable=payable,
                    transaction=transaction,
                    suggested_splits=splits,
                    message=(
                        f"Transaction of {transaction.amount} should be split into "
                        f"{splits} parts of {price}"
                    ),
                )
                break
        if split is not None:
            result.needs_split.append(split)
            continue

        result.cash_suggested.append(payable)
        result.unmatched.append(payable)

    return result


def _registration_order(payable: Payable) -> tuple[bool, date]:
    reference = payable.reference_date
    return (reference is None, reference or date.min)


class AutoMatchService:
    """Service running the batch auto-matcher against the store."""

    def __init__(self, db: Database, linking: Optional[LinkingService] = None):
        """Initialize auto-match service.

        Args:
            db: Database instance
            linking: Linking service used to commit results (created if omitted)
        """
        self.db = db
        self.linking = linking or LinkingService(db)

    def auto_match_all(
        self, event_id: str, options: Optional[AutoMatchOptions] = None
    ) -> AutoMatchResult:
        """Match the unsettled registrations of an event against all transactions.

        Registrations are processed in registration-date order. With
        ``auto_link`` the matches are committed through the linking protocol;
        with ``auto_mark_cash`` the cash suggestions are marked paid in cash.
        A write failure on one item is logged and counted, and the run goes on.

        Args:
            event_id: Event whose registrations are matched
            options: Matching parameters

        Returns:
            AutoMatchResult

        Raises:
            NotFoundError: If the event doesn't exist
        """
        options = options or AutoMatchOptions()
        if self.db.get_event(event_id) is None:
            raise NotFoundError(entity_not_found("event", event_id))

        registrations = sorted(self.db.list_registrations(event_id), key=_registration_order)
        result = match_payables(registrations, self.db.list_transactions(), options)

        logger.info(
            "Auto-match for event %s: %d matched, %d need split, %d cash suggested",
            event_id,
            len(result.matched),
            len(result.needs_split),
            len(result.cash_suggested),
        )

        if options.auto_link:
            for match in result.matched:
                try:
                    outcome = self.linking.link(
                        EntityType.REGISTRATION,
                        match.payable.id,
                        match.transaction.id,
                        matched_by=MatchedBy.AUTO,
                        confidence=match.confidence,
                    )
                except PersistenceError as e:
                    logger.error("Could not link registration %s: %s", match.payable.id, e)
                    result.failures += 1
                    continue
                if outcome.success:
                    result.linked += 1
                else:
                    result.failures += 1

        if options.auto_mark_cash:
            for payable in result.cash_suggested:
                try:
                    outcome = self.linking.mark_paid_cash(
                        EntityType.REGISTRATION, payable.id, comment=CASH_COMMENT
                    )
                except PersistenceError as e:
                    logger.error("Could not mark registration %s as cash: %s", payable.id, e)
                    result.failures += 1
                    continue
                if outcome.success:
                    result.cash_marked += 1
                else:
                    result.failures += 1

        return result
