"""Match-quality evaluation for a payable/transaction pair."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from clubledger.domain.entities import Payable, Transaction
from clubledger.domain.similarity import (
    amount_match,
    date_proximity,
    name_similarity,
    round_half_up,
)
from clubledger.utils.date_parser import days_between

AMOUNT_WEIGHT = 0.40
NAME_WEIGHT = 0.35
DATE_WEIGHT = 0.25

AMOUNT_WARNING_THRESHOLD = Decimal("0.50")
NAME_WARNING_THRESHOLD = 50
DEFAULT_DATE_WARNING_DAYS = 45


@dataclass(frozen=True)
class MatchQuality:
    """Weighted confidence for a candidate match, with diagnostics."""

    overall: int
    name_match: int
    date_proximity: int
    amount_match: float
    warnings: list[str] = field(default_factory=list)


def calculate_match_quality(
    payable: Payable,
    transaction: Transaction,
    date_warning_days: int = DEFAULT_DATE_WARNING_DAYS,
    today: Optional[date] = None,
) -> MatchQuality:
    """Score how well a transaction settles a payable.

    The name score is the better of the counterparty and memo comparisons,
    since banking apps often put the payer's name in the free-text memo.

    Args:
        payable: Registration or expense being settled
        transaction: Candidate bank transaction
        date_warning_days: Day gap beyond which a date warning is emitted
        today: Date substituted when the payable has no reference date

    Returns:
        MatchQuality with overall score and warnings
    """
    warnings = []

    transaction_amount = abs(transaction.amount)
    amount_difference = abs(transaction_amount - payable.amount_due)
    amount_score = amount_match(payable.amount_due, transaction_amount)
    if amount_difference > AMOUNT_WARNING_THRESHOLD:
        warnings.append(f"Amount differs by {amount_difference:.2f}")

    payable_name = payable.display_name
    name_score = max(
        name_similarity(payable_name, transaction.counterparty_name),
        name_similarity(payable_name, transaction.communication),
    )
    if name_score < NAME_WARNING_THRESHOLD:
        warnings.append(f"Names differ: {payable_name} != {transaction.counterparty_name}")

    payable_date = payable.reference_date or today or date.today()
    date_score = date_proximity(payable_date, transaction.execution_date)
    days_apart = days_between(payable_date, transaction.execution_date)
    if days_apart > date_warning_days:
        warnings.append(f"Dates far apart: {days_apart} days")

    overall = round_half_up(
        amount_score * AMOUNT_WEIGHT + name_score * NAME_WEIGHT + date_score * DATE_WEIGHT
    )

    return MatchQuality(
        overall=overall,
        name_match=name_score,
        date_proximity=date_score,
        amount_match=amount_score,
        warnings=warnings,
    )
