"""Splitting a bank transaction into child transactions.

A single bank payment sometimes settles several payables (two registrations
paid together, one invoice covering two events). Splitting replaces it, for
linking purposes, with child transactions that each carry part of the amount.
The parent keeps its amount and is flagged ``is_parent``; linking refuses it
from then on.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from clubledger.database.base import Database
from clubledger.domain.entities import Transaction
from clubledger.domain.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    entity_not_found,
)

logger = logging.getLogger(__name__)

MIN_SPLIT_LINES = 2
MAX_DESCRIPTION_LENGTH = 200
SPLIT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class SplitLine:
    """One share of a split transaction.

    ``amount`` is unsigned; children take the sign of their parent.
    """

    amount: Decimal
    description: str


@dataclass(frozen=True)
class SplitResult:
    """Outcome of a split: the updated parent and its new children."""

    parent: Transaction
    children: tuple[Transaction, ...]


def validate_split_lines(transaction_amount: Decimal, lines: list[SplitLine]) -> list[str]:
    """Check split lines against the amount they divide.

    Args:
        transaction_amount: Signed amount of the transaction being split
        lines: Proposed split lines

    Returns:
        Error messages, empty when the lines are valid
    """
    errors = []
    if len(lines) < MIN_SPLIT_LINES:
        errors.append(f"A split needs at least {MIN_SPLIT_LINES} lines")

    for index, line in enumerate(lines, start=1):
        if not line.description or not line.description.strip():
            errors.append(f"Line {index}: description is required")
        elif len(line.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(
                f"Line {index}: description is longer than {MAX_DESCRIPTION_LENGTH} characters"
            )
        if line.amount <= 0:
            errors.append(f"Line {index}: amount must be greater than zero")

    total = sum((abs(line.amount) for line in lines), Decimal("0"))
    target = abs(transaction_amount)
    if abs(total - target) >= SPLIT_TOLERANCE:
        errors.append(
            f"Lines sum to {total:.2f}, transaction amount is {target:.2f} "
            f"(difference {abs(target - total):.2f})"
        )
    return errors


class SplitService:
    """Service for splitting transactions into children."""

    def __init__(self, db: Database):
        """Initialize split service.

        Args:
            db: Database instance
        """
        self.db = db

    def split_transaction(self, transaction_id: str, lines: list[SplitLine]) -> SplitResult:
        """Split a transaction into one child per line.

        Children copy the parent's date, counterparty, account number and
        sequence number; their communication is the line description.

        Args:
            transaction_id: Transaction to split
            lines: Split lines, at least two, summing to the transaction amount

        Returns:
            SplitResult with the updated parent and the created children

        Raises:
            NotFoundError: If the transaction does not exist
            ConflictError: If it is already split or already reconciled
            ValidationError: If the lines are invalid
            PersistenceError: If the store rejects a write
        """
        parent = self.db.get_transaction(transaction_id)
        if parent is None:
            raise NotFoundError(entity_not_found("transaction", transaction_id))
        if parent.is_parent:
            raise ConflictError(f"Transaction {transaction_id} is already split")
        if parent.parent_transaction_id:
            raise ConflictError(f"Transaction {transaction_id} is itself a split line")
        if parent.reconciled or parent.expected_reconciled():
            raise ConflictError(
                f"Transaction {transaction_id} is reconciled; unlink it before splitting"
            )

        errors = validate_split_lines(parent.amount, lines)
        if errors:
            raise ValidationError("; ".join(errors))

        sign = -1 if parent.amount < 0 else 1
        child_ids = []
        for line in lines:
            child_ids.append(
                self.db.create_transaction(
                    amount=sign * abs(line.amount),
                    execution_date=parent.execution_date,
                    counterparty_name=parent.counterparty_name,
                    communication=line.description.strip(),
                    account_number=parent.account_number,
                    sequence_number=parent.sequence_number,
                    parent_transaction_id=parent.id,
                )
            )
        self.db.update_transaction(parent.id, is_parent=True, child_count=len(child_ids))
        logger.info("Split transaction %s into %d children", parent.id, len(child_ids))

        return SplitResult(
            parent=self.db.get_transaction(parent.id),
            children=tuple(self.db.get_transaction(child_id) for child_id in child_ids),
        )

    def list_children(self, transaction_id: str) -> list[Transaction]:
        """Return the child transactions of a split transaction."""
        return [
            t for t in self.db.list_transactions() if t.parent_transaction_id == transaction_id
        ]
