"""Linking protocol between payables and bank transactions.

A payable (registration or expense) and the transaction that settles it
reference each other: the payable holds ``transaction_id`` and the
transaction holds a link record in ``matched_entities``. The store enforces
neither side, so every write to one side goes through this service together
with the matching write to the other side.

Validation failures are reported as a ``LinkResult`` with a ``LinkFailure``
reason and perform no writes. Persistence errors propagate to the caller.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from clubledger.database.base import Database
from clubledger.domain.entities import (
    EntityType,
    MatchedBy,
    MatchedEntity,
    Payable,
    PaymentMode,
    Transaction,
    parse_entity_type,
)
from clubledger.domain.errors import (
    entity_not_found,
    parent_transaction,
    payable_already_linked,
    transaction_already_linked,
    unknown_entity_type,
    wrong_sign,
)

logger = logging.getLogger(__name__)

PAYABLE_TYPES = (EntityType.REGISTRATION, EntityType.EXPENSE)

# "2024-123_invoice.pdf" and "2024-123-2_receipt.pdf" both carry sequence 2024-123
SEQUENCE_PATTERN = re.compile(r"^(\d{4}-\d+)(?:-\d+)?")

SEQUENCE_LINK_NOTE = "Linked automatically from the statement sequence number in the file name"


class LinkFailure(str, Enum):
    """Reason a linking operation was rejected."""

    NOT_FOUND = "not_found"
    ALREADY_LINKED = "already_linked"
    PARENT_TRANSACTION = "parent_transaction"
    TRANSACTION_ALREADY_LINKED = "transaction_already_linked"
    WRONG_SIGN = "wrong_sign"
    NOT_LINKED = "not_linked"
    DUPLICATE_LINK = "duplicate_link"
    INVALID_TYPE = "invalid_type"


@dataclass(frozen=True)
class LinkResult:
    """Outcome of a linking operation."""

    success: bool
    message: str
    failure: Optional[LinkFailure] = None
    payable: Optional[Payable] = None
    transaction: Optional[Transaction] = None

    @classmethod
    def ok(
        cls,
        message: str,
        payable: Optional[Payable] = None,
        transaction: Optional[Transaction] = None,
    ) -> "LinkResult":
        return cls(success=True, message=message, payable=payable, transaction=transaction)

    @classmethod
    def rejected(cls, failure: LinkFailure, message: str) -> "LinkResult":
        logger.warning("Link operation rejected (%s): %s", failure.value, message)
        return cls(success=False, message=message, failure=failure)


def extract_sequence_from_filename(filename: str) -> Optional[str]:
    """Extract a bank statement sequence number from a document file name.

    Args:
        filename: File name with or without extension

    Returns:
        Sequence number such as "2024-123", or None if the name carries none
    """
    match = SEQUENCE_PATTERN.match(filename)
    if match:
        return match.group(1)
    return None


class LinkingService:
    """Service owning both sides of every payable/transaction link."""

    def __init__(self, db: Database):
        """Initialize linking service.

        Args:
            db: Database instance
        """
        self.db = db

    def _resolve_payable_type(self, payable_type: "str | EntityType") -> Optional[EntityType]:
        try:
            entity_type = parse_entity_type(payable_type)
        except ValueError:
            return None
        return entity_type if entity_type in PAYABLE_TYPES else None

    def _get_payable(self, payable_type: EntityType, payable_id: str) -> Optional[Payable]:
        if payable_type == EntityType.REGISTRATION:
            return self.db.get_registration(payable_id)
        return self.db.get_expense(payable_id)

    def _update_payable(self, payable_type: EntityType, payable_id: str, **fields) -> None:
        if payable_type == EntityType.REGISTRATION:
            self.db.update_registration(payable_id, **fields)
        else:
            self.db.update_expense(payable_id, **fields)

    def _load(
        self, payable_type: "str | EntityType", payable_id: str
    ) -> tuple[Optional[EntityType], Optional[Payable], Optional[LinkResult]]:
        entity_type = self._resolve_payable_type(payable_type)
        if entity_type is None:
            return None, None, LinkResult.rejected(
                LinkFailure.INVALID_TYPE, unknown_entity_type(str(payable_type))
            )

        payable = self._get_payable(entity_type, payable_id)
        if payable is None:
            return entity_type, None, LinkResult.rejected(
                LinkFailure.NOT_FOUND, entity_not_found(entity_type.value, payable_id)
            )
        return entity_type, payable, None

    def link(
        self,
        payable_type: "str | EntityType",
        payable_id: str,
        transaction_id: str,
        matched_by: MatchedBy = MatchedBy.MANUAL,
        confidence: int = 100,
        notes: Optional[str] = None,
    ) -> LinkResult:
        """Link a payable to the transaction that settles it.

        Args:
            payable_type: "registration" or "expense" (legacy aliases accepted)
            payable_id: Payable ID
            transaction_id: Transaction ID
            matched_by: Provenance recorded on the link record
            confidence: Confidence recorded on the link record
            notes: Optional note recorded on the link record

        Returns:
            LinkResult with the updated payable and transaction on success

        Raises:
            PersistenceError: If the store rejects a write
        """
        entity_type, payable, rejection = self._load(payable_type, payable_id)
        if rejection is not None:
            return rejection

        if payable.transaction_id:
            return LinkResult.rejected(
                LinkFailure.ALREADY_LINKED,
                payable_already_linked(payable_id, payable.transaction_id),
            )

        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, entity_not_found("transaction", transaction_id)
            )

        if transaction.is_parent:
            return LinkResult.rejected(
                LinkFailure.PARENT_TRANSACTION, parent_transaction(transaction_id)
            )

        if entity_type == EntityType.REGISTRATION:
            existing = transaction.links_of_type(EntityType.REGISTRATION)
            if existing:
                return LinkResult.rejected(
                    LinkFailure.TRANSACTION_ALREADY_LINKED,
                    transaction_already_linked(transaction_id, existing[0].entity_name),
                )
            if transaction.amount <= 0:
                return LinkResult.rejected(LinkFailure.WRONG_SIGN, wrong_sign(transaction_id))
        elif transaction.find_link(entity_type, payable_id) is not None:
            return LinkResult.rejected(
                LinkFailure.DUPLICATE_LINK,
                f"Transaction {transaction_id} already links {entity_type.value} {payable_id}",
            )

        self._update_payable(
            entity_type,
            payable_id,
            transaction_id=transaction_id,
            transaction_amount=transaction.amount,
            payment_mode=PaymentMode.BANK,
            paid=True,
            payment_date=date.today(),
        )

        record = MatchedEntity(
            entity_type=entity_type,
            entity_id=payable_id,
            entity_name=payable.display_name or "Unknown",
            confidence=confidence,
            matched_at=datetime.now(),
            matched_by=MatchedBy(matched_by),
            notes=notes,
        )
        self.db.update_transaction(
            transaction_id,
            matched_entities=[*transaction.matched_entities, record],
            reconciled=True,
        )

        logger.info(
            "Linked %s %s to transaction %s (%s)",
            entity_type.value,
            payable_id,
            transaction_id,
            record.matched_by.value,
        )
        return LinkResult.ok(
            f"{payable.display_name} linked to transaction of {transaction.amount}",
            payable=self._get_payable(entity_type, payable_id),
            transaction=self.db.get_transaction(transaction_id),
        )

    def unlink(
        self, payable_type: "str | EntityType", payable_id: str, mark_unpaid: bool = False
    ) -> LinkResult:
        """Detach a payable from its bank transaction.

        Without ``mark_unpaid`` the payable stays paid and switches to cash:
        removing a bank link does not mean the debt is unsettled.

        Args:
            payable_type: "registration" or "expense"
            payable_id: Payable ID
            mark_unpaid: Also mark the payable unpaid

        Returns:
            LinkResult

        Raises:
            PersistenceError: If the store rejects a write
        """
        entity_type, payable, rejection = self._load(payable_type, payable_id)
        if rejection is not None:
            return rejection

        if not payable.transaction_id:
            return LinkResult.rejected(
                LinkFailure.NOT_LINKED,
                f"{entity_type.value.capitalize()} {payable_id} is not linked to a transaction",
            )

        transaction_id = payable.transaction_id
        if mark_unpaid:
            self._update_payable(
                entity_type,
                payable_id,
                transaction_id=None,
                transaction_amount=None,
                paid=False,
                payment_mode=PaymentMode.NONE,
                payment_date=None,
            )
        else:
            self._update_payable(
                entity_type,
                payable_id,
                transaction_id=None,
                transaction_amount=None,
                payment_mode=PaymentMode.CASH,
            )

        # The transaction may already be gone; the payable side is still cleared
        transaction = self.db.get_transaction(transaction_id)
        if transaction is not None:
            remaining = [
                e for e in transaction.matched_entities if not e.points_to(entity_type, payable_id)
            ]
            self.db.update_transaction(
                transaction_id, matched_entities=remaining, reconciled=len(remaining) > 0
            )

        logger.info(
            "Unlinked %s %s from transaction %s (mark_unpaid=%s)",
            entity_type.value,
            payable_id,
            transaction_id,
            mark_unpaid,
        )
        if mark_unpaid:
            message = "Transaction unlinked and payable marked as unpaid"
        else:
            message = "Transaction unlinked (payable stays paid, in cash)"
        return LinkResult.ok(
            message,
            payable=self._get_payable(entity_type, payable_id),
            transaction=self.db.get_transaction(transaction_id),
        )

    def mark_paid_cash(
        self, payable_type: "str | EntityType", payable_id: str, comment: Optional[str] = None
    ) -> LinkResult:
        """Mark a payable as paid in cash.

        Args:
            payable_type: "registration" or "expense"
            payable_id: Payable ID
            comment: Optional comment stored on the payable

        Returns:
            LinkResult
        """
        entity_type, payable, rejection = self._load(payable_type, payable_id)
        if rejection is not None:
            return rejection

        if payable.transaction_id:
            return LinkResult.rejected(
                LinkFailure.ALREADY_LINKED,
                payable_already_linked(payable_id, payable.transaction_id),
            )

        fields = {"paid": True, "payment_mode": PaymentMode.CASH, "payment_date": date.today()}
        if comment:
            fields["comment"] = comment
        self._update_payable(entity_type, payable_id, **fields)

        logger.info("Marked %s %s as paid in cash", entity_type.value, payable_id)
        return LinkResult.ok(
            "Payable marked as paid in cash", payable=self._get_payable(entity_type, payable_id)
        )

    def mark_unpaid(self, payable_type: "str | EntityType", payable_id: str) -> LinkResult:
        """Mark a payable as unpaid.

        Args:
            payable_type: "registration" or "expense"
            payable_id: Payable ID

        Returns:
            LinkResult
        """
        entity_type, payable, rejection = self._load(payable_type, payable_id)
        if rejection is not None:
            return rejection

        if payable.transaction_id:
            return LinkResult.rejected(
                LinkFailure.ALREADY_LINKED,
                payable_already_linked(payable_id, payable.transaction_id),
            )

        self._update_payable(
            entity_type, payable_id, paid=False, payment_mode=PaymentMode.NONE, payment_date=None
        )

        logger.info("Marked %s %s as unpaid", entity_type.value, payable_id)
        return LinkResult.ok(
            "Payable marked as unpaid", payable=self._get_payable(entity_type, payable_id)
        )

    def _entity_name(self, entity_type: EntityType, entity_id: str) -> Optional[str]:
        if entity_type == EntityType.EVENT:
            event = self.db.get_event(entity_id)
            return event.title if event else None
        member = self.db.get_member(entity_id)
        return member.display_name if member else None

    def link_entity(
        self,
        transaction_id: str,
        entity_type: "str | EntityType",
        entity_id: str,
        matched_by: MatchedBy = MatchedBy.MANUAL,
        confidence: int = 100,
        notes: Optional[str] = None,
    ) -> LinkResult:
        """Attach an event or member link record to a transaction.

        Payables must go through ``link`` so both sides are written.

        Args:
            transaction_id: Transaction ID
            entity_type: "event" or "member"
            entity_id: Entity ID
            matched_by: Provenance recorded on the link record
            confidence: Confidence recorded on the link record
            notes: Optional note recorded on the link record

        Returns:
            LinkResult
        """
        try:
            resolved = parse_entity_type(entity_type)
        except ValueError:
            resolved = None
        if resolved not in (EntityType.EVENT, EntityType.MEMBER):
            return LinkResult.rejected(
                LinkFailure.INVALID_TYPE, unknown_entity_type(str(entity_type))
            )

        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, entity_not_found("transaction", transaction_id)
            )

        entity_name = self._entity_name(resolved, entity_id)
        if entity_name is None:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, entity_not_found(resolved.value, entity_id)
            )

        if transaction.is_parent:
            return LinkResult.rejected(
                LinkFailure.PARENT_TRANSACTION, parent_transaction(transaction_id)
            )

        if transaction.find_link(resolved, entity_id) is not None:
            return LinkResult.rejected(
                LinkFailure.DUPLICATE_LINK,
                f"Transaction {transaction_id} already links {resolved.value} {entity_id}",
            )

        record = MatchedEntity(
            entity_type=resolved,
            entity_id=entity_id,
            entity_name=entity_name,
            confidence=confidence,
            matched_at=datetime.now(),
            matched_by=MatchedBy(matched_by),
            notes=notes,
        )
        self.db.update_transaction(
            transaction_id,
            matched_entities=[*transaction.matched_entities, record],
            reconciled=True,
        )

        logger.info("Linked %s %s to transaction %s", resolved.value, entity_id, transaction_id)
        return LinkResult.ok(
            f"{entity_name} linked to transaction {transaction_id}",
            transaction=self.db.get_transaction(transaction_id),
        )

    def unlink_entity(
        self, transaction_id: str, entity_type: "str | EntityType", entity_id: str
    ) -> LinkResult:
        """Remove an event or member link record from a transaction."""
        try:
            resolved = parse_entity_type(entity_type)
        except ValueError:
            resolved = None
        if resolved not in (EntityType.EVENT, EntityType.MEMBER):
            return LinkResult.rejected(
                LinkFailure.INVALID_TYPE, unknown_entity_type(str(entity_type))
            )

        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, entity_not_found("transaction", transaction_id)
            )

        if transaction.find_link(resolved, entity_id) is None:
            return LinkResult.rejected(
                LinkFailure.NOT_LINKED,
                f"Transaction {transaction_id} does not link {resolved.value} {entity_id}",
            )

        remaining = [
            e for e in transaction.matched_entities if not e.points_to(resolved, entity_id)
        ]
        self.db.update_transaction(
            transaction_id, matched_entities=remaining, reconciled=len(remaining) > 0
        )

        logger.info("Unlinked %s %s from transaction %s", resolved.value, entity_id, transaction_id)
        return LinkResult.ok(
            f"{resolved.value.capitalize()} {entity_id} unlinked",
            transaction=self.db.get_transaction(transaction_id),
        )

    def link_expense_by_filename(self, expense_id: str, filename: str) -> LinkResult:
        """Link an expense to the transaction named by its receipt's file name.

        Receipts are filed as "<sequence>_<description>", where the sequence
        is the bank statement sequence number of the payment.

        Args:
            expense_id: Expense ID
            filename: Uploaded receipt file name

        Returns:
            LinkResult
        """
        sequence = extract_sequence_from_filename(filename)
        if sequence is None:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, f"No statement sequence number in file name '{filename}'"
            )

        candidates = self.db.find_transactions_by_sequence(sequence)
        if not candidates:
            return LinkResult.rejected(
                LinkFailure.NOT_FOUND, f"No transaction with sequence number {sequence}"
            )
        if len(candidates) > 1:
            logger.warning(
                "Several transactions carry sequence number %s; using the first", sequence
            )

        return self.link(
            EntityType.EXPENSE,
            expense_id,
            candidates[0].id,
            matched_by=MatchedBy.AUTO,
            confidence=100,
            notes=SEQUENCE_LINK_NOTE,
        )
