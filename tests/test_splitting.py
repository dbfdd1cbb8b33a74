"""Tests for transaction splitting."""

from datetime import date
from decimal import Decimal

import pytest

from clubledger.domain.errors import ConflictError, NotFoundError, ValidationError
from clubledger.domain.linking import LinkFailure
from clubledger.domain.splitting import SplitLine, SplitService, validate_split_lines


@pytest.fixture
def split_service(temp_db):
    """Create a SplitService with a temporary database."""
    return SplitService(temp_db)


@pytest.fixture
def family_payment(temp_db):
    """One transfer paying two registrations."""
    transaction_id = temp_db.create_transaction(
        amount=Decimal("14.00"),
        execution_date=date(2024, 3, 2),
        counterparty_name="DUPONT JEAN",
        communication="Zeeland Jean + Marie",
        account_number="BE68539007547034",
        sequence_number="2024-17",
    )
    return temp_db.get_transaction(transaction_id)


def _lines(*pairs):
    return [SplitLine(amount=Decimal(amount), description=description) for amount, description in pairs]


class TestValidateSplitLines:
    """Tests for split line validation."""

    def test_valid(self):
        assert validate_split_lines(Decimal("14.00"), _lines(("7.00", "Jean"), ("7.00", "Marie"))) == []

    def test_needs_two_lines(self):
        errors = validate_split_lines(Decimal("7.00"), _lines(("7.00", "Jean")))
        assert errors == ["A split needs at least 2 lines"]

    def test_amounts_must_be_positive(self):
        errors = validate_split_lines(Decimal("7.00"), _lines(("7.00", "Jean"), ("0", "Marie")))
        assert "Line 2: amount must be greater than zero" in errors

    def test_description_required(self):
        errors = validate_split_lines(Decimal("14.00"), _lines(("7.00", "Jean"), ("7.00", "  ")))
        assert errors == ["Line 2: description is required"]

    def test_sum_must_match(self):
        errors = validate_split_lines(Decimal("14.00"), _lines(("7.00", "Jean"), ("6.50", "Marie")))
        assert errors == ["Lines sum to 13.50, transaction amount is 14.00 (difference 0.50)"]

    def test_negative_transaction_compares_absolute_amounts(self):
        assert validate_split_lines(Decimal("-42.50"), _lines(("40.00", "Fuel"), ("2.50", "Parking"))) == []

    def test_rounding_below_a_cent_is_tolerated(self):
        lines = _lines(("3.333", "a"), ("3.333", "b"), ("3.334", "c"))
        assert validate_split_lines(Decimal("10.00"), lines) == []


class TestSplitTransaction:
    """Tests for SplitService.split_transaction."""

    def test_split(self, split_service, temp_db, family_payment):
        result = split_service.split_transaction(
            family_payment.id, _lines(("7.00", "Jean Dupont"), ("7.00", "Marie Dupont"))
        )

        assert result.parent.is_parent is True
        assert result.parent.child_count == 2
        assert result.parent.amount == Decimal("14.00")
        assert [c.communication for c in result.children] == ["Jean Dupont", "Marie Dupont"]
        for child in result.children:
            assert child.amount == Decimal("7.00")
            assert child.parent_transaction_id == family_payment.id
            assert child.execution_date == family_payment.execution_date
            assert child.counterparty_name == "DUPONT JEAN"
            assert child.sequence_number == "2024-17"
            assert child.reconciled is False
        assert {c.id for c in split_service.list_children(family_payment.id)} == {
            c.id for c in result.children
        }

    def test_outgoing_children_are_negative(self, split_service, temp_db):
        transaction_id = temp_db.create_transaction(
            amount=Decimal("-42.50"), execution_date=date(2024, 3, 18), counterparty_name="RENARD PAUL"
        )

        result = split_service.split_transaction(transaction_id, _lines(("40.00", "Fuel"), ("2.50", "Parking")))

        assert [c.amount for c in result.children] == [Decimal("-40.00"), Decimal("-2.50")]

    def test_invalid_lines_write_nothing(self, split_service, temp_db, family_payment):
        with pytest.raises(ValidationError, match="Lines sum to 10.00"):
            split_service.split_transaction(family_payment.id, _lines(("7.00", "Jean"), ("3.00", "Marie")))

        assert len(temp_db.list_transactions()) == 1
        assert temp_db.get_transaction(family_payment.id).is_parent is False

    def test_not_found(self, split_service):
        with pytest.raises(NotFoundError, match="Transaction missing not found"):
            split_service.split_transaction("missing", _lines(("7.00", "a"), ("7.00", "b")))

    def test_already_split(self, split_service, family_payment):
        result = split_service.split_transaction(family_payment.id, _lines(("7.00", "a"), ("7.00", "b")))

        with pytest.raises(ConflictError, match="already split"):
            split_service.split_transaction(family_payment.id, _lines(("7.00", "a"), ("7.00", "b")))
        with pytest.raises(ConflictError, match="itself a split line"):
            split_service.split_transaction(result.children[0].id, _lines(("3.50", "a"), ("3.50", "b")))

    def test_reconciled_transaction_rejected(self, split_service, linking_service, sample_registrations, family_payment):
        linking_service.link("registration", sample_registrations[0].id, family_payment.id)

        with pytest.raises(ConflictError, match="unlink it before splitting"):
            split_service.split_transaction(family_payment.id, _lines(("7.00", "a"), ("7.00", "b")))

    def test_children_settle_registrations(self, split_service, linking_service, temp_db, sample_registrations, family_payment):
        result = split_service.split_transaction(
            family_payment.id, _lines(("7.00", "Jean Dupont"), ("7.00", "Marie Lambert"))
        )
        jean, marie = sample_registrations[:2]

        refused = linking_service.link("registration", jean.id, family_payment.id)
        first = linking_service.link("registration", jean.id, result.children[0].id)
        second = linking_service.link("registration", marie.id, result.children[1].id)

        assert refused.failure == LinkFailure.PARENT_TRANSACTION
        assert first.success and second.success
        assert temp_db.get_registration(marie.id).transaction_id == result.children[1].id
