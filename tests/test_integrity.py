"""Tests for deletion cleanup and reconciliation repair."""

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from clubledger.domain import integrity
from clubledger.domain.entities import EntityType, MatchedBy, MatchedEntity
from clubledger.domain.errors import NotFoundError, ValidationError


def _record(entity_type, entity_id, name="Someone"):
    return MatchedEntity(
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=name,
        confidence=100,
        matched_at=datetime(2024, 3, 5, 10, 0),
        matched_by=MatchedBy.MANUAL,
    )


def _create_transaction(db, amount="7.00", counterparty_name="DUPONT JEAN", **fields):
    return db.create_transaction(
        amount=Decimal(amount),
        execution_date=date(2024, 3, 2),
        counterparty_name=counterparty_name,
        **fields,
    )


class TestCleanAfterDelete:
    """Tests for single-entity cleanup."""

    def test_event_cascade(self, temp_db, integrity_service, linking_service, sample_event, sample_registrations, sample_expense):
        """Registrations go with their event, and every link to them is dropped."""
        paid_id = _create_transaction(temp_db)
        linking_service.link("registration", sample_registrations[0].id, paid_id)
        event_txn_id = _create_transaction(temp_db, amount="300.00")
        linking_service.link_entity(event_txn_id, "event", sample_event.id)
        legacy_txn_id = _create_transaction(temp_db, amount="50.00", event_id=sample_event.id, reconciled=True)
        temp_db.delete_event(sample_event.id)

        stats = integrity_service.clean_after_delete("event", sample_event.id)

        assert stats.registrations_deleted == 3
        assert temp_db.list_registrations(sample_event.id) == []
        assert stats.transactions_updated == 3
        for transaction_id in (paid_id, event_txn_id, legacy_txn_id):
            txn = temp_db.get_transaction(transaction_id)
            assert txn.matched_entities == ()
            assert txn.event_id is None
            assert txn.reconciled is False
        expense = temp_db.get_expense(sample_expense.id)
        assert expense.event_id is None
        assert expense.event_title is None
        assert stats.expenses_updated == 1
        assert stats.failures == 0

    def test_registration_cleanup_keeps_other_links(self, temp_db, integrity_service, sample_event):
        transaction_id = _create_transaction(
            temp_db,
            matched_entities=[
                _record(EntityType.REGISTRATION, "gone"),
                _record(EntityType.EVENT, sample_event.id),
            ],
            reconciled=True,
        )

        stats = integrity_service.clean_after_delete(EntityType.REGISTRATION, "gone")

        assert stats.links_removed == 1
        txn = temp_db.get_transaction(transaction_id)
        assert [e.entity_type for e in txn.matched_entities] == [EntityType.EVENT]
        assert txn.reconciled is True

    def test_expense_clears_legacy_field(self, temp_db, integrity_service):
        transaction_id = _create_transaction(temp_db, amount="-42.50", expense_claim_id="e1", reconciled=True)

        integrity_service.clean_after_delete("demand", "e1")

        txn = temp_db.get_transaction(transaction_id)
        assert txn.expense_claim_id is None
        assert txn.reconciled is False

    def test_event_cascade_counts_failed_deletes(self, temp_db, integrity_service, sample_event, sample_registrations, rejected_ids):
        locked = sample_registrations[1]
        rejected_ids.add(locked.id)
        temp_db.delete_event(sample_event.id)

        stats = integrity_service.clean_after_delete("event", sample_event.id)

        assert stats.registrations_deleted == 2
        assert stats.failures == 1
        assert [r.id for r in temp_db.list_registrations(sample_event.id)] == [locked.id]

    def test_nothing_to_clean(self, temp_db, integrity_service, incoming_transaction):
        stats = integrity_service.clean_after_delete("member", "m1")
        assert stats.transactions_updated == 0

    def test_unknown_type(self, integrity_service):
        with pytest.raises(ValidationError):
            integrity_service.clean_after_delete("boat", "b1")


class TestDeleteEntity:
    """Tests for delete_entity."""

    def test_delete_registration(self, temp_db, integrity_service, linking_service, sample_registrations, incoming_transaction):
        registration = sample_registrations[0]
        linking_service.link("registration", registration.id, incoming_transaction.id)

        stats = integrity_service.delete_entity("registration", registration.id)

        assert temp_db.get_registration(registration.id) is None
        assert stats.links_removed == 1
        assert temp_db.get_transaction(incoming_transaction.id).reconciled is False

    def test_delete_missing(self, integrity_service):
        with pytest.raises(NotFoundError):
            integrity_service.delete_entity("event", "missing")


class TestCleanAllOrphans:
    """Tests for the full orphan sweep."""

    def test_sweep(self, temp_db, integrity_service, sample_event, sample_registrations):
        member_id = temp_db.create_member(first_name="Jean", last_name="Dupont")
        transaction_id = _create_transaction(
            temp_db,
            matched_entities=[
                _record(EntityType.REGISTRATION, sample_registrations[0].id),
                _record(EntityType.REGISTRATION, "deleted-registration"),
                _record(EntityType.MEMBER, member_id),
                _record(EntityType.MEMBER, "deleted-member"),
            ],
            event_id="deleted-event",
            expense_claim_id="deleted-expense",
            reconciled=True,
        )
        temp_db.update_registration(sample_registrations[1].id, transaction_id="deleted-transaction", paid=True)
        expense_id = temp_db.create_expense(
            requester_first_name="Paul",
            requester_last_name="Renard",
            amount=Decimal("10"),
            event_id="deleted-event",
            event_title="Old event",
            transaction_id="deleted-transaction",
        )

        stats = integrity_service.clean_all_orphans()

        txn = temp_db.get_transaction(transaction_id)
        assert [e.entity_id for e in txn.matched_entities] == [sample_registrations[0].id, member_id]
        assert txn.event_id is None
        assert txn.expense_claim_id is None
        assert txn.reconciled is True
        assert stats.transactions_updated == 1
        assert stats.orphaned_registrations == 1
        assert stats.orphaned_members == 1
        assert stats.orphaned_events == 1
        assert stats.orphaned_expenses == 1

        assert temp_db.get_registration(sample_registrations[1].id).transaction_id is None
        assert stats.registrations_updated == 1
        expense = temp_db.get_expense(expense_id)
        assert expense.transaction_id is None
        assert expense.event_id is None
        assert stats.expenses_updated == 1
        assert stats.total_links_removed == 6
        assert stats.failures == 0

    def test_legacy_and_unreadable_link_records(self, temp_db, integrity_service, sample_expense):
        """A record written under an old type name survives; unreadable ones are dropped."""
        stored = {
            "entity_name": "Paul Renard",
            "confidence": 100,
            "matched_at": "2024-03-18T09:00:00",
            "matched_by": "manual",
        }
        legacy_id = _create_transaction(
            temp_db,
            amount="-42.50",
            matched_entities=[
                {**stored, "entity_type": "expense_claim", "entity_id": sample_expense.id},
                {**stored, "entity_type": "boat", "entity_id": "b1"},
                {**stored, "entity_type": "expense"},
            ],
            reconciled=True,
        )
        orphan_id = _create_transaction(
            temp_db, matched_entities=[_record(EntityType.REGISTRATION, "gone")], reconciled=True
        )

        report = integrity_service.repair_all()

        legacy = temp_db.get_transaction(legacy_id)
        assert [(e.entity_type, e.entity_id) for e in legacy.matched_entities] == [
            (EntityType.EXPENSE, sample_expense.id)
        ]
        assert legacy.malformed_links == 0
        assert legacy.reconciled is True
        assert temp_db.get_transaction(orphan_id).reconciled is False
        assert report.cleanup.malformed_links == 2
        assert report.cleanup.orphaned_registrations == 1
        assert report.cleanup.transactions_updated == 2
        assert integrity_service.repair_all().writes == 0

    def test_write_failure_does_not_stop_the_sweep(self, temp_db, integrity_service, rejected_ids):
        locked_id = _create_transaction(
            temp_db, matched_entities=[_record(EntityType.REGISTRATION, "gone-1")], reconciled=True
        )
        other_id = _create_transaction(
            temp_db, matched_entities=[_record(EntityType.REGISTRATION, "gone-2")], reconciled=True
        )
        rejected_ids.add(locked_id)

        stats = integrity_service.clean_all_orphans()

        assert stats.failures == 1
        assert stats.transactions_updated == 1
        assert temp_db.get_transaction(other_id).matched_entities == ()
        assert len(temp_db.get_transaction(locked_id).matched_entities) == 1

    def test_clean_store_makes_no_writes(self, temp_db, integrity_service, linking_service, sample_registrations, incoming_transaction):
        linking_service.link("registration", sample_registrations[0].id, incoming_transaction.id)

        stats = integrity_service.clean_all_orphans()

        assert stats.transactions_updated == 0
        assert stats.registrations_updated == 0
        assert stats.expenses_updated == 0
        assert stats.total_links_removed == 0


class TestRepairReconciliationStatus:
    """Tests for the reconciled-flag repair."""

    def test_fixes_drift_then_idempotent(self, temp_db, integrity_service, sample_event):
        stale_true = _create_transaction(temp_db, reconciled=True)
        stale_false = _create_transaction(
            temp_db, matched_entities=[_record(EntityType.EVENT, sample_event.id)], reconciled=False
        )
        legacy = _create_transaction(temp_db, event_id=sample_event.id, reconciled=False)
        _create_transaction(temp_db, reconciled=False)

        first = integrity_service.repair_reconciliation_status()
        second = integrity_service.repair_reconciliation_status()

        assert first.transactions_checked == 4
        assert first.transactions_fixed == 3
        assert second.transactions_fixed == 0
        assert temp_db.get_transaction(stale_true).reconciled is False
        assert temp_db.get_transaction(stale_false).reconciled is True
        assert temp_db.get_transaction(legacy).reconciled is True

    def test_write_failure_is_counted(self, temp_db, integrity_service, rejected_ids):
        locked_id = _create_transaction(temp_db, reconciled=True)
        other_id = _create_transaction(temp_db, reconciled=True)
        rejected_ids.add(locked_id)

        stats = integrity_service.repair_reconciliation_status()

        assert stats.transactions_checked == 2
        assert stats.transactions_fixed == 1
        assert stats.failures == 1
        assert temp_db.get_transaction(other_id).reconciled is False
        assert temp_db.get_transaction(locked_id).reconciled is True

    def test_invariant_after_link_sequence(self, temp_db, integrity_service, linking_service, sample_event, sample_registrations, incoming_transaction):
        """After any link/unlink sequence and a repair, reconciled mirrors the links."""
        first, second, _ = sample_registrations
        other_id = _create_transaction(temp_db, counterparty_name="LAMBERT MARIE")
        linking_service.link("registration", first.id, incoming_transaction.id)
        linking_service.link("registration", second.id, other_id)
        linking_service.link_entity(other_id, "event", sample_event.id)
        linking_service.unlink("registration", first.id)
        linking_service.unlink("registration", second.id, mark_unpaid=True)
        linking_service.link("registration", first.id, other_id)
        # Drift introduced by a concurrent writer
        temp_db.update_transaction(incoming_transaction.id, reconciled=True)

        integrity_service.repair_reconciliation_status()

        for txn in temp_db.list_transactions():
            assert txn.reconciled == (len(txn.matched_entities) > 0)


def test_repair_all(temp_db, integrity_service):
    orphan_id = _create_transaction(
        temp_db, matched_entities=[_record(EntityType.EVENT, "deleted-event")], reconciled=True
    )
    drift_id = _create_transaction(temp_db, reconciled=True)

    report = integrity_service.repair_all()

    assert report.cleanup.total_links_removed == 1
    assert report.status.transactions_fixed == 1
    assert report.writes == 2
    assert temp_db.get_transaction(orphan_id).reconciled is False
    assert temp_db.get_transaction(drift_id).reconciled is False
    assert integrity_service.repair_all().writes == 0


def test_processing_time(temp_db, integrity_service, monkeypatch):
    ticks = iter([10.0, 10.25, 20.0, 20.004])
    monkeypatch.setattr(integrity, "time", SimpleNamespace(perf_counter=lambda: next(ticks)))

    report = integrity_service.repair_all()

    assert report.cleanup.processing_time_ms == 250
    assert report.status.processing_time_ms == 4
