"""Application-level referential integrity for the document store.

The store has no foreign keys and no cascades, so deleting an entity leaves
link records and back-references pointing at nothing. This service removes
them, cascades event deletions to their registrations, and recomputes each
transaction's reconciled flag from its links. Every pass is idempotent: on a
clean store it makes no writes.
"""

import logging
import time
from typing import Optional

from clubledger.database.base import Database
from clubledger.database.models import EVENTS, EXPENSES, MEMBERS, REGISTRATIONS
from clubledger.domain.entities import (
    CleanupStats,
    EntityType,
    GlobalCleanupStats,
    MatchedEntity,
    RepairReport,
    RepairStats,
    Transaction,
    parse_entity_type,
)
from clubledger.domain.errors import (
    NotFoundError,
    PersistenceError,
    ValidationError,
    entity_not_found,
    unknown_entity_type,
)

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class IntegrityService:
    """Service repairing links and flags after deletions and drift."""

    def __init__(self, db: Database):
        """Initialize integrity service.

        Args:
            db: Database instance
        """
        self.db = db

    def _resolve(self, entity_type: "str | EntityType") -> EntityType:
        try:
            return parse_entity_type(entity_type)
        except ValueError:
            raise ValidationError(unknown_entity_type(str(entity_type))) from None

    def _rewrite_transaction(
        self,
        transaction: Transaction,
        links: list[MatchedEntity],
        event_id: Optional[str],
        expense_claim_id: Optional[str],
    ) -> None:
        reconciled = len(links) > 0 or bool(event_id) or bool(expense_claim_id)
        self.db.update_transaction(
            transaction.id,
            matched_entities=links,
            event_id=event_id,
            expense_claim_id=expense_claim_id,
            reconciled=reconciled,
        )

    def _strip_links(self, stats: CleanupStats, entity_type: EntityType, entity_ids: set[str]) -> None:
        for transaction in self.db.list_transactions():
            links = [
                e
                for e in transaction.matched_entities
                if not (e.entity_type == entity_type and e.entity_id in entity_ids)
            ]
            removed = len(transaction.matched_entities) - len(links)

            event_id = transaction.event_id
            if entity_type == EntityType.EVENT and event_id in entity_ids:
                event_id = None
                removed += 1
            expense_claim_id = transaction.expense_claim_id
            if entity_type == EntityType.EXPENSE and expense_claim_id in entity_ids:
                expense_claim_id = None
                removed += 1

            if removed == 0:
                continue

            try:
                self._rewrite_transaction(transaction, links, event_id, expense_claim_id)
            except PersistenceError as e:
                logger.error("Could not clean transaction %s: %s", transaction.id, e)
                stats.failures += 1
                continue
            stats.transactions_updated += 1
            stats.links_removed += removed

    def clean_after_delete(self, entity_type: "str | EntityType", entity_id: str) -> CleanupStats:
        """Remove references to an entity that has been deleted.

        Link records pointing at the entity are dropped from every
        transaction. Deleting an event also deletes its registrations (and
        their link records) and detaches its expenses.

        Args:
            entity_type: Type of the deleted entity (legacy aliases accepted)
            entity_id: ID of the deleted entity

        Returns:
            CleanupStats

        Raises:
            ValidationError: If the entity type is unknown
        """
        resolved = self._resolve(entity_type)
        stats = CleanupStats(entity_type=resolved.value, entity_id=entity_id)

        self._strip_links(stats, resolved, {entity_id})

        if resolved == EntityType.EVENT:
            deleted_registrations = set()
            for registration in self.db.list_registrations(event_id=entity_id):
                try:
                    self.db.delete_registration(registration.id)
                except PersistenceError as e:
                    logger.error("Could not delete registration %s: %s", registration.id, e)
                    stats.failures += 1
                    continue
                deleted_registrations.add(registration.id)
                stats.registrations_deleted += 1

            if deleted_registrations:
                self._strip_links(stats, EntityType.REGISTRATION, deleted_registrations)

            for expense in self.db.list_expenses(event_id=entity_id):
                try:
                    self.db.update_expense(expense.id, event_id=None, event_title=None)
                except PersistenceError as e:
                    logger.error("Could not detach expense %s: %s", expense.id, e)
                    stats.failures += 1
                    continue
                stats.expenses_updated += 1

        logger.info(
            "Cleaned up after %s %s: %d transactions updated, %d registrations deleted, "
            "%d expenses updated",
            resolved.value,
            entity_id,
            stats.transactions_updated,
            stats.registrations_deleted,
            stats.expenses_updated,
        )
        return stats

    def delete_entity(self, entity_type: "str | EntityType", entity_id: str) -> CleanupStats:
        """Delete an entity and clean up every reference to it.

        Raises:
            ValidationError: If the entity type cannot be deleted here
            NotFoundError: If the entity doesn't exist
        """
        resolved = self._resolve(entity_type)
        deleters = {
            EntityType.REGISTRATION: self.db.delete_registration,
            EntityType.EXPENSE: self.db.delete_expense,
            EntityType.EVENT: self.db.delete_event,
            EntityType.MEMBER: self.db.delete_member,
        }
        getters = {
            EntityType.REGISTRATION: self.db.get_registration,
            EntityType.EXPENSE: self.db.get_expense,
            EntityType.EVENT: self.db.get_event,
            EntityType.MEMBER: self.db.get_member,
        }
        if getters[resolved](entity_id) is None:
            raise NotFoundError(entity_not_found(resolved.value, entity_id))

        deleters[resolved](entity_id)
        return self.clean_after_delete(resolved, entity_id)

    def clean_all_orphans(self) -> GlobalCleanupStats:
        """Drop every reference to an entity that no longer exists.

        Covers link records and legacy link fields on transactions, payable
        back-references to deleted transactions, and expense references to
        deleted events. Link records that cannot be read are dropped too.

        Returns:
            GlobalCleanupStats
        """
        started = time.perf_counter()
        stats = GlobalCleanupStats()

        existing = {
            EntityType.EXPENSE: self.db.list_ids(EXPENSES),
            EntityType.EVENT: self.db.list_ids(EVENTS),
            EntityType.REGISTRATION: self.db.list_ids(REGISTRATIONS),
            EntityType.MEMBER: self.db.list_ids(MEMBERS),
        }
        orphan_counters = {
            EntityType.EXPENSE: "orphaned_expenses",
            EntityType.EVENT: "orphaned_events",
            EntityType.REGISTRATION: "orphaned_registrations",
            EntityType.MEMBER: "orphaned_members",
        }

        def count_orphan(entity_type: EntityType) -> None:
            counter = orphan_counters[entity_type]
            setattr(stats, counter, getattr(stats, counter) + 1)
            stats.total_links_removed += 1

        transactions = self.db.list_transactions()
        for transaction in transactions:
            links = []
            for entity in transaction.matched_entities:
                if entity.entity_id in existing[entity.entity_type]:
                    links.append(entity)
                else:
                    count_orphan(entity.entity_type)
            changed = len(links) != len(transaction.matched_entities)

            if transaction.malformed_links:
                stats.malformed_links += transaction.malformed_links
                stats.total_links_removed += transaction.malformed_links
                changed = True

            expense_claim_id = transaction.expense_claim_id
            if expense_claim_id and expense_claim_id not in existing[EntityType.EXPENSE]:
                expense_claim_id = None
                count_orphan(EntityType.EXPENSE)
                changed = True

            event_id = transaction.event_id
            if event_id and event_id not in existing[EntityType.EVENT]:
                event_id = None
                count_orphan(EntityType.EVENT)
                changed = True

            if not changed:
                continue

            try:
                self._rewrite_transaction(transaction, links, event_id, expense_claim_id)
            except PersistenceError as e:
                logger.error("Could not clean transaction %s: %s", transaction.id, e)
                stats.failures += 1
                continue
            stats.transactions_updated += 1

        transaction_ids = {t.id for t in transactions}

        for registration in self.db.list_registrations():
            if registration.transaction_id and registration.transaction_id not in transaction_ids:
                try:
                    self.db.update_registration(
                        registration.id, transaction_id=None, transaction_amount=None
                    )
                except PersistenceError as e:
                    logger.error("Could not clean registration %s: %s", registration.id, e)
                    stats.failures += 1
                    continue
                stats.registrations_updated += 1
                stats.total_links_removed += 1

        for expense in self.db.list_expenses():
            fields = {}
            if expense.transaction_id and expense.transaction_id not in transaction_ids:
                fields.update(transaction_id=None, transaction_amount=None)
            if expense.event_id and expense.event_id not in existing[EntityType.EVENT]:
                fields.update(event_id=None, event_title=None)
            if not fields:
                continue
            try:
                self.db.update_expense(expense.id, **fields)
            except PersistenceError as e:
                logger.error("Could not clean expense %s: %s", expense.id, e)
                stats.failures += 1
                continue
            stats.expenses_updated += 1
            stats.total_links_removed += 1

        stats.processing_time_ms = _elapsed_ms(started)
        logger.info(
            "Orphan cleanup: %d transactions, %d registrations, %d expenses updated; "
            "%d links removed in %d ms",
            stats.transactions_updated,
            stats.registrations_updated,
            stats.expenses_updated,
            stats.total_links_removed,
            stats.processing_time_ms,
        )
        return stats

    def repair_reconciliation_status(self) -> RepairStats:
        """Recompute every transaction's reconciled flag from its links.

        A transaction is reconciled when it has a link record or a legacy
        link field. Only transactions whose flag disagrees are written.

        Returns:
            RepairStats
        """
        started = time.perf_counter()
        stats = RepairStats()

        for transaction in self.db.list_transactions():
            stats.transactions_checked += 1
            expected = transaction.expected_reconciled()
            if transaction.reconciled == expected:
                continue
            try:
                self.db.update_transaction(transaction.id, reconciled=expected)
            except PersistenceError as e:
                logger.error("Could not repair transaction %s: %s", transaction.id, e)
                stats.failures += 1
                continue
            stats.transactions_fixed += 1
            logger.debug(
                "Transaction %s: reconciled %s -> %s", transaction.id, transaction.reconciled, expected
            )

        stats.processing_time_ms = _elapsed_ms(started)
        logger.info(
            "Reconciliation repair: %d of %d transactions fixed",
            stats.transactions_fixed,
            stats.transactions_checked,
        )
        return stats

    def repair_all(self) -> RepairReport:
        """Run the orphan cleanup and then the reconciled-flag repair."""
        return RepairReport(
            cleanup=self.clean_all_orphans(), status=self.repair_reconciliation_status()
        )
