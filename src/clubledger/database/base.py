"""Abstract database interface."""

from abc import ABC, abstractmethod
from typing import Optional, Any
from datetime import date
from decimal import Decimal

# Import entities directly to avoid circular import through domain/__init__.py
from clubledger.domain.entities import (
    CategorizationPattern,
    Event,
    Expense,
    Member,
    Registration,
    Transaction,
)


class Database(ABC):
    """Abstract document-store interface for clubledger.

    Documents are read and written whole (or by partial field update) by id.
    Nothing here enforces references between documents; integrity is kept by
    the domain services.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    @abstractmethod
    def list_ids(self, collection: str) -> set[str]:
        """Return the ids of every document in a collection."""
        pass

    # Transaction operations
    @abstractmethod
    def create_transaction(
        self,
        amount: Decimal,
        execution_date: date,
        counterparty_name: str,
        communication: str = "",
        **fields: Any,
    ) -> str:
        """Create a transaction. Returns transaction ID.

        Extra keyword fields (account_number, details, sequence_number,
        is_parent, matched_entities, event_id, ...) are stored as given.
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID."""
        pass

    @abstractmethod
    def list_transactions(self) -> list[Transaction]:
        """List all transactions."""
        pass

    @abstractmethod
    def find_transactions_by_sequence(self, sequence_number: str) -> list[Transaction]:
        """Find transactions carrying a bank statement sequence number."""
        pass

    @abstractmethod
    def update_transaction(self, transaction_id: str, **fields: Any) -> None:
        """Update transaction fields (matched_entities, reconciled, ...)."""
        pass

    # Registration operations
    @abstractmethod
    def create_registration(
        self,
        event_id: str,
        first_name: str,
        last_name: str,
        price: Decimal,
        registration_date: Optional[date] = None,
        **fields: Any,
    ) -> str:
        """Create a registration. Returns registration ID."""
        pass

    @abstractmethod
    def get_registration(self, registration_id: str) -> Optional[Registration]:
        """Get registration by ID."""
        pass

    @abstractmethod
    def list_registrations(self, event_id: Optional[str] = None) -> list[Registration]:
        """List registrations, optionally filtered by event."""
        pass

    @abstractmethod
    def update_registration(self, registration_id: str, **fields: Any) -> None:
        """Update registration fields."""
        pass

    @abstractmethod
    def delete_registration(self, registration_id: str) -> None:
        """Delete a registration."""
        pass

    # Expense operations
    @abstractmethod
    def create_expense(
        self,
        requester_first_name: str,
        requester_last_name: str,
        amount: Decimal,
        expense_date: Optional[date] = None,
        **fields: Any,
    ) -> str:
        """Create an expense claim. Returns expense ID."""
        pass

    @abstractmethod
    def get_expense(self, expense_id: str) -> Optional[Expense]:
        """Get expense by ID."""
        pass

    @abstractmethod
    def list_expenses(self, event_id: Optional[str] = None) -> list[Expense]:
        """List expenses, optionally filtered by event."""
        pass

    @abstractmethod
    def update_expense(self, expense_id: str, **fields: Any) -> None:
        """Update expense fields."""
        pass

    @abstractmethod
    def delete_expense(self, expense_id: str) -> None:
        """Delete an expense."""
        pass

    # Event operations
    @abstractmethod
    def create_event(
        self,
        title: str,
        location: str = "",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        **fields: Any,
    ) -> str:
        """Create an event. Returns event ID."""
        pass

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Event]:
        """Get event by ID."""
        pass

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        """Delete an event."""
        pass

    # Member operations
    @abstractmethod
    def create_member(self, first_name: str, last_name: str, **fields: Any) -> str:
        """Create a member. Returns member ID."""
        pass

    @abstractmethod
    def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID."""
        pass

    @abstractmethod
    def delete_member(self, member_id: str) -> None:
        """Delete a member."""
        pass

    # Categorization pattern operations
    @abstractmethod
    def get_pattern(self, pattern_id: str) -> Optional[CategorizationPattern]:
        """Get categorization pattern by ID."""
        pass

    @abstractmethod
    def save_pattern(self, pattern: CategorizationPattern) -> None:
        """Create or overwrite a categorization pattern."""
        pass

    @abstractmethod
    def find_patterns(
        self,
        primary_keyword: Optional[str] = None,
        rounded_amount: Optional[int] = None,
        counterparty_normalized: Optional[str] = None,
        limit: int = 3,
    ) -> list[CategorizationPattern]:
        """Find patterns matching every given criterion, most used first."""
        pass
