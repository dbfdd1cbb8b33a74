"""Domain model entities for clubledger.

These are pure data classes representing business concepts, independent of
how the document store lays out its JSON. Services never touch raw
documents; the database layer maps documents to these entities and back.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional


class EntityType(str, Enum):
    """Kinds of entity a transaction link record can point to."""

    REGISTRATION = "registration"
    EXPENSE = "expense"
    EVENT = "event"
    MEMBER = "member"


# Entity type names written by older versions of the application
LEGACY_ENTITY_TYPES = {
    "demand": EntityType.EXPENSE,
    "expense_claim": EntityType.EXPENSE,
    "inscription": EntityType.REGISTRATION,
    "participant": EntityType.REGISTRATION,
}


def parse_entity_type(value: "str | EntityType") -> EntityType:
    """Resolve an entity type name, accepting legacy aliases.

    Raises:
        ValueError: If the name is not a known entity type
    """
    if isinstance(value, EntityType):
        return value
    name = value.strip().lower()
    if name in LEGACY_ENTITY_TYPES:
        return LEGACY_ENTITY_TYPES[name]
    return EntityType(name)


class MatchedBy(str, Enum):
    """Provenance of a link record."""

    MANUAL = "manual"
    AUTO = "auto"
    AI = "ai"


class PaymentMode(str, Enum):
    """How a payable was settled."""

    BANK = "bank"
    CASH = "cash"
    NONE = "none"


@dataclass(frozen=True)
class MatchedEntity:
    """Link record embedded in a transaction."""

    entity_type: EntityType
    entity_id: str
    entity_name: str
    confidence: int
    matched_at: datetime
    matched_by: MatchedBy
    notes: Optional[str] = None

    def points_to(self, entity_type: EntityType, entity_id: str) -> bool:
        return self.entity_type == entity_type and self.entity_id == entity_id


@dataclass(frozen=True)
class Transaction:
    """Bank transaction domain entity."""

    id: str
    amount: Decimal
    execution_date: date
    counterparty_name: str
    communication: str
    account_number: str = ""
    details: str = ""
    sequence_number: Optional[str] = None
    is_parent: bool = False
    parent_transaction_id: Optional[str] = None
    child_count: int = 0
    reconciled: bool = False
    matched_entities: tuple[MatchedEntity, ...] = ()
    category: Optional[str] = None
    account_code: Optional[str] = None
    # Legacy single-reference links, predating matched_entities
    event_id: Optional[str] = None
    expense_claim_id: Optional[str] = None
    # Stored link records that could not be read; dropped by the orphan cleanup
    malformed_links: int = 0

    @property
    def has_legacy_links(self) -> bool:
        return bool(self.event_id) or bool(self.expense_claim_id)

    def links_of_type(self, entity_type: EntityType) -> list[MatchedEntity]:
        return [e for e in self.matched_entities if e.entity_type == entity_type]

    def find_link(self, entity_type: EntityType, entity_id: str) -> Optional[MatchedEntity]:
        for entity in self.matched_entities:
            if entity.points_to(entity_type, entity_id):
                return entity
        return None

    def expected_reconciled(self) -> bool:
        """Reconciled status derived from the link fields alone."""
        return len(self.matched_entities) > 0 or self.has_legacy_links


@dataclass(frozen=True)
class Registration:
    """Event registration; a payable owed to the club."""

    entity_type: ClassVar[EntityType] = EntityType.REGISTRATION

    id: str
    event_id: str
    first_name: str
    last_name: str
    price: Decimal
    registration_date: Optional[date] = None
    member_id: Optional[str] = None
    paid: bool = False
    payment_mode: PaymentMode = PaymentMode.NONE
    payment_date: Optional[date] = None
    transaction_id: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    comment: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def amount_due(self) -> Decimal:
        return self.price

    @property
    def reference_date(self) -> Optional[date]:
        return self.registration_date


@dataclass(frozen=True)
class Expense:
    """Expense claim; a payable owed by the club."""

    entity_type: ClassVar[EntityType] = EntityType.EXPENSE

    id: str
    requester_first_name: str
    requester_last_name: str
    amount: Decimal
    expense_date: Optional[date] = None
    description: str = ""
    status: str = "submitted"
    event_id: Optional[str] = None
    event_title: Optional[str] = None
    paid: bool = False
    payment_mode: PaymentMode = PaymentMode.NONE
    payment_date: Optional[date] = None
    transaction_id: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    comment: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.requester_first_name} {self.requester_last_name}".strip()

    @property
    def amount_due(self) -> Decimal:
        return self.amount

    @property
    def reference_date(self) -> Optional[date]:
        return self.expense_date


Payable = Registration | Expense


@dataclass(frozen=True)
class Event:
    """Club event (dive trip, party, training session)."""

    id: str
    title: str
    location: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(frozen=True)
class Member:
    """Club member."""

    id: str
    first_name: str
    last_name: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class CategorizationPattern:
    """Learned categorization keyed by keyword, rounded amount and account code."""

    id: str
    primary_keyword: str
    keywords: tuple[str, ...]
    rounded_amount: int
    category: str
    account_code: str
    use_count: int
    last_used: datetime
    created_at: datetime
    counterparty_normalized: str = ""


@dataclass(frozen=True)
class CategorizationResult:
    """Outcome of rule-based categorization."""

    confidence: int = 0
    category: Optional[str] = None
    account_code: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PatternSuggestion:
    """Suggestion drawn from the learned-pattern store."""

    category: str
    account_code: str
    count: int
    match_reason: str


@dataclass
class CleanupStats:
    """Counters for cleaning up after a single entity deletion."""

    entity_type: str
    entity_id: str
    transactions_updated: int = 0
    registrations_deleted: int = 0
    registrations_updated: int = 0
    expenses_updated: int = 0
    links_removed: int = 0
    failures: int = 0


@dataclass
class GlobalCleanupStats:
    """Counters for a full orphan sweep."""

    transactions_updated: int = 0
    registrations_updated: int = 0
    expenses_updated: int = 0
    total_links_removed: int = 0
    orphaned_expenses: int = 0
    orphaned_events: int = 0
    orphaned_registrations: int = 0
    orphaned_members: int = 0
    malformed_links: int = 0
    failures: int = 0
    processing_time_ms: int = 0


@dataclass
class RepairStats:
    """Counters for a reconciled-flag repair pass."""

    transactions_checked: int = 0
    transactions_fixed: int = 0
    failures: int = 0
    processing_time_ms: int = 0


@dataclass
class RepairReport:
    """Combined result of a full repair run."""

    cleanup: GlobalCleanupStats = field(default_factory=GlobalCleanupStats)
    status: RepairStats = field(default_factory=RepairStats)

    @property
    def writes(self) -> int:
        return (
            self.cleanup.transactions_updated
            + self.cleanup.registrations_updated
            + self.cleanup.expenses_updated
            + self.status.transactions_fixed
        )
