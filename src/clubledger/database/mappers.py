"""Mapper functions to convert between domain entities and stored documents.

Documents are loosely typed JSON: amounts may be stored as numbers or
strings, dates as ISO strings, and older documents use legacy entity type
names. This layer absorbs those differences so services only see entities.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from clubledger.domain import entities as domain
from clubledger.utils.amount_parser import to_decimal
from clubledger.utils.date_parser import to_date, to_datetime

logger = logging.getLogger(__name__)


def entity_type_from_document(value: str) -> domain.EntityType:
    """Resolve a stored entity type, accepting legacy aliases."""
    return domain.parse_entity_type(value)


def to_document_value(value: Any) -> Any:
    """Convert a domain value to its JSON representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, domain.MatchedEntity):
        return matched_entity_to_document(value)
    if isinstance(value, (list, tuple)):
        return [to_document_value(v) for v in value]
    return value


def fields_to_document(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert a mapping of domain field values to document fields."""
    return {key: to_document_value(value) for key, value in fields.items()}


def matched_entity_to_domain(data: dict[str, Any]) -> domain.MatchedEntity:
    """Convert a stored link record to a domain MatchedEntity."""
    return domain.MatchedEntity(
        entity_type=entity_type_from_document(data["entity_type"]),
        entity_id=str(data["entity_id"]),
        entity_name=data.get("entity_name") or "",
        confidence=int(data.get("confidence", 100)),
        matched_at=to_datetime(data.get("matched_at")) or datetime.min,
        matched_by=domain.MatchedBy(data.get("matched_by", "manual")),
        notes=data.get("notes"),
    )


def matched_entity_to_document(entity: domain.MatchedEntity) -> dict[str, Any]:
    """Convert a domain MatchedEntity to its embedded document form."""
    document = {
        "entity_type": entity.entity_type.value,
        "entity_id": entity.entity_id,
        "entity_name": entity.entity_name,
        "confidence": entity.confidence,
        "matched_at": entity.matched_at.isoformat(),
        "matched_by": entity.matched_by.value,
    }
    if entity.notes:
        document["notes"] = entity.notes
    return document


def _read_links(doc_id: str, records: list) -> tuple[tuple[domain.MatchedEntity, ...], int]:
    """Map stored link records, skipping the ones that cannot be read."""
    links = []
    malformed = 0
    for record in records:
        try:
            links.append(matched_entity_to_domain(record))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Transaction %s: unreadable link record %r (%s)", doc_id, record, e)
            malformed += 1
    return tuple(links), malformed


def transaction_to_domain(doc_id: str, data: dict[str, Any]) -> domain.Transaction:
    """Convert a stored transaction document to a domain Transaction."""
    links, malformed = _read_links(doc_id, data.get("matched_entities") or [])
    return domain.Transaction(
        id=doc_id,
        amount=to_decimal(data.get("amount")),
        execution_date=to_date(data.get("execution_date")) or date.min,
        counterparty_name=data.get("counterparty_name") or "",
        communication=data.get("communication") or "",
        account_number=data.get("account_number") or "",
        details=data.get("details") or "",
        sequence_number=data.get("sequence_number"),
        is_parent=bool(data.get("is_parent", False)),
        parent_transaction_id=data.get("parent_transaction_id"),
        child_count=int(data.get("child_count") or 0),
        reconciled=bool(data.get("reconciled", False)),
        matched_entities=links,
        category=data.get("category"),
        account_code=data.get("account_code"),
        event_id=data.get("event_id"),
        expense_claim_id=data.get("expense_claim_id"),
        malformed_links=malformed,
    )


def _payment_mode(value: Any) -> domain.PaymentMode:
    if not value:
        return domain.PaymentMode.NONE
    return domain.PaymentMode(value)


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)


def registration_to_domain(doc_id: str, data: dict[str, Any]) -> domain.Registration:
    """Convert a stored registration document to a domain Registration."""
    return domain.Registration(
        id=doc_id,
        event_id=data.get("event_id") or "",
        first_name=data.get("first_name") or "",
        last_name=data.get("last_name") or "",
        price=to_decimal(data.get("price")),
        registration_date=to_date(data.get("registration_date")),
        member_id=data.get("member_id"),
        paid=bool(data.get("paid", False)),
        payment_mode=_payment_mode(data.get("payment_mode")),
        payment_date=to_date(data.get("payment_date")),
        transaction_id=data.get("transaction_id") or None,
        transaction_amount=_optional_decimal(data.get("transaction_amount")),
        comment=data.get("comment"),
    )


def expense_to_domain(doc_id: str, data: dict[str, Any]) -> domain.Expense:
    """Convert a stored expense document to a domain Expense."""
    return domain.Expense(
        id=doc_id,
        requester_first_name=data.get("requester_first_name") or "",
        requester_last_name=data.get("requester_last_name") or "",
        amount=to_decimal(data.get("amount")),
        expense_date=to_date(data.get("expense_date")),
        description=data.get("description") or "",
        status=data.get("status") or "submitted",
        event_id=data.get("event_id") or None,
        event_title=data.get("event_title"),
        paid=bool(data.get("paid", False)),
        payment_mode=_payment_mode(data.get("payment_mode")),
        payment_date=to_date(data.get("payment_date")),
        transaction_id=data.get("transaction_id") or None,
        transaction_amount=_optional_decimal(data.get("transaction_amount")),
        comment=data.get("comment"),
    )


def event_to_domain(doc_id: str, data: dict[str, Any]) -> domain.Event:
    """Convert a stored event document to a domain Event."""
    return domain.Event(
        id=doc_id,
        title=data.get("title") or "",
        location=data.get("location") or "",
        start_date=to_date(data.get("start_date")),
        end_date=to_date(data.get("end_date")),
    )


def member_to_domain(doc_id: str, data: dict[str, Any]) -> domain.Member:
    """Convert a stored member document to a domain Member."""
    return domain.Member(
        id=doc_id,
        first_name=data.get("first_name") or "",
        last_name=data.get("last_name") or "",
    )


def pattern_to_domain(doc_id: str, data: dict[str, Any]) -> domain.CategorizationPattern:
    """Convert a stored pattern document to a domain CategorizationPattern."""
    return domain.CategorizationPattern(
        id=doc_id,
        primary_keyword=data.get("primary_keyword") or "",
        keywords=tuple(data.get("keywords") or ()),
        rounded_amount=int(data.get("rounded_amount") or 0),
        category=data.get("category") or "",
        account_code=data.get("account_code") or "",
        use_count=int(data.get("use_count") or 0),
        last_used=to_datetime(data.get("last_used")) or datetime.min,
        created_at=to_datetime(data.get("created_at")) or datetime.min,
        counterparty_normalized=data.get("counterparty_normalized") or "",
    )


def pattern_to_document(pattern: domain.CategorizationPattern) -> dict[str, Any]:
    """Convert a domain CategorizationPattern to a document body."""
    return {
        "primary_keyword": pattern.primary_keyword,
        "keywords": list(pattern.keywords),
        "rounded_amount": pattern.rounded_amount,
        "category": pattern.category,
        "account_code": pattern.account_code,
        "use_count": pattern.use_count,
        "last_used": pattern.last_used.isoformat(),
        "created_at": pattern.created_at.isoformat(),
        "counterparty_normalized": pattern.counterparty_normalized,
    }
