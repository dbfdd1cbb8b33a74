"""Shared domain error messages and error types."""


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as a link that already exists."""


class PersistenceError(Exception):
    """A write was rejected by the document store."""


def entity_not_found(entity_type: str, entity_id: str) -> str:
    """Return message for a missing entity."""
    return f"{entity_type.capitalize()} {entity_id} not found"


def payable_already_linked(payable_id: str, transaction_id: str) -> str:
    """Return message when a payable already carries a transaction back-reference."""
    return (
        f"Payable {payable_id} is already linked to transaction {transaction_id}. "
        "Unlink it first."
    )


def parent_transaction(transaction_id: str) -> str:
    """Return message for an attempt to link a split (parent) transaction."""
    return (
        f"Transaction {transaction_id} has been split; "
        "link one of its child transactions instead."
    )


def transaction_already_linked(transaction_id: str, entity_name: str) -> str:
    """Return message when a transaction already settles a registration."""
    return (
        f"Transaction {transaction_id} is already linked to the registration of "
        f"{entity_name}. Split the transaction if it covers several registrations."
    )


def wrong_sign(transaction_id: str) -> str:
    """Return message for a non-incoming transaction offered to a registration."""
    return f"Transaction {transaction_id} is not incoming; only positive amounts settle a registration"


def unknown_entity_type(entity_type: str) -> str:
    """Return message for an unsupported entity type."""
    return f"Unknown entity type '{entity_type}'"
