"""Shared pytest fixtures for clubledger tests."""

import tempfile
import os
from datetime import date
from decimal import Decimal
import pytest

from clubledger.database.factories import create_sqlite_database
from clubledger.domain.ai_matching import AIMatchingService, AIProviderError, CompletionProvider
from clubledger.domain.auto_match import AutoMatchService
from clubledger.domain.categorization import CategorizationService
from clubledger.domain.errors import PersistenceError
from clubledger.domain.integrity import IntegrityService
from clubledger.domain.linking import LinkingService


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def reopen_db(temp_db):
    """Open a fresh connection to the temporary database.

    Used after CLI invocations, which write through their own connection.
    """
    opened = []

    def _reopen():
        db = create_sqlite_database(database_path=temp_db.database_path)
        opened.append(db)
        return db

    yield _reopen

    for db in opened:
        db.disconnect()


@pytest.fixture
def rejected_ids(temp_db, monkeypatch):
    """Make the store reject writes to the document ids added to the returned set."""
    rejected = set()
    update, delete, save_pattern = temp_db._update, temp_db._delete, temp_db.save_pattern

    def check(doc_id):
        if doc_id in rejected:
            raise PersistenceError(f"Write rejected by the document store: {doc_id} is locked")

    def rejecting_update(collection, doc_id, fields):
        check(doc_id)
        update(collection, doc_id, fields)

    def rejecting_delete(collection, doc_id):
        check(doc_id)
        delete(collection, doc_id)

    def rejecting_save_pattern(pattern):
        check(pattern.id)
        save_pattern(pattern)

    monkeypatch.setattr(temp_db, "_update", rejecting_update)
    monkeypatch.setattr(temp_db, "_delete", rejecting_delete)
    monkeypatch.setattr(temp_db, "save_pattern", rejecting_save_pattern)
    return rejected


@pytest.fixture
def linking_service(temp_db):
    """Create a LinkingService with a temporary database."""
    return LinkingService(temp_db)


@pytest.fixture
def auto_match_service(temp_db):
    """Create an AutoMatchService with a temporary database."""
    return AutoMatchService(temp_db)


@pytest.fixture
def categorization_service(temp_db):
    """Create a CategorizationService with a temporary database."""
    return CategorizationService(temp_db)


@pytest.fixture
def integrity_service(temp_db):
    """Create an IntegrityService with a temporary database."""
    return IntegrityService(temp_db)


@pytest.fixture
def sample_event(temp_db):
    """Create a sample event."""
    event_id = temp_db.create_event(
        title="Sortie Zeeland",
        location="Zeeland",
        start_date=date(2024, 3, 16),
        end_date=date(2024, 3, 17),
    )
    return temp_db.get_event(event_id)


@pytest.fixture
def sample_registrations(temp_db, sample_event):
    """Register three participants to the sample event."""
    ids = [
        temp_db.create_registration(
            event_id=sample_event.id,
            first_name="Jean",
            last_name="Dupont",
            price=Decimal("7.00"),
            registration_date=date(2024, 3, 1),
        ),
        temp_db.create_registration(
            event_id=sample_event.id,
            first_name="Marie",
            last_name="Lambert",
            price=Decimal("7.00"),
            registration_date=date(2024, 3, 2),
        ),
        temp_db.create_registration(
            event_id=sample_event.id,
            first_name="Luc",
            last_name="Martin",
            price=Decimal("25.00"),
            registration_date=date(2024, 3, 3),
        ),
    ]
    return [temp_db.get_registration(i) for i in ids]


@pytest.fixture
def incoming_transaction(temp_db):
    """Create a sample incoming transaction."""
    transaction_id = temp_db.create_transaction(
        amount=Decimal("7.00"),
        execution_date=date(2024, 3, 2),
        counterparty_name="DUPONT JEAN",
        communication="Sortie Zeeland",
    )
    return temp_db.get_transaction(transaction_id)


@pytest.fixture
def sample_expense(temp_db, sample_event):
    """Create a sample expense claim attached to the sample event."""
    expense_id = temp_db.create_expense(
        requester_first_name="Paul",
        requester_last_name="Renard",
        amount=Decimal("42.50"),
        expense_date=date(2024, 3, 17),
        description="Fuel for the boat",
        event_id=sample_event.id,
        event_title=sample_event.title,
    )
    return temp_db.get_expense(expense_id)


class FakeProvider(CompletionProvider):
    """Completion provider returning canned answers in order."""

    def __init__(self, answers=None, error=None):
        self.answers = list(answers or [])
        self.error = error
        self.prompts = []

    def complete(self, prompt: str, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise AIProviderError(self.error)
        if not self.answers:
            return "[]"
        return self.answers.pop(0)


@pytest.fixture
def fake_provider():
    """Create a fake completion provider with no canned answers."""
    return FakeProvider()


@pytest.fixture
def ai_service(temp_db, fake_provider):
    """Create an AIMatchingService backed by the fake provider, without delays."""
    sleeps = []
    service = AIMatchingService(temp_db, provider=fake_provider, sleep=sleeps.append)
    service.sleeps = sleeps
    return service


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
