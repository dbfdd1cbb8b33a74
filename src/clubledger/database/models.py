"""SQLAlchemy models for the clubledger document store.

The store mirrors a hosted document database: every collection shares one
table, documents are JSON bodies keyed by (collection, doc_id), and there are
no foreign keys between documents.
"""

from datetime import datetime, UTC
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import declarative_base, sessionmaker, Session

Base = declarative_base()

TRANSACTIONS = "transactions"
REGISTRATIONS = "registrations"
EXPENSES = "expenses"
EVENTS = "events"
MEMBERS = "members"
CATEGORIZATION_PATTERNS = "categorization_patterns"


class Document(Base):
    """A schema-less document in a named collection."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True)
    collection = Column(String, nullable=False, index=True)
    doc_id = Column(String, nullable=False)
    data = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_collection_doc_id"),)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
