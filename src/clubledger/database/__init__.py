"""Database layer for clubledger."""

from clubledger.database.base import Database
from clubledger.database.factories import create_sqlite_database

__all__ = ["Database", "create_sqlite_database"]
