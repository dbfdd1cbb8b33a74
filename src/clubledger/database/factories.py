"""Database factory functions for creating database instances."""

import os
from pathlib import Path
from typing import Optional

from clubledger.database.sqlalchemy_db import SQLAlchemyDatabase


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite-backed document store.

    Args:
        database_path: Path to SQLite database file. If None, checks CLUBLEDGER_DB_PATH
            environment variable, then defaults to ~/.clubledger/clubledger.db

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    if database_path is None:
        database_path = os.environ.get("CLUBLEDGER_DB_PATH")

    if database_path is None:
        db_dir = Path.home() / ".clubledger"
        db_dir.mkdir(exist_ok=True)
        database_path = str(db_dir / "clubledger.db")

    database_url = f"sqlite:///{database_path}"
    return SQLAlchemyDatabase(database_url)
