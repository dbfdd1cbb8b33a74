#!/usr/bin/env python3
"""Migration script to rename legacy entity types in transaction link records.

Older versions wrote link records with the entity types:
- "demand" → "expense"
- "expense_claim" → "expense"
- "inscription" → "registration"
- "participant" → "registration"

The application reads both spellings, but the orphan cleanup and the
duplicate-link checks compare canonical names, so stored records are
rewritten to the canonical ones. Running the migration twice is harmless.

Usage:
    python migrations/migrate_legacy_entity_types.py [--db-path PATH] [--dry-run]
"""

import sys
from pathlib import Path

# Add src to path so we can import clubledger modules
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from clubledger.database.factories import create_sqlite_database
from clubledger.database.models import Document, TRANSACTIONS
from clubledger.domain.entities import LEGACY_ENTITY_TYPES


def rename_legacy_types(matched_entities: list[dict]) -> tuple[list[dict], int]:
    """Return link records with canonical entity types, and how many changed.

    Args:
        matched_entities: Link records as stored in a transaction document

    Returns:
        Tuple of (rewritten records, number of records renamed)
    """
    renamed = 0
    result = []
    for record in matched_entities:
        entity_type = str(record.get("entity_type", "")).strip().lower()
        if entity_type in LEGACY_ENTITY_TYPES:
            record = {**record, "entity_type": LEGACY_ENTITY_TYPES[entity_type].value}
            renamed += 1
        result.append(record)
    return result, renamed


def migrate_database(database_path: str | None = None, dry_run: bool = False) -> int:
    """Rewrite legacy entity types in every transaction document.

    Args:
        database_path: Path to database file. If None, uses default location.
        dry_run: Count the records to rename without writing

    Returns:
        Number of link records renamed
    """
    db = create_sqlite_database(database_path=database_path)
    db.connect()

    try:
        session = db.session_factory()
        try:
            documents = (
                session.query(Document).filter(Document.collection == TRANSACTIONS).all()
            )
            print(f"Checking {len(documents)} transaction(s)...")

            total = 0
            for document in documents:
                records = document.data.get("matched_entities") or []
                rewritten, renamed = rename_legacy_types(records)
                if not renamed:
                    continue
                total += renamed
                print(f"  {document.doc_id}: {renamed} link record(s) renamed")
                if not dry_run:
                    document.data["matched_entities"] = rewritten

            if dry_run:
                session.rollback()
                print(f"Dry run: {total} link record(s) would be renamed")
            else:
                session.commit()
                print(f"Migration completed successfully! {total} link record(s) renamed")
            return total
        finally:
            session.close()
    finally:
        db.disconnect()


def main():
    """Main entry point for migration script."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Rename legacy entity types in transaction link records"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        help="Path to database file (overrides CLUBLEDGER_DB_PATH environment variable)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args()

    try:
        migrate_database(database_path=args.db_path, dry_run=args.dry_run)
        return 0
    except Exception as e:
        print(f"\nMigration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
