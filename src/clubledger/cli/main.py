"""Main CLI entry point."""

import logging

import click
from clubledger.database.factories import create_sqlite_database

# Import and register all commands at module level
from clubledger.cli.commands import (
    add,
    categorize,
    link,
    match,
    repair,
    show,
    split,
)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides CLUBLEDGER_DB_PATH environment variable)",
    envvar="CLUBLEDGER_DB_PATH",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="CLUBLEDGER_LOG_LEVEL",
    help="Logging verbosity",
)
@click.pass_context
def cli(ctx, db_path: str | None, log_level: str):
    """Clubledger - bank reconciliation for club bookkeeping.

    Link bank transactions to event registrations and expense claims,
    auto-match payments, categorize transactions and repair links left
    behind by deletions.
    """
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db


# Register all commands
add.register_commands(cli)
categorize.register_commands(cli)
link.register_commands(cli)
match.register_commands(cli)
repair.register_commands(cli)
show.register_commands(cli)
split.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
