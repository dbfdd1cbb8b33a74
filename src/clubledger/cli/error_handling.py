"""CLI error handling helpers."""

import click

from clubledger.domain.errors import DomainError, PersistenceError
from clubledger.domain.linking import LinkResult


def handle_domain_error(
    ctx: click.Context, error: DomainError | PersistenceError | ValueError
) -> None:
    """Render a domain or persistence error and exit with failure."""
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)


def report_link_result(ctx: click.Context, result: LinkResult) -> None:
    """Print a linking outcome, exiting with failure if it was rejected."""
    if not result.success:
        click.echo(f"Error: {result.message}", err=True)
        ctx.exit(1)
    click.echo(result.message)
