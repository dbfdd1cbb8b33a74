"""Categorization commands."""

import click
from clubledger.cli.error_handling import handle_domain_error
from clubledger.domain.categorization import CategorizationService
from clubledger.domain.errors import DomainError, PersistenceError


@click.command("categorize")
@click.argument("transaction_id")
@click.pass_context
def categorize_transaction(ctx, transaction_id: str):
    """Guess the category and account code of a transaction.

    Shows the rule-based guess followed by suggestions learned from
    earlier confirmations.
    """
    db = ctx.obj["db"]
    service = CategorizationService(db)

    try:
        result = service.categorize_by_id(transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if result.category:
        click.echo(f"Guess: {result.category} ({result.account_code or 'no account code'})")
        click.echo(f"  Confidence: {result.confidence}%")
        click.echo(f"  Reason: {result.reason}")
    else:
        click.echo("No rule matched.")

    suggestions = service.get_suggestions(db.get_transaction(transaction_id))
    if suggestions:
        click.echo("\nLearned suggestions:")
        for suggestion in suggestions:
            click.echo(
                f"  {suggestion.category:<25} {suggestion.account_code:<12} "
                f"used {suggestion.count}x - {suggestion.match_reason}"
            )


@click.command("apply-category")
@click.argument("transaction_id")
@click.argument("category")
@click.argument("account_code")
@click.pass_context
def apply_category(ctx, transaction_id: str, category: str, account_code: str):
    """Categorize a transaction and remember the choice.

    Examples:
        clubledger apply-category t1 cotisation 730-00-712
    """
    service = CategorizationService(ctx.obj["db"])
    try:
        pattern = service.apply_category(transaction_id, category, account_code)
    except (DomainError, PersistenceError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"Transaction {transaction_id} categorized as '{category}' ({account_code})")
    if pattern is not None:
        click.echo(f"  Pattern '{pattern.primary_keyword}' used {pattern.use_count} time(s)")


@click.command("import-patterns")
@click.pass_context
def import_patterns(ctx):
    """Learn patterns from every transaction that already has an account code."""
    service = CategorizationService(ctx.obj["db"])
    stats = service.import_patterns_from_transactions()

    click.echo(f"Imported: {stats.imported}")
    click.echo(f"Skipped: {stats.skipped}")
    if stats.errors:
        click.echo(f"Errors: {stats.errors}", err=True)
        ctx.exit(1)


def register_commands(cli):
    """Register categorization commands with main CLI."""
    cli.add_command(categorize_transaction)
    cli.add_command(apply_category)
    cli.add_command(import_patterns)
