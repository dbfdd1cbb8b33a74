"""Batch matching commands."""

import click
from clubledger.cli.error_handling import handle_domain_error
from clubledger.domain.ai_matching import AIMatchingService, AISuggestion
from clubledger.domain.auto_match import AutoMatchOptions, AutoMatchService
from clubledger.domain.entities import EntityType, MatchedBy
from clubledger.domain.errors import DomainError, PersistenceError
from clubledger.domain.linking import LinkingService
from clubledger.utils.amount_parser import parse_amount


def _options(amount_tolerance: str, date_tolerance: int, auto_mark_cash: bool, auto_link: bool):
    return AutoMatchOptions(
        amount_tolerance=parse_amount(amount_tolerance),
        date_tolerance=date_tolerance,
        auto_mark_cash=auto_mark_cash,
        auto_link=auto_link,
    )


@click.command("auto-match")
@click.argument("event_id")
@click.option("--amount-tolerance", default="0.50", show_default=True, help="Accepted amount difference")
@click.option("--date-tolerance", default=45, show_default=True, type=int, help="Days before a date warning")
@click.option("--auto-link", is_flag=True, help="Link the matches found")
@click.option("--auto-mark-cash", is_flag=True, help="Mark registrations without a transaction as paid in cash")
@click.pass_context
def auto_match(
    ctx,
    event_id: str,
    amount_tolerance: str,
    date_tolerance: int,
    auto_link: bool,
    auto_mark_cash: bool,
):
    """Match an event's unpaid registrations against bank transactions.

    Without --auto-link nothing is written; the matches are only listed.

    Examples:
        clubledger auto-match ev1
        clubledger auto-match ev1 --amount-tolerance 1 --auto-link
    """
    service = AutoMatchService(ctx.obj["db"])
    try:
        options = _options(amount_tolerance, date_tolerance, auto_mark_cash, auto_link)
        result = service.auto_match_all(event_id, options)
    except (DomainError, ValueError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"\nMatched: {len(result.matched)}")
    for match in result.matched:
        click.echo(
            f"  {match.payable.display_name:<30} -> {match.transaction.id} "
            f"({match.transaction.amount:,.2f}, confidence {match.confidence}%, "
            f"quality {match.quality.overall}%)"
        )
        for warning in match.quality.warnings:
            click.echo(f"      ! {warning}")

    if result.needs_split:
        click.echo(f"\nNeed split: {len(result.needs_split)}")
        for suggestion in result.needs_split:
            click.echo(f"  {suggestion.payable.display_name:<30} {suggestion.message}")

    if result.cash_suggested:
        click.echo(f"\nNo transaction found (cash?): {len(result.cash_suggested)}")
        for payable in result.cash_suggested:
            click.echo(f"  {payable.display_name:<30} {payable.amount_due:,.2f}")

    click.echo(f"\nTotal due: {result.total_amount:,.2f}")
    click.echo(f"Matched amount: {result.matched_amount:,.2f}")
    if auto_link:
        click.echo(f"Linked: {result.linked}")
    if auto_mark_cash:
        click.echo(f"Marked as cash: {result.cash_marked}")
    if result.failures:
        click.echo(f"Failures: {result.failures}", err=True)
        ctx.exit(1)


@click.command("ai-match")
@click.argument("event_id")
@click.option("--apply", "apply_suggestions", is_flag=True, help="Link the suggested matches")
@click.option("--max-transactions", default=100, show_default=True, type=int, help="Transactions sent to the model")
@click.pass_context
def ai_match(ctx, event_id: str, apply_suggestions: bool, max_transactions: int):
    """Ask the language model about registrations the heuristics could not match.

    Requires the ANTHROPIC_API_KEY environment variable.
    """
    db = ctx.obj["db"]
    service = AIMatchingService(db)
    try:
        results = service.suggest_for_unmatched(event_id, max_transactions=max_transactions)
    except DomainError as e:
        handle_domain_error(ctx, e)

    suggestions = [r for r in results.values() if isinstance(r, AISuggestion)]
    if not suggestions:
        click.echo("No AI suggestions.")
        return

    linking = LinkingService(db)
    failures = 0
    click.echo(f"\nFound {len(suggestions)} suggestion(s):")
    for suggestion in suggestions:
        click.echo(
            f"  {suggestion.transaction_id} -> registration {suggestion.payable_id} "
            f"({suggestion.confidence}%): {suggestion.reasoning}"
        )
        if not apply_suggestions:
            continue
        try:
            outcome = linking.link(
                EntityType.REGISTRATION,
                suggestion.payable_id,
                suggestion.transaction_id,
                matched_by=MatchedBy.AI,
                confidence=suggestion.confidence,
                notes=suggestion.reasoning,
            )
        except PersistenceError as e:
            click.echo(f"    ✗ {e}")
            failures += 1
            continue
        if outcome.success:
            click.echo("    ✓ linked")
        else:
            click.echo(f"    ✗ {outcome.message}")
            failures += 1

    if failures:
        ctx.exit(1)


def register_commands(cli):
    """Register matching commands with main CLI."""
    cli.add_command(auto_match)
    cli.add_command(ai_match)
