"""Transaction split commands."""

import click
from clubledger.cli.error_handling import handle_domain_error
from clubledger.domain.errors import DomainError, PersistenceError
from clubledger.domain.splitting import SplitLine, SplitService
from clubledger.utils.amount_parser import parse_amount


def _parse_part_or_exit(ctx, value: str) -> SplitLine:
    amount, sep, description = value.partition(":")
    if not sep:
        click.echo(f"Error: Invalid part '{value}', expected AMOUNT:DESCRIPTION", err=True)
        ctx.exit(1)
    try:
        return SplitLine(amount=parse_amount(amount), description=description)
    except ValueError as e:
        click.echo(f"Error: Invalid amount format: {e}", err=True)
        ctx.exit(1)


@click.command("split")
@click.argument("transaction_id")
@click.option(
    "--part",
    "parts",
    multiple=True,
    required=True,
    help="Share of the amount as AMOUNT:DESCRIPTION (repeat for each line)",
)
@click.pass_context
def split_transaction(ctx, transaction_id: str, parts: tuple[str, ...]):
    """Split a transaction into child transactions.

    Amounts are given without sign; children take the sign of the
    transaction. The parts must add up to the transaction amount.

    Examples:
        clubledger split t1 --part "7,00:Jean Dupont" --part "7,00:Marie Lambert"
    """
    lines = [_parse_part_or_exit(ctx, part) for part in parts]
    service = SplitService(ctx.obj["db"])
    try:
        result = service.split_transaction(transaction_id, lines)
    except (DomainError, PersistenceError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"Split transaction {transaction_id} into {len(result.children)} lines:")
    for child in result.children:
        click.echo(f"  {child.id}  {child.amount:>10,.2f}  {child.communication}")


def register_commands(cli):
    """Register split commands with main CLI."""
    cli.add_command(split_transaction)
