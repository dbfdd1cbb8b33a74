"""Commands linking payables and entities to bank transactions."""

import click
from clubledger.cli.error_handling import report_link_result
from clubledger.domain.linking import LinkingService

PAYABLE_TYPE = click.Choice(["registration", "expense"], case_sensitive=False)
ENTITY_TYPE = click.Choice(["event", "member"], case_sensitive=False)


@click.command("link")
@click.argument("payable_type", type=PAYABLE_TYPE)
@click.argument("payable_id")
@click.argument("transaction_id")
@click.option("--notes", help="Note stored on the link record")
@click.pass_context
def link_payable(ctx, payable_type: str, payable_id: str, transaction_id: str, notes: str | None):
    """Link a registration or expense to the transaction that settles it.

    Examples:
        clubledger link registration r1 t1
        clubledger link expense e7 t42 --notes "refund for the boat"
    """
    service = LinkingService(ctx.obj["db"])
    result = service.link(payable_type, payable_id, transaction_id, notes=notes)
    report_link_result(ctx, result)


@click.command("unlink")
@click.argument("payable_type", type=PAYABLE_TYPE)
@click.argument("payable_id")
@click.option(
    "--mark-unpaid",
    is_flag=True,
    help="Also mark the payable unpaid (by default it stays paid, in cash)",
)
@click.pass_context
def unlink_payable(ctx, payable_type: str, payable_id: str, mark_unpaid: bool):
    """Detach a registration or expense from its bank transaction."""
    service = LinkingService(ctx.obj["db"])
    result = service.unlink(payable_type, payable_id, mark_unpaid=mark_unpaid)
    report_link_result(ctx, result)


@click.command("mark-cash")
@click.argument("payable_type", type=PAYABLE_TYPE)
@click.argument("payable_ids", nargs=-1, required=True)
@click.option("--comment", help="Comment stored on the payable")
@click.pass_context
def mark_cash(ctx, payable_type: str, payable_ids: tuple[str, ...], comment: str | None):
    """Mark one or more payables as paid in cash.

    Examples:
        clubledger mark-cash registration r1
        clubledger mark-cash registration r1 r2 r3 --comment "paid at the pool"
    """
    service = LinkingService(ctx.obj["db"])

    if len(payable_ids) == 1:
        report_link_result(ctx, service.mark_paid_cash(payable_type, payable_ids[0], comment))
        return

    failures = 0
    for payable_id in payable_ids:
        result = service.mark_paid_cash(payable_type, payable_id, comment)
        if result.success:
            click.echo(f"✓ {payable_type} {payable_id} marked as paid in cash")
        else:
            failures += 1
            click.echo(f"✗ {payable_type} {payable_id}: {result.message}")

    click.echo(f"\nResults: {len(payable_ids) - failures} succeeded, {failures} failed")
    if failures:
        ctx.exit(1)


@click.command("mark-unpaid")
@click.argument("payable_type", type=PAYABLE_TYPE)
@click.argument("payable_id")
@click.pass_context
def mark_unpaid(ctx, payable_type: str, payable_id: str):
    """Mark a payable as unpaid."""
    service = LinkingService(ctx.obj["db"])
    report_link_result(ctx, service.mark_unpaid(payable_type, payable_id))


@click.command("link-entity")
@click.argument("transaction_id")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id")
@click.option("--notes", help="Note stored on the link record")
@click.pass_context
def link_entity(ctx, transaction_id: str, entity_type: str, entity_id: str, notes: str | None):
    """Attach an event or member to a transaction.

    Examples:
        clubledger link-entity t1 event ev1
    """
    service = LinkingService(ctx.obj["db"])
    result = service.link_entity(transaction_id, entity_type, entity_id, notes=notes)
    report_link_result(ctx, result)


@click.command("unlink-entity")
@click.argument("transaction_id")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id")
@click.pass_context
def unlink_entity(ctx, transaction_id: str, entity_type: str, entity_id: str):
    """Remove an event or member link from a transaction."""
    service = LinkingService(ctx.obj["db"])
    report_link_result(ctx, service.unlink_entity(transaction_id, entity_type, entity_id))


@click.command("link-receipt")
@click.argument("expense_id")
@click.argument("filename")
@click.pass_context
def link_receipt(ctx, expense_id: str, filename: str):
    """Link an expense using the sequence number in its receipt's file name.

    Examples:
        clubledger link-receipt e7 2024-123_boat_fuel.pdf
    """
    service = LinkingService(ctx.obj["db"])
    report_link_result(ctx, service.link_expense_by_filename(expense_id, filename))


def register_commands(cli):
    """Register linking commands with main CLI."""
    cli.add_command(link_payable)
    cli.add_command(unlink_payable)
    cli.add_command(mark_cash)
    cli.add_command(mark_unpaid)
    cli.add_command(link_entity)
    cli.add_command(unlink_entity)
    cli.add_command(link_receipt)
