"""Commands showing a transaction or payable with its links."""

import click
from clubledger.domain.match_quality import calculate_match_quality


@click.command("show-transaction")
@click.argument("transaction_id")
@click.pass_context
def show_transaction(ctx, transaction_id: str):
    """Show a transaction and the entities linked to it."""
    db = ctx.obj["db"]
    txn = db.get_transaction(transaction_id)
    if txn is None:
        click.echo(f"Error: Transaction {transaction_id} not found", err=True)
        ctx.exit(1)

    click.echo(f"\nTransaction ID: {txn.id}")
    click.echo(f"  Date: {txn.execution_date}")
    click.echo(f"  Amount: {txn.amount:,.2f}")
    click.echo(f"  Counterparty: {txn.counterparty_name}")
    if txn.communication:
        click.echo(f"  Communication: {txn.communication}")
    if txn.sequence_number:
        click.echo(f"  Sequence: {txn.sequence_number}")
    if txn.category:
        click.echo(f"  Category: {txn.category} ({txn.account_code or '-'})")
    if txn.is_parent:
        click.echo(f"  Split into: {txn.child_count} lines")
    if txn.parent_transaction_id:
        click.echo(f"  Split from: {txn.parent_transaction_id}")
    click.echo(f"  Reconciled: {'yes' if txn.reconciled else 'no'}")

    if txn.matched_entities:
        click.echo("  Links:")
        for entity in txn.matched_entities:
            click.echo(
                f"    {entity.entity_type.value:<13} {entity.entity_id:<34} {entity.entity_name} "
                f"({entity.matched_by.value}, {entity.confidence}%)"
            )
    if txn.has_legacy_links:
        click.echo(f"  Legacy links: event={txn.event_id} expense={txn.expense_claim_id}")


@click.command("show-payable")
@click.argument("payable_type", type=click.Choice(["registration", "expense"], case_sensitive=False))
@click.argument("payable_id")
@click.pass_context
def show_payable(ctx, payable_type: str, payable_id: str):
    """Show a registration or expense, with the quality of its bank link."""
    db = ctx.obj["db"]
    if payable_type.lower() == "registration":
        payable = db.get_registration(payable_id)
    else:
        payable = db.get_expense(payable_id)
    if payable is None:
        click.echo(f"Error: {payable_type.capitalize()} {payable_id} not found", err=True)
        ctx.exit(1)

    click.echo(f"\n{payable_type.capitalize()} ID: {payable.id}")
    click.echo(f"  Name: {payable.display_name}")
    click.echo(f"  Amount due: {payable.amount_due:,.2f}")
    if payable.reference_date:
        click.echo(f"  Date: {payable.reference_date}")
    click.echo(f"  Paid: {'yes' if payable.paid else 'no'} ({payable.payment_mode.value})")
    if payable.comment:
        click.echo(f"  Comment: {payable.comment}")

    if not payable.transaction_id:
        return

    click.echo(f"  Transaction: {payable.transaction_id}")
    txn = db.get_transaction(payable.transaction_id)
    if txn is None:
        click.echo("    (transaction no longer exists; run 'clubledger repair')")
        return

    quality = calculate_match_quality(payable, txn)
    click.echo(
        f"    Match quality: {quality.overall}% (amount {quality.amount_match:.0f}, "
        f"name {quality.name_match}, date {quality.date_proximity})"
    )
    for warning in quality.warnings:
        click.echo(f"    ! {warning}")


def register_commands(cli):
    """Register show commands with main CLI."""
    cli.add_command(show_transaction)
    cli.add_command(show_payable)
