"""Commands for adding documents to the store by hand."""

import click
from clubledger.utils.date_parser import parse_date
from clubledger.utils.amount_parser import parse_amount


def _parse_date_or_exit(ctx, value: str | None):
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError as e:
        click.echo(f"Error: Invalid date format: {e}", err=True)
        ctx.exit(1)


def _parse_amount_or_exit(ctx, value: str):
    try:
        return parse_amount(value)
    except ValueError as e:
        click.echo(f"Error: Invalid amount format: {e}", err=True)
        ctx.exit(1)


@click.group("add")
def add_group():
    """Add transactions, events, registrations, expenses and members."""
    pass


@add_group.command("transaction")
@click.option("--date", "execution_date", required=True, help="Execution date (YYYY-MM-DD or DD/MM/YYYY)")
@click.option("--amount", required=True, help="Signed amount (e.g., 7,00 or -120.50)")
@click.option("--counterparty", required=True, help="Counterparty name")
@click.option("--communication", default="", help="Free-text communication")
@click.option("--account-number", default="", help="Counterparty account number")
@click.option("--sequence", help="Bank statement sequence number (e.g., 2024-123)")
@click.option("--parent", is_flag=True, help="Mark as a split (parent) transaction")
@click.pass_context
def add_transaction(
    ctx,
    execution_date: str,
    amount: str,
    counterparty: str,
    communication: str,
    account_number: str,
    sequence: str | None,
    parent: bool,
):
    """Add a bank transaction.

    Examples:
        clubledger add transaction --date 2024-03-02 --amount 7,00 --counterparty "DUPONT Jean"
    """
    db = ctx.obj["db"]
    txn_date = _parse_date_or_exit(ctx, execution_date)
    txn_amount = _parse_amount_or_exit(ctx, amount)

    transaction_id = db.create_transaction(
        amount=txn_amount,
        execution_date=txn_date,
        counterparty_name=counterparty,
        communication=communication,
        account_number=account_number,
        sequence_number=sequence,
        is_parent=parent,
    )
    click.echo(f"Created transaction {transaction_id}")
    click.echo(f"  Date: {txn_date}")
    click.echo(f"  Amount: {txn_amount:,.2f}")
    click.echo(f"  Counterparty: {counterparty}")


@add_group.command("event")
@click.option("--title", required=True, help="Event title")
@click.option("--location", default="", help="Event location")
@click.option("--start-date", help="Start date")
@click.option("--end-date", help="End date")
@click.pass_context
def add_event(ctx, title: str, location: str, start_date: str | None, end_date: str | None):
    """Add an event."""
    db = ctx.obj["db"]
    event_id = db.create_event(
        title=title,
        location=location,
        start_date=_parse_date_or_exit(ctx, start_date),
        end_date=_parse_date_or_exit(ctx, end_date),
    )
    click.echo(f"Created event {event_id}")


@add_group.command("registration")
@click.argument("event_id")
@click.option("--first-name", required=True, help="Participant first name")
@click.option("--last-name", required=True, help="Participant last name")
@click.option("--price", required=True, help="Amount due")
@click.option("--date", "registration_date", help="Registration date")
@click.pass_context
def add_registration(
    ctx, event_id: str, first_name: str, last_name: str, price: str, registration_date: str | None
):
    """Register a participant to an event."""
    db = ctx.obj["db"]
    if db.get_event(event_id) is None:
        click.echo(f"Error: Event {event_id} not found", err=True)
        ctx.exit(1)

    registration_id = db.create_registration(
        event_id=event_id,
        first_name=first_name,
        last_name=last_name,
        price=_parse_amount_or_exit(ctx, price),
        registration_date=_parse_date_or_exit(ctx, registration_date),
    )
    click.echo(f"Created registration {registration_id}")


@add_group.command("expense")
@click.option("--first-name", required=True, help="Requester first name")
@click.option("--last-name", required=True, help="Requester last name")
@click.option("--amount", required=True, help="Amount claimed")
@click.option("--date", "expense_date", help="Expense date")
@click.option("--description", default="", help="What the expense was for")
@click.option("--event", "event_id", help="Event the expense belongs to")
@click.pass_context
def add_expense(
    ctx,
    first_name: str,
    last_name: str,
    amount: str,
    expense_date: str | None,
    description: str,
    event_id: str | None,
):
    """Add an expense claim."""
    db = ctx.obj["db"]
    fields = {"description": description}
    if event_id is not None:
        event = db.get_event(event_id)
        if event is None:
            click.echo(f"Error: Event {event_id} not found", err=True)
            ctx.exit(1)
        fields.update(event_id=event_id, event_title=event.title)

    expense_id = db.create_expense(
        requester_first_name=first_name,
        requester_last_name=last_name,
        amount=_parse_amount_or_exit(ctx, amount),
        expense_date=_parse_date_or_exit(ctx, expense_date),
        **fields,
    )
    click.echo(f"Created expense {expense_id}")


@add_group.command("member")
@click.option("--first-name", required=True, help="Member first name")
@click.option("--last-name", required=True, help="Member last name")
@click.pass_context
def add_member(ctx, first_name: str, last_name: str):
    """Add a club member."""
    db = ctx.obj["db"]
    member_id = db.create_member(first_name=first_name, last_name=last_name)
    click.echo(f"Created member {member_id}")


def register_commands(cli):
    """Register add commands with main CLI."""
    cli.add_command(add_group, name="add")
