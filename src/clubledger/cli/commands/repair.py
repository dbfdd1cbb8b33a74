"""Deletion and link-integrity repair commands."""

import click
from clubledger.cli.error_handling import handle_domain_error
from clubledger.domain.errors import DomainError, PersistenceError
from clubledger.domain.integrity import IntegrityService

ENTITY_TYPE = click.Choice(["registration", "expense", "event", "member"], case_sensitive=False)


def _echo_cleanup(stats):
    click.echo(f"  Transactions updated: {stats.transactions_updated}")
    click.echo(f"  Links removed: {stats.links_removed}")
    if stats.registrations_deleted:
        click.echo(f"  Registrations deleted: {stats.registrations_deleted}")
    if stats.expenses_updated:
        click.echo(f"  Expenses updated: {stats.expenses_updated}")


@click.command("delete")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def delete_entity(ctx, entity_type: str, entity_id: str, yes: bool):
    """Delete an entity and every link that points to it.

    Deleting an event also deletes its registrations and detaches its
    expenses.
    """
    if not yes:
        click.confirm(f"Delete {entity_type} {entity_id}?", abort=True)

    service = IntegrityService(ctx.obj["db"])
    try:
        stats = service.delete_entity(entity_type, entity_id)
    except (DomainError, PersistenceError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"Deleted {entity_type} {entity_id}")
    _echo_cleanup(stats)
    if stats.failures:
        click.echo(f"Failures: {stats.failures}", err=True)
        ctx.exit(1)


@click.command("clean-after-delete")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id")
@click.pass_context
def clean_after_delete(ctx, entity_type: str, entity_id: str):
    """Remove references to an entity deleted outside clubledger."""
    service = IntegrityService(ctx.obj["db"])
    try:
        stats = service.clean_after_delete(entity_type, entity_id)
    except (DomainError, PersistenceError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"Cleaned up after {entity_type} {entity_id}")
    _echo_cleanup(stats)
    if stats.failures:
        click.echo(f"Failures: {stats.failures}", err=True)
        ctx.exit(1)


@click.command("repair")
@click.option("--orphans", "mode", flag_value="orphans", help="Only remove links to deleted entities")
@click.option("--status", "mode", flag_value="status", help="Only recompute reconciled flags")
@click.option("--all", "mode", flag_value="all", default=True, help="Run both repairs (default)")
@click.pass_context
def repair(ctx, mode: str):
    """Repair links to deleted entities and stale reconciled flags.

    Running it twice in a row performs no writes the second time.
    """
    service = IntegrityService(ctx.obj["db"])
    cleanup = status = None

    if mode == "all":
        report = service.repair_all()
        cleanup, status = report.cleanup, report.status
    elif mode == "orphans":
        cleanup = service.clean_all_orphans()
    else:
        status = service.repair_reconciliation_status()

    failures = 0
    if cleanup is not None:
        click.echo("Orphan cleanup:")
        click.echo(f"  Transactions updated: {cleanup.transactions_updated}")
        click.echo(f"  Registrations updated: {cleanup.registrations_updated}")
        click.echo(f"  Expenses updated: {cleanup.expenses_updated}")
        click.echo(f"  Links removed: {cleanup.total_links_removed}")
        click.echo(
            f"  Orphans: {cleanup.orphaned_registrations} registration, "
            f"{cleanup.orphaned_expenses} expense, {cleanup.orphaned_events} event, "
            f"{cleanup.orphaned_members} member"
        )
        if cleanup.malformed_links:
            click.echo(f"  Unreadable link records dropped: {cleanup.malformed_links}")
        click.echo(f"  Time: {cleanup.processing_time_ms} ms")
        failures += cleanup.failures
    if status is not None:
        click.echo("Reconciled flags:")
        click.echo(f"  Checked: {status.transactions_checked}")
        click.echo(f"  Fixed: {status.transactions_fixed}")
        failures += status.failures

    if failures:
        click.echo(f"Failures: {failures}", err=True)
        ctx.exit(1)


def register_commands(cli):
    """Register deletion and repair commands with main CLI."""
    cli.add_command(delete_entity)
    cli.add_command(clean_after_delete)
    cli.add_command(repair)
