import click

from drive_backup.cli import CliContext, cli
from drive_backup.errors import BackupError, StateInvariantViolation
from drive_backup.formatting import format_oversized, format_registry
from drive_backup.store import find_active_pool


@cli.group()
def registry():
    """Pool registry inspection commands."""


@registry.command(name="show")
@click.pass_obj
def registry_show(context: CliContext):
    """Print every pool in the registry."""
    try:
        records = context.store().load_registry()
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    for line in format_registry(records):
        click.echo(line)


@registry.command(name="check")
@click.pass_obj
def registry_check(context: CliContext):
    """Check that exactly one pool is active."""
    try:
        records = context.store().load_registry()
        active = find_active_pool(records)
    except StateInvariantViolation as e:
        click.echo(f"FAIL: {e}")
        raise click.ClickException("Registry needs manual correction") from e
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"OK: {len(records)} pools, {active.drive_name} ({active.drive_id}) is active")


@cli.group()
def oversized():
    """Oversized queue commands."""


@oversized.command(name="list")
@click.option("--manual-only", is_flag=True, help="Only show users needing a manual backup")
@click.pass_obj
def oversized_list(context: CliContext, manual_only: bool):
    """Print the persisted oversized queue."""
    try:
        queue = context.store().load_oversized()
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    entries = queue.manual() if manual_only else queue.entries()
    click.echo(f"{len(entries)} oversized users")
    for line in format_oversized(entries):
        click.echo(line)
