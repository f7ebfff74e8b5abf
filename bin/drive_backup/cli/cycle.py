"""Commands that run all or part of a backup cycle."""

from __future__ import annotations

import dataclasses
import datetime
import logging

import click

from drive_backup.cli import CliContext, cli
from drive_backup.errors import BackupError, RotationFailed
from drive_backup.formatting import format_admission, format_projection
from drive_backup.models import UsageProjection
from drive_backup.projector import pending_users
from drive_backup.store import find_active_pool

_LOGGER = logging.getLogger(__name__)


def _with_overrides(context: CliContext, max_minutes: int | None, threshold: float | None) -> CliContext:
    try:
        config = context.config.with_cli_overrides(max_minutes=max_minutes, threshold=threshold)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return dataclasses.replace(context, config=config)


@cli.command()
@click.option("--max-minutes", type=int, metavar="N", help="Admission budget in minutes (overrides config)")
@click.option("--threshold", type=float, metavar="PCT", help="Rotation threshold percentage (overrides config)")
@click.option("--copy/--no-copy", default=True, help="Hand the admitted users to the backup command")
@click.pass_obj
def run(context: CliContext, max_minutes: int | None, threshold: float | None, copy: bool):
    """Run a full cycle: project, rotate if needed, admit and back up."""
    context = _with_overrides(context, max_minutes, threshold)
    if copy and context.executor is None:
        _LOGGER.warning("No backup command configured, admitted users will not be copied")
    try:
        report = context.cycle().run(copy=copy)
    except BackupError as e:
        raise click.ClickException(str(e)) from e

    for line in format_projection(report.projection, context.config.capacity.rotation_threshold):
        click.echo(line)
    if report.rotation.rotated:
        click.echo(f"Rotated to {report.rotation.active.drive_name} ({report.rotation.active.drive_id})")
    click.echo(f"Active pool: {report.rotation.active.drive_name}")
    for line in format_admission(report.admission):
        click.echo(line)
    if report.skipped_manual:
        click.echo(f"Skipped (manual track): {', '.join(report.skipped_manual)}")
    if copy and context.executor is not None:
        click.echo(f"Backed up {len(report.copied)} users, {len(report.failed)} failed")
    if report.failed:
        raise click.ClickException(f"Failed to back up {len(report.failed)} users")


@cli.command()
@click.option("--max-minutes", type=int, metavar="N", help="Admission budget in minutes (overrides config)")
@click.pass_obj
def plan(context: CliContext, max_minutes: int | None):
    """Show which users would be admitted, without saving anything."""
    context = _with_overrides(context, max_minutes, None)
    store = context.store()
    try:
        candidates = store.load_candidates()
        oversized = store.load_oversized()
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    result, _, skipped = context.cycle().plan(candidates, oversized, datetime.datetime.now(datetime.UTC))
    for line in format_admission(result):
        click.echo(line)
    if skipped:
        click.echo(f"Skipped (manual track): {', '.join(skipped)}")


def _project(context: CliContext) -> tuple[UsageProjection, list]:
    store = context.store()
    registry = store.load_registry()
    active = find_active_pool(registry)
    pending = pending_users(
        store.load_candidates(), store.load_oversized(), context.config.capacity.include_manual_in_projection
    )
    click.echo(f"Active pool: {active.drive_name} ({active.drive_id}), {len(pending)} users pending")
    return context.projector().project(active.drive_id, pending), registry


@cli.command()
@click.option("--threshold", type=float, metavar="PCT", help="Rotation threshold percentage (overrides config)")
@click.pass_obj
def project(context: CliContext, threshold: float | None):
    """Show current and projected usage of the active pool."""
    context = _with_overrides(context, None, threshold)
    try:
        projection, _ = _project(context)
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    for line in format_projection(projection, context.config.capacity.rotation_threshold):
        click.echo(line)
    if not projection.is_known:
        raise click.ClickException("Usage of the active pool is unknown")


@cli.command()
@click.option("--threshold", type=float, metavar="PCT", help="Rotation threshold percentage (overrides config)")
@click.option("--force", is_flag=True, help="Rotate regardless of the projected usage")
@click.pass_obj
def rotate(context: CliContext, threshold: float | None, force: bool):
    """Rotate to a new pool if the active one is projected to fill up."""
    context = _with_overrides(context, None, threshold)
    rotator = context.rotator()
    cycle = context.cycle()
    try:
        if force:
            result = rotator.rotate(context.store().load_registry())
        else:
            projection, registry = _project(context)
            if not projection.is_known:
                raise click.ClickException("Usage of the active pool is unknown, not rotating")
            for line in format_projection(projection, rotator.threshold):
                click.echo(line)
            result = rotator.evaluate(projection, registry)
    except RotationFailed as e:
        cycle.alert(f"Pool rotation failed at step '{e.step}'", str(e))
        raise click.ClickException(str(e)) from e
    except BackupError as e:
        raise click.ClickException(str(e)) from e

    if result.rotated:
        cycle.alert(
            f"Rotated backup pool to {result.active.drive_name}",
            f"{result.previous.drive_name} was retired from the command line.\nNew pool id: {result.active.drive_id}",
        )
        adopted = " (adopted existing drive)" if result.adopted_existing else ""
        click.echo(f"Rotated to {result.active.drive_name} ({result.active.drive_id}){adopted}")
    else:
        click.echo(f"No rotation needed, {result.active.drive_name} stays active")
