from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click

from drive_backup.alerting import Alerter, CompositeAlerter, GamMailAlerter, WebhookAlerter
from drive_backup.collaborators import Inventory, PoolProvider, TabularStore
from drive_backup.config import Config
from drive_backup.cycle import BackupCycle
from drive_backup.executor import BackupExecutor, CommandBackupExecutor
from drive_backup.gam import GamInventory, GamPoolProvider, GamRunner, GamSheetStore
from drive_backup.models import PoolLimits
from drive_backup.projector import UsageProjector
from drive_backup.rotator import PoolRotator
from drive_backup.store import UsageStore

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("/etc/drive-backup/config.yaml")


@dataclass
class CliContext:
    config: Config
    tabular: TabularStore
    inventory: Inventory
    provider: PoolProvider
    executor: BackupExecutor | None = None
    alerter: Alerter | None = None
    dry_run: bool = False

    @classmethod
    def from_config(cls, config: Config, dry_run: bool) -> CliContext:
        runner = GamRunner(config.gam.gam_path, dry_run=dry_run)
        alerters: list[Alerter] = []
        if config.alerts.recipients:
            alerters.append(GamMailAlerter(runner, config.alerts.recipients))
        if config.alerts.webhook_url and not dry_run:
            alerters.append(WebhookAlerter(config.alerts.webhook_url))
        return cls(
            config=config,
            tabular=GamSheetStore(runner, config.gam.admin_user),
            inventory=GamInventory(runner, config.gam.admin_user),
            provider=GamPoolProvider(runner, config.gam.admin_user),
            executor=CommandBackupExecutor(config.backup.command, dry_run=dry_run) if config.backup.command else None,
            alerter=CompositeAlerter(alerters) if alerters else None,
            dry_run=dry_run,
        )

    def store(self) -> UsageStore:
        return UsageStore(self.tabular, self.config.sheets.spreadsheet_id, self.config.sheets)

    def projector(self) -> UsageProjector:
        capacity = self.config.capacity
        return UsageProjector(self.inventory, PoolLimits(capacity.item_limit, capacity.folder_limit))

    def rotator(self) -> PoolRotator:
        return PoolRotator(
            self.store(),
            self.provider,
            base_name=self.config.pools.base_name,
            organizers=list(self.config.pools.organizers),
            attributes=dict(self.config.pools.attributes),
            threshold=self.config.capacity.rotation_threshold,
        )

    def cycle(self) -> BackupCycle:
        return BackupCycle(
            self.config,
            self.store(),
            self.projector(),
            self.rotator(),
            executor=self.executor,
            alerter=self.alerter,
        )


@click.group()
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG,
    metavar="FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Read configuration from FILE",
    show_default=True,
)
@click.option("--debug/--no-debug", help="Turn on debugging")
@click.option("--dry-run/--for-real", help="Dry run only: read everything, change nothing")
@click.option("--log-to-console", is_flag=True, help="Log output to console, even if logging to a file is requested")
@click.option("--log", metavar="LOGFILE", help="Log to LOGFILE", type=click.Path(dir_okay=False, writable=True))
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path,
    debug: bool,
    dry_run: bool,
    log_to_console: bool,
    log: str | None,
):
    """Back up suspended users' drives into rotating shared drive pools."""
    formatter = logging.Formatter(fmt="%(asctime)s %(name)-15s %(levelname)-8s %(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if log:
        file_handler = logging.FileHandler(log)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    if not log or log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        config = Config.load(config_path)
    except Exception as e:
        raise click.ClickException(f"Unable to load {config_path}: {e}") from e
    ctx.obj = CliContext.from_config(config, dry_run)
