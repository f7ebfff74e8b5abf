"""Hand-off of admitted users to the per-user drive copy."""

from __future__ import annotations

import logging
import shlex
import subprocess
from abc import ABC, abstractmethod

from drive_backup.models import CostEstimate, PoolRecord

_LOGGER = logging.getLogger(__name__)


class BackupExecutor(ABC):
    @abstractmethod
    def backup(self, user: CostEstimate, pool: PoolRecord) -> bool:
        """Copy one user's drive into `pool`. Returns False on failure."""


class CommandBackupExecutor(BackupExecutor):
    """Runs an external copy command per user.

    The command template may use `{email}`, `{pool_id}` and `{pool_name}`.
    """

    def __init__(self, command: list[str], dry_run: bool = False):
        if not command:
            raise ValueError("No backup command configured")
        self.command = command
        self.dry_run = dry_run

    def build_command(self, user: CostEstimate, pool: PoolRecord) -> list[str]:
        return [part.format(email=user.email, pool_id=pool.drive_id, pool_name=pool.drive_name) for part in self.command]

    def backup(self, user: CostEstimate, pool: PoolRecord) -> bool:
        cmd = self.build_command(user, pool)
        if self.dry_run:
            _LOGGER.info("[DRY RUN] Would run: %s", shlex.join(cmd))
            return True
        _LOGGER.info("Backing up %s into %s", user.email, pool.drive_name)
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError:
            _LOGGER.error("Backup command not found: %s", cmd[0])
            return False
        except subprocess.CalledProcessError as e:
            _LOGGER.error("Backup of %s failed with status %d: %s", user.email, e.returncode, (e.stderr or "").strip())
            return False
        return True
