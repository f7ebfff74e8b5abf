#!/usr/bin/env python3
"""GAM-backed implementations of the external collaborators.

All calls are synchronous: each one runs the gam executable to completion and
either returns its output or raises TransportError. No timeout is imposed here;
gam applies its own.
"""

from __future__ import annotations

import csv
import io
import logging
import shlex
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path

from drive_backup.collaborators import DriveEntry, Inventory, PoolProvider, TabularStore
from drive_backup.errors import TransportError

_LOGGER = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class GamRunner:
    def __init__(self, gam_path: str = "gam", dry_run: bool = False):
        self.gam_path = gam_path
        self.dry_run = dry_run

    def run(self, args: Sequence[str], mutating: bool = False) -> str:
        cmd = [self.gam_path, *args]
        if mutating and self.dry_run:
            _LOGGER.info("[DRY RUN] Would run: %s", shlex.join(cmd))
            return ""
        _LOGGER.debug("Running %s", shlex.join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise TransportError(f"gam executable not found: {self.gam_path}", cmd) from e
        except subprocess.CalledProcessError as e:
            raise TransportError(
                f"gam exited with status {e.returncode}: {(e.stderr or '').strip()}", cmd, e.stderr or ""
            ) from e
        return result.stdout

    def run_csv(self, args: Sequence[str]) -> list[dict[str, str]]:
        return list(csv.DictReader(io.StringIO(self.run(args))))


def _entries_from_filelist(rows: list[dict[str, str]]) -> Iterator[DriveEntry]:
    for row in rows:
        yield DriveEntry(id=row.get("id", ""), is_container=row.get("mimeType") == FOLDER_MIME_TYPE)


class GamInventory(Inventory):
    def __init__(self, runner: GamRunner, admin_user: str):
        self.runner = runner
        self.admin_user = admin_user

    def list_files(self, owner: str) -> Iterator[DriveEntry]:
        rows = self.runner.run_csv(["user", owner, "print", "filelist", "fields", "id,mimetype"])
        return _entries_from_filelist(rows)

    def list_pool_files(self, pool_id: str) -> Iterator[DriveEntry]:
        rows = self.runner.run_csv(
            ["user", self.admin_user, "print", "filelist", "select", "shareddriveid", pool_id, "fields", "id,mimetype"]
        )
        return _entries_from_filelist(rows)


class GamSheetStore(TabularStore):
    """Exchanges sheets of a spreadsheet as CSV files through a scratch directory."""

    def __init__(self, runner: GamRunner, admin_user: str):
        self.runner = runner
        self.admin_user = admin_user

    def download(self, resource_id: str, sheet_name: str) -> list[dict[str, str]]:
        with tempfile.TemporaryDirectory(prefix="drive-backup-") as scratch:
            target = f"{sheet_name}.csv"
            self.runner.run(
                [
                    "user",
                    self.admin_user,
                    "get",
                    "drivefile",
                    resource_id,
                    "format",
                    "csv",
                    "gsheet",
                    sheet_name,
                    "targetfolder",
                    scratch,
                    "targetname",
                    target,
                    "overwrite",
                ]
            )
            path = Path(scratch) / target
            if not path.exists():
                raise TransportError(f"gam did not produce {target} for sheet {sheet_name}")
            with path.open(encoding="utf-8", newline="") as csv_file:
                return list(csv.DictReader(csv_file))

    def upload(self, resource_id: str, sheet_name: str, header: tuple[str, ...], rows: list[dict[str, str]]) -> None:
        with tempfile.TemporaryDirectory(prefix="drive-backup-") as scratch:
            path = Path(scratch) / f"{sheet_name}.csv"
            with path.open("w", encoding="utf-8", newline="") as csv_file:
                writer = csv.DictWriter(csv_file, fieldnames=list(header), extrasaction="ignore")
                writer.writeheader()
                writer.writerows(rows)
            self.runner.run(
                [
                    "user",
                    self.admin_user,
                    "update",
                    "drivefile",
                    resource_id,
                    "localfile",
                    str(path),
                    "csvsheet",
                    sheet_name,
                    "retainname",
                ],
                mutating=True,
            )


class GamPoolProvider(PoolProvider):
    def __init__(self, runner: GamRunner, admin_user: str):
        self.runner = runner
        self.admin_user = admin_user

    def create_pool(self, name: str) -> str:
        output = self.runner.run(["create", "shareddrive", name, "returnidonly"], mutating=True)
        if self.runner.dry_run:
            return f"dry-run-{name}"
        pool_id = output.strip().splitlines()[-1].strip() if output.strip() else ""
        if not pool_id:
            raise TransportError(f"gam returned no id for new shared drive {name}")
        return pool_id

    def find_pool(self, name: str) -> str | None:
        # Names are quoted for the Drive query language, not for the shell
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        rows = self.runner.run_csv(
            ["print", "shareddrives", "adminaccess", "query", f"name = '{escaped}'", "fields", "id,name"]
        )
        matches = [row["id"] for row in rows if row.get("name") == name and row.get("id")]
        if len(matches) > 1:
            _LOGGER.warning("Found %d shared drives named %s, using %s", len(matches), name, matches[0])
        return matches[0] if matches else None

    def set_pool_attribute(self, pool_id: str, attribute: str, value: str) -> None:
        self.runner.run(["update", "shareddrive", pool_id, attribute, value], mutating=True)

    def grant_role(self, pool_id: str, identity: str, role: str) -> None:
        self.runner.run(
            ["user", self.admin_user, "add", "drivefileacl", pool_id, "user", identity, "role", role],
            mutating=True,
        )
