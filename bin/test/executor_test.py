import subprocess
from unittest.mock import MagicMock, patch

import pytest
from drive_backup.executor import CommandBackupExecutor
from drive_backup.models import CostEstimate

from fakes import make_pool

USER = CostEstimate("a@example.com", 100, 2)
POOL = make_pool("Legacydrivebackup2", "0Apool")


def test_command_template_is_filled_in():
    executor = CommandBackupExecutor(["copy-drive", "{email}", "--to", "{pool_id}", "--name={pool_name}"])
    assert executor.build_command(USER, POOL) == [
        "copy-drive",
        "a@example.com",
        "--to",
        "0Apool",
        "--name=Legacydrivebackup2",
    ]


def test_empty_command_is_rejected():
    with pytest.raises(ValueError):
        CommandBackupExecutor([])


@patch("subprocess.run")
def test_successful_backup(mock_run):
    mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
    assert CommandBackupExecutor(["copy-drive", "{email}"]).backup(USER, POOL)
    assert mock_run.call_args[0][0] == ["copy-drive", "a@example.com"]


@patch("subprocess.run")
def test_failed_backup_returns_false(mock_run):
    mock_run.side_effect = subprocess.CalledProcessError(1, ["copy-drive"], stderr="quota exceeded")
    assert not CommandBackupExecutor(["copy-drive", "{email}"]).backup(USER, POOL)


@patch("subprocess.run")
def test_dry_run_does_not_copy(mock_run):
    assert CommandBackupExecutor(["copy-drive", "{email}"], dry_run=True).backup(USER, POOL)
    mock_run.assert_not_called()
