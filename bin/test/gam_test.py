import subprocess
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from drive_backup.errors import TransportError
from drive_backup.gam import FOLDER_MIME_TYPE, GamInventory, GamPoolProvider, GamRunner, GamSheetStore


def _completed(stdout=""):
    return MagicMock(stdout=stdout, stderr="", returncode=0)


class TestGamRunner(unittest.TestCase):
    @patch("subprocess.run")
    def test_run_returns_stdout(self, mock_run):
        mock_run.return_value = _completed("hello\n")
        self.assertEqual(GamRunner("/usr/bin/gam").run(["info", "domain"]), "hello\n")
        mock_run.assert_called_once_with(
            ["/usr/bin/gam", "info", "domain"], capture_output=True, text=True, check=True
        )

    @patch("subprocess.run")
    def test_non_zero_exit_is_a_transport_error(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(2, ["gam"], stderr="ERROR: 404\n")
        with self.assertRaises(TransportError) as cm:
            GamRunner().run(["print", "users"])
        self.assertEqual(cm.exception.stderr, "ERROR: 404\n")
        self.assertEqual(cm.exception.command, ["gam", "print", "users"])

    @patch("subprocess.run")
    def test_missing_executable_is_a_transport_error(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gam")
        with self.assertRaises(TransportError):
            GamRunner().run(["version"])

    @patch("subprocess.run")
    def test_dry_run_skips_mutating_calls_only(self, mock_run):
        mock_run.return_value = _completed("id,name\n")
        runner = GamRunner(dry_run=True)
        self.assertEqual(runner.run(["create", "shareddrive", "x"], mutating=True), "")
        mock_run.assert_not_called()
        runner.run_csv(["print", "shareddrives"])
        mock_run.assert_called_once()


class TestGamInventory(unittest.TestCase):
    @patch("subprocess.run")
    def test_list_files_marks_folders(self, mock_run):
        mock_run.return_value = _completed(
            f"Owner,id,mimeType\nu@example.com,1,text/plain\nu@example.com,2,{FOLDER_MIME_TYPE}\n"
        )
        entries = list(GamInventory(GamRunner(), "admin@example.com").list_files("u@example.com"))
        self.assertEqual([e.id for e in entries], ["1", "2"])
        self.assertEqual([e.is_container for e in entries], [False, True])
        args = mock_run.call_args[0][0]
        self.assertEqual(args[:5], ["gam", "user", "u@example.com", "print", "filelist"])

    @patch("subprocess.run")
    def test_list_pool_files_queries_as_admin(self, mock_run):
        mock_run.return_value = _completed("Owner,id,mimeType\n")
        self.assertEqual(list(GamInventory(GamRunner(), "admin@example.com").list_pool_files("0AAxyz")), [])
        args = mock_run.call_args[0][0]
        self.assertIn("admin@example.com", args)
        self.assertIn("shareddriveid", args)
        self.assertIn("0AAxyz", args)


class TestGamPoolProvider(unittest.TestCase):
    @patch("subprocess.run")
    def test_create_returns_id(self, mock_run):
        mock_run.return_value = _completed("0AAnewdrive\n")
        self.assertEqual(GamPoolProvider(GamRunner(), "admin@example.com").create_pool("Pool2"), "0AAnewdrive")
        self.assertEqual(mock_run.call_args[0][0], ["gam", "create", "shareddrive", "Pool2", "returnidonly"])

    @patch("subprocess.run")
    def test_create_without_id_is_an_error(self, mock_run):
        mock_run.return_value = _completed("")
        with self.assertRaises(TransportError):
            GamPoolProvider(GamRunner(), "admin@example.com").create_pool("Pool2")

    @patch("subprocess.run")
    def test_find_pool_matches_exact_name(self, mock_run):
        mock_run.return_value = _completed("id,name\n0A1,Pool2\n0A2,Pool22\n")
        provider = GamPoolProvider(GamRunner(), "admin@example.com")
        self.assertEqual(provider.find_pool("Pool2"), "0A1")
        self.assertIsNone(provider.find_pool("Pool3"))

    @patch("subprocess.run")
    def test_grant_role(self, mock_run):
        mock_run.return_value = _completed()
        GamPoolProvider(GamRunner(), "admin@example.com").grant_role("0A1", "boss@example.com", "organizer")
        self.assertEqual(
            mock_run.call_args[0][0],
            ["gam", "user", "admin@example.com", "add", "drivefileacl", "0A1", "user", "boss@example.com", "role", "organizer"],
        )


class TestGamSheetStore(unittest.TestCase):
    @patch("subprocess.run")
    def test_download_reads_exported_csv(self, mock_run):
        def fake_gam(cmd, **kwargs):
            folder = Path(cmd[cmd.index("targetfolder") + 1])
            name = cmd[cmd.index("targetname") + 1]
            (folder / name).write_text("DriveName,DriveID\nPool,0A1\n", encoding="utf-8")
            return _completed()

        mock_run.side_effect = fake_gam
        rows = GamSheetStore(GamRunner(), "admin@example.com").download("sheet-id", "SharedDrives")
        self.assertEqual(rows, [{"DriveName": "Pool", "DriveID": "0A1"}])

    @patch("subprocess.run")
    def test_download_without_output_is_an_error(self, mock_run):
        mock_run.return_value = _completed()
        with self.assertRaises(TransportError):
            GamSheetStore(GamRunner(), "admin@example.com").download("sheet-id", "SharedDrives")

    @patch("subprocess.run")
    def test_upload_writes_stable_header(self, mock_run):
        uploaded = {}

        def fake_gam(cmd, **kwargs):
            uploaded["csv"] = Path(cmd[cmd.index("localfile") + 1]).read_text(encoding="utf-8")
            uploaded["sheet"] = cmd[cmd.index("csvsheet") + 1]
            return _completed()

        mock_run.side_effect = fake_gam
        GamSheetStore(GamRunner(), "admin@example.com").upload(
            "sheet-id", "SharedDrives", ("DriveName", "DriveID"), [{"DriveID": "0A1", "DriveName": "Pool", "x": "y"}]
        )
        self.assertEqual(uploaded["sheet"], "SharedDrives")
        self.assertEqual(uploaded["csv"].splitlines(), ["DriveName,DriveID", "Pool,0A1"])

    @patch("subprocess.run")
    def test_upload_in_dry_run_does_nothing(self, mock_run):
        GamSheetStore(GamRunner(dry_run=True), "admin@example.com").upload("sheet-id", "S", ("A",), [{"A": "1"}])
        mock_run.assert_not_called()
