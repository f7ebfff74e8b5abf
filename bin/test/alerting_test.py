import json
import unittest
from unittest.mock import MagicMock, patch

import requests
from drive_backup.alerting import CompositeAlerter, GamMailAlerter, WebhookAlerter, notify_safely
from drive_backup.gam import GamRunner

from fakes import RecordingAlerter


class TestAlerting(unittest.TestCase):
    def test_notify_safely_delivers(self):
        alerter = RecordingAlerter()
        self.assertTrue(notify_safely(alerter, "subject", "body", "ops@example.com"))
        self.assertEqual(alerter.alerts, [("subject", "body", "ops@example.com")])

    def test_notify_safely_swallows_failures(self):
        with self.assertLogs("drive_backup.alerting", level="WARNING") as logs:
            self.assertFalse(notify_safely(RecordingAlerter(fail=True), "subject", "body"))
        self.assertIn("mail server down", logs.output[0])

    def test_notify_safely_without_alerter(self):
        self.assertFalse(notify_safely(None, "subject", "body"))

    def test_composite_keeps_going_after_a_failure(self):
        good = RecordingAlerter()
        CompositeAlerter([RecordingAlerter(fail=True), good]).notify("s", "b")
        self.assertEqual(good.subjects, ["s"])

    @patch("subprocess.run")
    def test_gam_mail_sends_to_each_recipient(self, mock_run):
        mock_run.return_value = MagicMock(stdout="", stderr="", returncode=0)
        GamMailAlerter(GamRunner(), ["a@example.com", "b@example.com"]).notify("Pool full", "Rotated")
        sent_to = [call[0][0][2] for call in mock_run.call_args_list]
        self.assertEqual(sent_to, ["a@example.com", "b@example.com"])
        self.assertEqual(
            mock_run.call_args[0][0], ["gam", "sendemail", "b@example.com", "subject", "Pool full", "message", "Rotated"]
        )

    @patch("subprocess.run")
    def test_gam_mail_explicit_recipient_overrides_list(self, mock_run):
        mock_run.return_value = MagicMock(stdout="", stderr="", returncode=0)
        GamMailAlerter(GamRunner(), ["a@example.com"]).notify("s", "b", recipient="c@example.com")
        mock_run.assert_called_once()
        self.assertEqual(mock_run.call_args[0][0][2], "c@example.com")

    @patch("requests.post")
    def test_webhook_posts_embed(self, mock_post):
        WebhookAlerter("https://hooks.example.com/x").notify("Pool full", "Rotated to Pool2")
        mock_post.assert_called_once()
        url = mock_post.call_args[0][0]
        payload = json.loads(mock_post.call_args[1]["data"])
        self.assertEqual(url, "https://hooks.example.com/x")
        self.assertEqual(payload["embeds"][0]["title"], "Pool full")
        self.assertEqual(payload["embeds"][0]["description"], "Rotated to Pool2")

    @patch("requests.post")
    def test_webhook_http_error_is_swallowed_by_notify_safely(self, mock_post):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError("500")
        self.assertFalse(notify_safely(WebhookAlerter("https://hooks.example.com/x"), "s", "b"))
