"""Best-effort alert delivery."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod

import requests

from drive_backup.gam import GamRunner

_LOGGER = logging.getLogger(__name__)

ALERT_COLOUR = 0xEE3333


class Alerter(ABC):
    @abstractmethod
    def notify(self, subject: str, body: str, recipient: str | None = None) -> None:
        pass


class GamMailAlerter(Alerter):
    def __init__(self, runner: GamRunner, recipients: list[str]):
        self.runner = runner
        self.recipients = recipients

    def notify(self, subject: str, body: str, recipient: str | None = None) -> None:
        for address in [recipient] if recipient else self.recipients:
            self.runner.run(["sendemail", address, "subject", subject, "message", body], mutating=True)


class WebhookAlerter(Alerter):
    """Posts a Discord-style embed to a webhook."""

    def __init__(self, webhook_url: str, username: str = "drive-backup"):
        self.webhook_url = webhook_url
        self.username = username

    def notify(self, subject: str, body: str, recipient: str | None = None) -> None:
        fields = [dict(name="Recipient", value=recipient, inline=False)] if recipient else []
        data = dict(
            username=self.username,
            embeds=[dict(color=ALERT_COLOUR, title=subject, description=body[:4000], fields=fields)],
        )
        headers = {"content-type": "application/json"}
        response = requests.post(self.webhook_url, data=json.dumps(data), headers=headers, timeout=30)
        response.raise_for_status()


class CompositeAlerter(Alerter):
    def __init__(self, alerters: list[Alerter]):
        self.alerters = alerters

    def notify(self, subject: str, body: str, recipient: str | None = None) -> None:
        for alerter in self.alerters:
            notify_safely(alerter, subject, body, recipient)


def notify_safely(alerter: Alerter | None, subject: str, body: str, recipient: str | None = None) -> bool:
    """Deliver an alert, never letting a delivery failure escape."""
    if alerter is None:
        _LOGGER.warning("No alerter configured, dropping alert: %s", subject)
        return False
    try:
        alerter.notify(subject, body, recipient)
    except Exception as e:
        _LOGGER.warning("Failed to deliver alert %r: %s", subject, e)
        return False
    return True
