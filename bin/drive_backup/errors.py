"""Error taxonomy for the backup engine."""

from __future__ import annotations

from typing import Sequence


class BackupError(RuntimeError):
    pass


class ValidationError(BackupError):
    """A malformed input row. Queue rows are dropped and the batch carries on."""

    def __init__(self, message: str, row: dict | None = None):
        super().__init__(message)
        self.row = row or {}


class TransportError(BackupError):
    """An external call failed or could not be reached."""

    def __init__(self, message: str, command: Sequence[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = list(command or [])
        self.stderr = stderr


class StateInvariantViolation(BackupError):
    """The pool registry is unreadable or does not have exactly one active pool."""


class RotationFailed(TransportError):
    """A pool rotation stopped part way. `step` names the step that failed."""

    def __init__(self, step: str, message: str, command: Sequence[str] | None = None, stderr: str = ""):
        super().__init__(message, command, stderr)
        self.step = step
