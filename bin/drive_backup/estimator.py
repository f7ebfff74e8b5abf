"""Convert raw file counts into estimated copy durations."""

from __future__ import annotations

import math

from drive_backup.errors import ValidationError
from drive_backup.models import CandidateUser, CostEstimate

DEFAULT_SECONDS_PER_FILE = 1.2


def estimate_minutes(file_count: int, seconds_per_file: float = DEFAULT_SECONDS_PER_FILE) -> int:
    """Minutes needed to copy `file_count` files, always rounded up."""
    if file_count < 0:
        raise ValidationError(f"File count must not be negative, got {file_count}")
    # round() first so 100 * 1.2 / 60 lands on 2, not on 2.0000000000000004 -> 3
    return math.ceil(round(file_count * seconds_per_file / 60, 9))


def estimate(user: CandidateUser, seconds_per_file: float = DEFAULT_SECONDS_PER_FILE) -> CostEstimate:
    return CostEstimate(
        email=user.email,
        file_count=user.file_count,
        estimated_minutes=estimate_minutes(user.file_count, seconds_per_file),
    )
