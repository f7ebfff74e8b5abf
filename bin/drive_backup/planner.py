#!/usr/bin/env python3
"""Admission of candidate users into a time-bounded batch."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

import humanfriendly

from drive_backup.errors import ValidationError
from drive_backup.estimator import DEFAULT_SECONDS_PER_FILE, estimate
from drive_backup.models import (
    CandidateUser,
    Classification,
    CostEstimate,
    OversizedEntry,
    OversizedSet,
    RunPlan,
)

_LOGGER = logging.getLogger(__name__)

CostFunction = Callable[[CandidateUser], CostEstimate]


@dataclass(frozen=True)
class AdmissionResult:
    plan: RunPlan
    oversized: list[OversizedEntry]

    @property
    def manual(self) -> list[OversizedEntry]:
        return [entry for entry in self.oversized if entry.is_manual]

    @property
    def deferred(self) -> list[OversizedEntry]:
        return [entry for entry in self.oversized if not entry.is_manual]


def priority_order(candidates: list[CandidateUser]) -> list[CandidateUser]:
    """Longest-suspended first, ties broken by email."""
    return sorted(candidates, key=lambda user: (user.suspended_since, user.email))


def _checked_cost(user: CandidateUser, cost_fn: CostFunction) -> CostEstimate:
    if not isinstance(user.file_count, int) or isinstance(user.file_count, bool):
        raise ValidationError(f"File count for {user.email} is not an integer: {user.file_count!r}")
    if user.file_count < 0:
        raise ValidationError(f"File count for {user.email} is negative: {user.file_count}")
    return cost_fn(user)


def plan_admission(
    candidates: list[CandidateUser],
    max_minutes: int,
    cost_fn: CostFunction | None = None,
    now: datetime.datetime | None = None,
) -> AdmissionResult:
    """Greedily admit candidates into a batch of at most `max_minutes`.

    Args:
        candidates: Users waiting for a backup
        max_minutes: Time budget of the batch
        cost_fn: Maps a user to its cost estimate (defaults to 1.2 seconds per file)
        now: Timestamp recorded on the oversized entries

    Returns:
        AdmissionResult with the run plan and the users that did not fit
    """
    if cost_fn is None:
        cost_fn = partial(estimate, seconds_per_file=DEFAULT_SECONDS_PER_FILE)
    if now is None:
        now = datetime.datetime.now(datetime.UTC)

    admitted: list[CostEstimate] = []
    oversized: list[OversizedEntry] = []
    cumulative = 0

    for user in priority_order(candidates):
        try:
            cost = _checked_cost(user, cost_fn)
        except ValidationError as e:
            _LOGGER.warning("Skipping candidate: %s", e)
            continue

        if cost.estimated_minutes > max_minutes:
            _LOGGER.warning(
                "%s needs %s alone, more than the whole %s budget: manual handling required",
                user.email,
                humanfriendly.format_timespan(cost.estimated_minutes * 60),
                humanfriendly.format_timespan(max_minutes * 60),
            )
            classification = Classification.MANUAL
        elif cumulative + cost.estimated_minutes <= max_minutes:
            admitted.append(cost)
            cumulative += cost.estimated_minutes
            continue
        else:
            _LOGGER.info("Deferring %s (%d min) to the next cycle", user.email, cost.estimated_minutes)
            classification = Classification.DEFERRED

        oversized.append(
            OversizedEntry(
                email=cost.email,
                file_count=cost.file_count,
                estimated_minutes=cost.estimated_minutes,
                classification=classification,
                rotation_time=now,
            )
        )

    _LOGGER.info(
        "Admitted %d users (%d of %d minutes), %d oversized",
        len(admitted),
        cumulative,
        max_minutes,
        len(oversized),
    )
    return AdmissionResult(plan=RunPlan(max_minutes=max_minutes, entries=tuple(admitted)), oversized=oversized)


def merge_oversized(previous: OversizedSet, result: AdmissionResult) -> OversizedSet:
    """Fold a cycle's outcome into the persisted oversized queue.

    Users admitted this cycle leave the queue; newly oversized users replace
    any earlier record for the same email.
    """
    merged = OversizedSet(previous.entries())
    merged.discard(result.plan.emails)
    merged.merge(result.oversized)
    return merged
