#!/usr/bin/env python3
"""Data models for the backup admission and rotation engine."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum

# Percent reported when the active pool itself could not be inventoried.
UNKNOWN_PERCENT = -1.0


def normalise_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class CandidateUser:
    """A suspended user waiting for their drive to be backed up."""

    email: str
    file_count: int
    suspended_since: datetime.date


@dataclass(frozen=True)
class CostEstimate:
    email: str
    file_count: int
    estimated_minutes: int


class Classification(Enum):
    """Why a user ended up in the oversized queue."""

    # Alone exceeds the whole budget: needs manual handling, never auto-retried.
    MANUAL = "manual"
    # Lost out on contention this cycle, retried on the next one.
    DEFERRED = "deferred"


@dataclass(frozen=True)
class OversizedEntry:
    email: str
    file_count: int
    estimated_minutes: int
    classification: Classification
    rotation_time: datetime.datetime

    @property
    def is_manual(self) -> bool:
        return self.classification is Classification.MANUAL


@dataclass(frozen=True)
class RunPlan:
    """Users admitted to this cycle, in priority order."""

    max_minutes: int
    entries: tuple[CostEstimate, ...] = ()

    @property
    def total_minutes(self) -> int:
        return sum(entry.estimated_minutes for entry in self.entries)

    @property
    def emails(self) -> list[str]:
        return [entry.email for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class PoolRecord:
    """One shared drive in the pool registry."""

    drive_name: str
    drive_id: str
    is_full: bool
    last_updated: datetime.datetime | None = None

    @property
    def is_active(self) -> bool:
        return not self.is_full


@dataclass(frozen=True)
class ItemCount:
    items: int = 0
    folders: int = 0

    def __add__(self, other: ItemCount) -> ItemCount:
        return ItemCount(items=self.items + other.items, folders=self.folders + other.folders)


@dataclass(frozen=True)
class PoolLimits:
    item_limit: int
    folder_limit: int


@dataclass(frozen=True)
class UsageProjection:
    current_items: int
    current_folders: int
    projected_items: int
    projected_folders: int
    item_percent: float
    folder_percent: float
    unreachable_users: list[str] = field(default_factory=list)

    @property
    def is_known(self) -> bool:
        return self.item_percent != UNKNOWN_PERCENT and self.folder_percent != UNKNOWN_PERCENT

    @property
    def peak_percent(self) -> float:
        return max(self.item_percent, self.folder_percent)


class OversizedSet:
    """Users that did not fit a cycle, keyed by email.

    Merging is a union on email where the incoming entry replaces the stored
    one, so merging the same user twice leaves a single record.
    """

    def __init__(self, entries: list[OversizedEntry] | None = None):
        self._entries: dict[str, OversizedEntry] = {}
        self.merge(entries or [])

    def merge(self, entries: list[OversizedEntry]) -> None:
        for entry in entries:
            self._entries[entry.email] = entry

    def discard(self, emails: list[str]) -> None:
        for email in emails:
            self._entries.pop(email, None)

    def entries(self) -> list[OversizedEntry]:
        return [self._entries[email] for email in sorted(self._entries)]

    def manual(self) -> list[OversizedEntry]:
        return [entry for entry in self.entries() if entry.is_manual]

    def deferred(self) -> list[OversizedEntry]:
        return [entry for entry in self.entries() if not entry.is_manual]

    def __contains__(self, email: object) -> bool:
        return email in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.entries())
