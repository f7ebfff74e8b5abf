#!/usr/bin/env python3
"""Current and projected occupancy of the active pool."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from drive_backup.collaborators import DriveEntry, Inventory
from drive_backup.errors import TransportError
from drive_backup.models import (
    UNKNOWN_PERCENT,
    CandidateUser,
    ItemCount,
    OversizedSet,
    PoolLimits,
    UsageProjection,
)

_LOGGER = logging.getLogger(__name__)

PERCENT_DECIMALS = 2


def count_entries(entries: Iterable[DriveEntry]) -> ItemCount:
    items = 0
    folders = 0
    for entry in entries:
        items += 1
        if entry.is_container:
            folders += 1
    return ItemCount(items=items, folders=folders)


def usage_percent(value: int, limit: int) -> float:
    return round(value / limit * 100, PERCENT_DECIMALS)


def pending_users(
    candidates: list[CandidateUser], oversized: OversizedSet, include_manual: bool = True
) -> list[str]:
    """Everyone not yet copied: this cycle's candidates plus the oversized queue."""
    emails = {user.email for user in candidates}
    emails.update(entry.email for entry in oversized if include_manual or not entry.is_manual)
    return sorted(emails)


def project_usage(current: ItemCount, pending: Iterable[ItemCount], limits: PoolLimits) -> UsageProjection:
    projected = current
    for contribution in pending:
        projected = projected + contribution
    return UsageProjection(
        current_items=current.items,
        current_folders=current.folders,
        projected_items=projected.items,
        projected_folders=projected.folders,
        item_percent=usage_percent(projected.items, limits.item_limit),
        folder_percent=usage_percent(projected.folders, limits.folder_limit),
    )


def unknown_projection(unreachable: list[str] | None = None) -> UsageProjection:
    return UsageProjection(
        current_items=0,
        current_folders=0,
        projected_items=0,
        projected_folders=0,
        item_percent=UNKNOWN_PERCENT,
        folder_percent=UNKNOWN_PERCENT,
        unreachable_users=unreachable or [],
    )


class UsageProjector:
    def __init__(self, inventory: Inventory, limits: PoolLimits):
        self.inventory = inventory
        self.limits = limits

    def measure_pool(self, pool_id: str) -> ItemCount:
        count = count_entries(self.inventory.list_pool_files(pool_id))
        _LOGGER.info("Pool %s holds %d items, %d folders", pool_id, count.items, count.folders)
        return count

    def count_user(self, email: str) -> ItemCount | None:
        """Count a user's drive, or None if the user could not be inventoried."""
        try:
            return count_entries(self.inventory.list_files(email))
        except TransportError as e:
            _LOGGER.warning("Could not inventory %s, counting it as empty: %s", email, e)
            return None

    def project(self, pool_id: str, pending: list[str]) -> UsageProjection:
        """Project the pool's usage once every pending user has been copied in.

        Returns an UNKNOWN_PERCENT projection if the pool itself can't be inventoried.
        """
        try:
            current = self.measure_pool(pool_id)
        except TransportError as e:
            _LOGGER.error("Could not inventory active pool %s: %s", pool_id, e)
            return unknown_projection()

        contributions: list[ItemCount] = []
        unreachable: list[str] = []
        for email in pending:
            count = self.count_user(email)
            if count is None:
                unreachable.append(email)
            else:
                contributions.append(count)

        projection = project_usage(current, contributions, self.limits)
        _LOGGER.info(
            "Projected usage: %.2f%% of item limit, %.2f%% of folder limit (%d pending, %d unreachable)",
            projection.item_percent,
            projection.folder_percent,
            len(pending),
            len(unreachable),
        )
        return replace(projection, unreachable_users=unreachable)
