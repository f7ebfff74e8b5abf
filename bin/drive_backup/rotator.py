#!/usr/bin/env python3
"""Retire the active pool and provision a new one when it is nearly full."""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass, field

from drive_backup.collaborators import PoolProvider
from drive_backup.errors import RotationFailed, TransportError
from drive_backup.models import PoolRecord, UsageProjection
from drive_backup.store import UsageStore, find_active_pool

_LOGGER = logging.getLogger(__name__)

DEFAULT_ROTATION_THRESHOLD = 80.0
ORGANIZER_ROLE = "organizer"


def should_rotate(projection: UsageProjection, threshold: float = DEFAULT_ROTATION_THRESHOLD) -> bool:
    """True if either projected percentage has reached the threshold.

    An unknown projection never triggers a rotation.
    """
    if not projection.is_known:
        return False
    return projection.item_percent >= threshold or projection.folder_percent >= threshold


def pool_suffix(base_name: str, drive_name: str) -> int | None:
    """`base` is suffix 1, `base7` is suffix 7, anything else is None."""
    match = re.fullmatch(re.escape(base_name) + r"(\d*)", drive_name)
    if not match:
        return None
    return int(match.group(1)) if match.group(1) else 1


def next_pool_name(base_name: str, records: list[PoolRecord]) -> str:
    suffixes = [s for s in (pool_suffix(base_name, r.drive_name) for r in records) if s is not None]
    if not suffixes:
        return base_name
    return f"{base_name}{max(suffixes) + 1}"


@dataclass(frozen=True)
class RotationResult:
    rotated: bool
    active: PoolRecord
    previous: PoolRecord | None = None
    adopted_existing: bool = False
    registry: list[PoolRecord] = field(default_factory=list)


class PoolRotator:
    """Keeps exactly one pool open for writes.

    A rotation creates (or adopts) the next pool in the naming sequence, marks
    every existing pool full, appends the new one as active, saves the
    registry and grants organizer access to the admins.
    """

    def __init__(
        self,
        store: UsageStore,
        provider: PoolProvider,
        base_name: str,
        organizers: list[str] | None = None,
        attributes: dict[str, str] | None = None,
        threshold: float = DEFAULT_ROTATION_THRESHOLD,
    ):
        self.store = store
        self.provider = provider
        self.base_name = base_name
        self.organizers = organizers or []
        self.attributes = attributes or {}
        self.threshold = threshold

    def evaluate(self, projection: UsageProjection, records: list[PoolRecord] | None = None) -> RotationResult:
        if records is None:
            records = self.store.load_registry()
        active = find_active_pool(records)
        if not should_rotate(projection, self.threshold):
            _LOGGER.info(
                "Pool %s stays active (peak %.2f%% < %.2f%%)", active.drive_name, projection.peak_percent, self.threshold
            )
            return RotationResult(rotated=False, active=active, registry=records)
        _LOGGER.warning(
            "Pool %s projected at %.2f%% items / %.2f%% folders, rotating",
            active.drive_name,
            projection.item_percent,
            projection.folder_percent,
        )
        return self.rotate(records)

    def rotate(self, records: list[PoolRecord], now: datetime.datetime | None = None) -> RotationResult:
        if now is None:
            now = datetime.datetime.now(datetime.UTC)
        previous = find_active_pool(records)
        name = next_pool_name(self.base_name, records)

        pool_id, adopted = self._provision(name)

        new_pool = PoolRecord(drive_name=name, drive_id=pool_id, is_full=False, last_updated=now)
        registry = [
            PoolRecord(drive_name=r.drive_name, drive_id=r.drive_id, is_full=True, last_updated=now)
            if r.is_active
            else r
            for r in records
        ]
        registry.append(new_pool)

        # The registry only records a pool once its organizers are granted
        self._grant_organizers(new_pool)

        try:
            self.store.save_registry(registry)
        except TransportError as e:
            raise RotationFailed(
                "registry",
                f"Pool {name} ({pool_id}) was provisioned but the registry could not be saved; "
                f"the next run will adopt it: {e}",
                e.command,
                e.stderr,
            ) from e

        _LOGGER.info("Rotated from %s to %s (%s)", previous.drive_name, name, pool_id)
        return RotationResult(
            rotated=True, active=new_pool, previous=previous, adopted_existing=adopted, registry=registry
        )

    def _provision(self, name: str) -> tuple[str, bool]:
        """Create the pool, or adopt one left behind by an interrupted rotation."""
        try:
            pool_id = self.provider.find_pool(name)
            adopted = pool_id is not None
            if pool_id is not None:
                _LOGGER.warning("Pool %s already exists as %s but is not registered, adopting it", name, pool_id)
            else:
                pool_id = self.provider.create_pool(name)
                _LOGGER.info("Created pool %s (%s)", name, pool_id)
            # Re-applied on adoption, the interrupted run may not have got this far
            for attribute, value in self.attributes.items():
                self.provider.set_pool_attribute(pool_id, attribute, value)
        except TransportError as e:
            raise RotationFailed("create", f"Could not provision pool {name}: {e}", e.command, e.stderr) from e
        return pool_id, adopted

    def _grant_organizers(self, pool: PoolRecord) -> None:
        failed = []
        for identity in self.organizers:
            try:
                self.provider.grant_role(pool.drive_id, identity, ORGANIZER_ROLE)
            except TransportError as e:
                _LOGGER.error("Could not grant %s on %s to %s: %s", ORGANIZER_ROLE, pool.drive_name, identity, e)
                failed.append(identity)
        if failed:
            raise RotationFailed(
                "grant",
                f"Pool {pool.drive_name} ({pool.drive_id}) is missing {ORGANIZER_ROLE} access for: {', '.join(failed)}; "
                "the registry was not updated, the next run will adopt it and retry",
            )
