#!/usr/bin/env python3
"""One backup cycle: projection, rotation, admission, persistence, hand-off.

Steps run strictly in that order. Any step that fails raises after alerting,
and nothing is written to the store after the failing step, so the previous
state stays intact for a clean retry.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from functools import partial

from drive_backup.alerting import Alerter, notify_safely
from drive_backup.config import Config
from drive_backup.errors import RotationFailed, StateInvariantViolation, TransportError
from drive_backup.estimator import estimate
from drive_backup.executor import BackupExecutor
from drive_backup.models import CandidateUser, OversizedSet, UsageProjection
from drive_backup.planner import AdmissionResult, merge_oversized, plan_admission
from drive_backup.projector import UsageProjector, pending_users
from drive_backup.rotator import PoolRotator, RotationResult
from drive_backup.store import UsageStore, find_active_pool

_LOGGER = logging.getLogger(__name__)

ALERT_PREFIX = "[drive-backup]"


@dataclass
class CycleReport:
    projection: UsageProjection
    rotation: RotationResult
    admission: AdmissionResult
    oversized: OversizedSet
    skipped_manual: list[str] = field(default_factory=list)
    copied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class BackupCycle:
    def __init__(
        self,
        config: Config,
        store: UsageStore,
        projector: UsageProjector,
        rotator: PoolRotator,
        executor: BackupExecutor | None = None,
        alerter: Alerter | None = None,
    ):
        self.config = config
        self.store = store
        self.projector = projector
        self.rotator = rotator
        self.executor = executor
        self.alerter = alerter

    def alert(self, subject: str, body: str) -> None:
        notify_safely(self.alerter, f"{ALERT_PREFIX} {subject}", body)

    def admissible(self, candidates: list[CandidateUser], oversized: OversizedSet) -> tuple[list[CandidateUser], list[str]]:
        """Drop candidates already on the manual track."""
        manual = {entry.email for entry in oversized.manual()}
        kept = [user for user in candidates if user.email not in manual]
        skipped = sorted(user.email for user in candidates if user.email in manual)
        for email in skipped:
            _LOGGER.info("%s is on the manual track, not admitting it", email)
        return kept, skipped

    def project(self, pool_id: str, candidates: list[CandidateUser], oversized: OversizedSet) -> UsageProjection:
        pending = pending_users(candidates, oversized, self.config.capacity.include_manual_in_projection)
        projection = self.projector.project(pool_id, pending)
        if not projection.is_known:
            raise TransportError(f"Usage of the active pool {pool_id} is unknown")
        return projection

    def plan(
        self, candidates: list[CandidateUser], oversized: OversizedSet, now: datetime.datetime
    ) -> tuple[AdmissionResult, OversizedSet, list[str]]:
        admissible, skipped = self.admissible(candidates, oversized)
        result = plan_admission(
            admissible,
            self.config.admission.max_minutes,
            cost_fn=partial(estimate, seconds_per_file=self.config.admission.seconds_per_file),
            now=now,
        )
        return result, merge_oversized(oversized, result), skipped

    def run(self, copy: bool = True, now: datetime.datetime | None = None) -> CycleReport:
        if now is None:
            now = datetime.datetime.now(datetime.UTC)
        try:
            registry = self.store.load_registry()
            active = find_active_pool(registry)
            candidates = self.store.load_candidates()
            oversized = self.store.load_oversized()
        except StateInvariantViolation as e:
            self.alert("Pool registry needs manual correction", str(e))
            raise
        except TransportError as e:
            self.alert("Could not read the registry", str(e))
            raise

        try:
            projection = self.project(active.drive_id, candidates, oversized)
        except TransportError as e:
            self.alert(f"Could not measure pool {active.drive_name}", str(e))
            raise
        if projection.unreachable_users:
            _LOGGER.warning("Counted %d unreachable users as empty", len(projection.unreachable_users))

        try:
            rotation = self.rotator.evaluate(projection, registry)
        except RotationFailed as e:
            self.alert(f"Pool rotation failed at step '{e.step}'", str(e))
            raise
        if rotation.rotated:
            self.alert(
                f"Rotated backup pool to {rotation.active.drive_name}",
                f"{rotation.previous.drive_name if rotation.previous else 'previous pool'} was projected at "
                f"{projection.item_percent:.2f}% items and {projection.folder_percent:.2f}% folders.\n"
                f"New pool id: {rotation.active.drive_id}",
            )

        admission, merged, skipped = self.plan(candidates, oversized, now)
        try:
            # The batch is only published once the queue no longer holds its users
            self.store.save_oversized(merged)
            self.store.save_eligible(admission.plan, admission.oversized, now)
        except TransportError as e:
            self.alert("Could not save the eligible batch", str(e))
            raise

        report = CycleReport(
            projection=projection, rotation=rotation, admission=admission, oversized=merged, skipped_manual=skipped
        )
        if admission.manual:
            self.alert(
                f"{len(admission.manual)} users need a manual backup",
                "\n".join(f"{e.email}: {e.file_count} files, ~{e.estimated_minutes} min" for e in admission.manual),
            )

        if copy:
            self.hand_off(report)
        return report

    def hand_off(self, report: CycleReport) -> None:
        if self.executor is None:
            return
        pool = report.rotation.active
        for entry in report.admission.plan.entries:
            if self.executor.backup(entry, pool):
                report.copied.append(entry.email)
            else:
                report.failed.append(entry.email)
        if report.failed:
            self.alert(f"{len(report.failed)} backups failed", "\n".join(report.failed))

