#!/usr/bin/env python3
"""Read-modify-write access to the pool registry and the user queues.

The store is the single writer of the registry. There is no locking: callers
must not run two cycles against the same spreadsheet at the same time.
"""

from __future__ import annotations

import copy
import datetime
import logging

from drive_backup.collaborators import TabularStore
from drive_backup.config import SheetsConfig
from drive_backup.errors import StateInvariantViolation, ValidationError
from drive_backup.models import CandidateUser, CostEstimate, OversizedEntry, OversizedSet, PoolRecord, RunPlan
from drive_backup.schema import (
    CANDIDATE_HEADER,
    ELIGIBLE_HEADER,
    OVERSIZED_HEADER,
    REGISTRY_HEADER,
    candidate_to_row,
    eligible_to_row,
    oversized_to_row,
    parse_candidate,
    parse_eligible,
    parse_oversized,
    parse_pool_record,
    pool_record_to_row,
    read_rows,
)

_LOGGER = logging.getLogger(__name__)


class InMemoryTabularStore(TabularStore):
    """Keeps sheets in process. Used for tests and offline dry runs."""

    def __init__(self, sheets: dict[str, list[dict[str, str]]] | None = None):
        self.sheets: dict[str, list[dict[str, str]]] = copy.deepcopy(sheets or {})
        self.uploads: list[str] = []

    def download(self, resource_id: str, sheet_name: str) -> list[dict[str, str]]:
        return copy.deepcopy(self.sheets.get(sheet_name, []))

    def upload(self, resource_id: str, sheet_name: str, header: tuple[str, ...], rows: list[dict[str, str]]) -> None:
        self.sheets[sheet_name] = [{column: row.get(column, "") for column in header} for row in rows]
        self.uploads.append(sheet_name)


def find_active_pool(records: list[PoolRecord]) -> PoolRecord:
    """Return the one pool that is not full.

    Raises:
        StateInvariantViolation: If no pool or more than one pool is active
    """
    active = [record for record in records if record.is_active]
    if len(active) != 1:
        names = ", ".join(record.drive_name for record in active) or "none"
        raise StateInvariantViolation(
            f"Expected exactly one active pool in the registry, found {len(active)} ({names})"
        )
    return active[0]


class UsageStore:
    def __init__(self, tabular: TabularStore, spreadsheet_id: str, sheets: SheetsConfig):
        self.tabular = tabular
        self.spreadsheet_id = spreadsheet_id
        self.sheets = sheets

    def load_registry(self) -> list[PoolRecord]:
        """Load every pool record.

        The registry is rewritten whole on rotation, so unlike the user queues
        an unreadable row is never dropped.

        Raises:
            StateInvariantViolation: If any registry row fails validation
        """
        rows = self.tabular.download(self.spreadsheet_id, self.sheets.registry)
        records: list[PoolRecord] = []
        problems: list[str] = []
        for line_number, row in enumerate(rows, start=2):
            try:
                records.append(parse_pool_record(row))
            except ValidationError as e:
                problems.append(f"row {line_number}: {e}")
        if problems:
            raise StateInvariantViolation(
                f"Registry has {len(problems)} unreadable row(s), fix them manually: {'; '.join(problems)}"
            )
        _LOGGER.debug("Loaded %d pool records", len(records))
        return records

    def save_registry(self, records: list[PoolRecord]) -> None:
        find_active_pool(records)
        self.tabular.upload(
            self.spreadsheet_id, self.sheets.registry, REGISTRY_HEADER, [pool_record_to_row(r) for r in records]
        )
        _LOGGER.info("Saved registry with %d pools", len(records))

    def load_active_pool(self) -> PoolRecord:
        return find_active_pool(self.load_registry())

    def load_candidates(self) -> list[CandidateUser]:
        rows = self.tabular.download(self.spreadsheet_id, self.sheets.candidates)
        candidates = read_rows(rows, parse_candidate, "candidate")
        by_email: dict[str, CandidateUser] = {}
        for candidate in candidates:
            if candidate.email in by_email:
                _LOGGER.warning("Duplicate candidate %s, keeping the last row", candidate.email)
            by_email[candidate.email] = candidate
        return list(by_email.values())

    def save_candidates(self, candidates: list[CandidateUser]) -> None:
        self.tabular.upload(
            self.spreadsheet_id, self.sheets.candidates, CANDIDATE_HEADER, [candidate_to_row(c) for c in candidates]
        )

    def load_oversized(self) -> OversizedSet:
        rows = self.tabular.download(self.spreadsheet_id, self.sheets.oversized)
        return OversizedSet(read_rows(rows, parse_oversized, "oversized"))

    def save_oversized(self, oversized: OversizedSet) -> None:
        self.tabular.upload(
            self.spreadsheet_id,
            self.sheets.oversized,
            OVERSIZED_HEADER,
            [oversized_to_row(entry) for entry in oversized],
        )
        _LOGGER.info("Saved %d oversized users", len(oversized))

    def load_eligible(self) -> tuple[list[CostEstimate], list[CostEstimate]]:
        """Returns the admitted and the deferred users of the last saved batch."""
        rows = self.tabular.download(self.spreadsheet_id, self.sheets.eligible)
        admitted: list[CostEstimate] = []
        deferred: list[CostEstimate] = []
        for estimate, was_deferred in read_rows(rows, parse_eligible, "eligible"):
            (deferred if was_deferred else admitted).append(estimate)
        return admitted, deferred

    def save_eligible(self, plan: RunPlan, deferred: list[OversizedEntry], when: datetime.datetime) -> None:
        rows = [eligible_to_row(entry, False, when) for entry in plan.entries]
        rows.extend(
            eligible_to_row(
                CostEstimate(email=entry.email, file_count=entry.file_count, estimated_minutes=entry.estimated_minutes),
                True,
                when,
            )
            for entry in deferred
        )
        self.tabular.upload(self.spreadsheet_id, self.sheets.eligible, ELIGIBLE_HEADER, rows)
        _LOGGER.info("Saved eligible batch: %d admitted, %d deferred", len(plan), len(deferred))
