#!/usr/bin/env python3
"""Row layouts for the tabular registry and user queues.

Every sheet is exchanged as CSV-shaped rows of column name -> string. Each
layout has a parser that validates the required columns and raises
ValidationError for a bad row, and a writer that always emits the same header.
"""

from __future__ import annotations

import datetime
import logging
import math
from collections.abc import Callable, Iterable
from typing import TypeVar

from drive_backup.errors import ValidationError
from drive_backup.models import (
    CandidateUser,
    Classification,
    CostEstimate,
    OversizedEntry,
    PoolRecord,
    normalise_email,
)

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

REGISTRY_HEADER = ("DriveName", "DriveID", "IsFull", "LastUpdated")
CANDIDATE_HEADER = ("UserEmail", "FileCount", "SuspendedSince")
OVERSIZED_HEADER = ("UserEmail", "FileCount", "EstimatedCopyTimeMin", "RotationTime", "Classification")
ELIGIBLE_HEADER = ("UserEmail", "FileCount", "EstimatedCopyTimeMin", "RotationTime", "Deferred")

_TRUE_VALUES = {"true", "yes", "1"}
_FALSE_VALUES = {"false", "no", "0"}


def format_timestamp(when: datetime.datetime) -> str:
    return when.astimezone(datetime.UTC).strftime(TIMESTAMP_FORMAT)


def format_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _required(row: dict[str, str], column: str) -> str:
    value = (row.get(column) or "").strip()
    if not value:
        raise ValidationError(f"Missing required column {column}", row)
    return value


def _parse_email(row: dict[str, str]) -> str:
    email = normalise_email(_required(row, "UserEmail"))
    if "@" not in email:
        raise ValidationError(f"Not an email address: {email!r}", row)
    return email


def _parse_count(row: dict[str, str], column: str) -> int:
    raw = _required(row, column)
    try:
        value = int(raw)
    except ValueError:
        # Sheets exports whole numbers as "12.0"; anything fractional is a bad row.
        try:
            as_float = float(raw)
        except ValueError as e:
            raise ValidationError(f"{column} is not numeric: {raw!r}", row) from e
        if not math.isfinite(as_float) or not as_float.is_integer():
            raise ValidationError(f"{column} is not a whole number: {raw!r}", row)
        value = int(as_float)
    if value < 0:
        raise ValidationError(f"{column} must not be negative: {value}", row)
    return value


def _parse_bool(row: dict[str, str], column: str, default: bool | None = None) -> bool:
    raw = (row.get(column) or "").strip().lower()
    if not raw and default is not None:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValidationError(f"{column} is not a boolean: {raw!r}", row)


def _parse_timestamp(row: dict[str, str], column: str) -> datetime.datetime:
    raw = (row.get(column) or "").strip()
    try:
        parsed = datetime.datetime.fromisoformat(_required(row, column))
    except ValueError as e:
        raise ValidationError(f"{column} is not a date-time: {raw!r}", row) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed


def _parse_date(row: dict[str, str], column: str) -> datetime.date:
    raw = _required(row, column)
    try:
        return datetime.date.fromisoformat(raw[:10])
    except ValueError as e:
        raise ValidationError(f"{column} is not a date: {raw!r}", row) from e


def parse_pool_record(row: dict[str, str]) -> PoolRecord:
    return PoolRecord(
        drive_name=_required(row, "DriveName"),
        drive_id=_required(row, "DriveID"),
        is_full=_parse_bool(row, "IsFull"),
        last_updated=_parse_timestamp(row, "LastUpdated") if (row.get("LastUpdated") or "").strip() else None,
    )


def pool_record_to_row(record: PoolRecord) -> dict[str, str]:
    return {
        "DriveName": record.drive_name,
        "DriveID": record.drive_id,
        "IsFull": format_bool(record.is_full),
        "LastUpdated": format_timestamp(record.last_updated) if record.last_updated else "",
    }


def parse_candidate(row: dict[str, str]) -> CandidateUser:
    return CandidateUser(
        email=_parse_email(row),
        file_count=_parse_count(row, "FileCount"),
        suspended_since=_parse_date(row, "SuspendedSince"),
    )


def candidate_to_row(user: CandidateUser) -> dict[str, str]:
    return {
        "UserEmail": user.email,
        "FileCount": str(user.file_count),
        "SuspendedSince": user.suspended_since.isoformat(),
    }


def parse_oversized(row: dict[str, str]) -> OversizedEntry:
    raw_class = (row.get("Classification") or "").strip().lower()
    try:
        classification = Classification(raw_class) if raw_class else Classification.DEFERRED
    except ValueError as e:
        raise ValidationError(f"Unknown classification {raw_class!r}", row) from e
    return OversizedEntry(
        email=_parse_email(row),
        file_count=_parse_count(row, "FileCount"),
        estimated_minutes=_parse_count(row, "EstimatedCopyTimeMin"),
        classification=classification,
        rotation_time=(
            _parse_timestamp(row, "RotationTime")
            if (row.get("RotationTime") or "").strip()
            else datetime.datetime.now(datetime.UTC)
        ),
    )


def oversized_to_row(entry: OversizedEntry) -> dict[str, str]:
    return {
        "UserEmail": entry.email,
        "FileCount": str(entry.file_count),
        "EstimatedCopyTimeMin": str(entry.estimated_minutes),
        "RotationTime": format_timestamp(entry.rotation_time),
        "Classification": entry.classification.value,
    }


def parse_eligible(row: dict[str, str]) -> tuple[CostEstimate, bool]:
    """Returns the estimate and whether the user was deferred."""
    estimate = CostEstimate(
        email=_parse_email(row),
        file_count=_parse_count(row, "FileCount"),
        estimated_minutes=_parse_count(row, "EstimatedCopyTimeMin"),
    )
    return estimate, _parse_bool(row, "Deferred", default=False)


def eligible_to_row(estimate: CostEstimate, deferred: bool, when: datetime.datetime) -> dict[str, str]:
    return {
        "UserEmail": estimate.email,
        "FileCount": str(estimate.file_count),
        "EstimatedCopyTimeMin": str(estimate.estimated_minutes),
        "RotationTime": format_timestamp(when),
        "Deferred": format_bool(deferred),
    }


def read_rows(rows: Iterable[dict[str, str]], parser: Callable[[dict[str, str]], T], layout: str) -> list[T]:
    """Parse every row, logging and dropping the ones that fail validation."""
    records: list[T] = []
    for line_number, row in enumerate(rows, start=2):
        try:
            records.append(parser(row))
        except ValidationError as e:
            _LOGGER.warning("Dropping %s row %d: %s", layout, line_number, e)
    return records
