#!/usr/bin/env python3
"""Console output for plans, projections and the registry."""

from __future__ import annotations

import humanfriendly

from drive_backup.models import OversizedEntry, PoolRecord, UsageProjection
from drive_backup.planner import AdmissionResult
from drive_backup.schema import format_timestamp


def format_minutes(minutes: int) -> str:
    return humanfriendly.format_timespan(minutes * 60)


def format_projection(projection: UsageProjection, threshold: float) -> list[str]:
    """Format a usage projection for display.

    Args:
        projection: The projection to show
        threshold: Rotation threshold percentage

    Returns:
        List of formatted output lines
    """
    if not projection.is_known:
        return ["Usage: UNKNOWN (active pool could not be inventoried)"]
    lines = [
        f"Current:   {humanfriendly.format_number(projection.current_items)} items, "
        f"{humanfriendly.format_number(projection.current_folders)} folders",
        f"Projected: {humanfriendly.format_number(projection.projected_items)} items "
        f"({projection.item_percent:.2f}%), "
        f"{humanfriendly.format_number(projection.projected_folders)} folders ({projection.folder_percent:.2f}%)",
        f"Threshold: {threshold:.2f}% - rotation {'WOULD' if projection.peak_percent >= threshold else 'would not'} fire",
    ]
    if projection.unreachable_users:
        lines.append(f"Unreachable (counted as empty): {', '.join(projection.unreachable_users)}")
    return lines


def format_oversized(entries: list[OversizedEntry]) -> list[str]:
    return [
        f"  {entry.email:<40} {entry.file_count:>8} files  {format_minutes(entry.estimated_minutes):<20} "
        f"{entry.classification.value}"
        for entry in entries
    ]


def format_admission(result: AdmissionResult) -> list[str]:
    plan = result.plan
    lines = [f"Admitted {len(plan)} users, {format_minutes(plan.total_minutes)} of {format_minutes(plan.max_minutes)}:"]
    lines.extend(
        f"  {entry.email:<40} {entry.file_count:>8} files  {format_minutes(entry.estimated_minutes)}"
        for entry in plan.entries
    )
    if result.oversized:
        lines.append(f"Oversized ({len(result.manual)} manual, {len(result.deferred)} deferred):")
        lines.extend(format_oversized(result.oversized))
    return lines


def format_registry(records: list[PoolRecord]) -> list[str]:
    lines = [f"{'DriveName':<30} {'DriveID':<25} {'State':<7} LastUpdated"]
    lines.extend(
        f"{record.drive_name:<30} {record.drive_id:<25} {'ACTIVE' if record.is_active else 'full':<7} "
        f"{format_timestamp(record.last_updated) if record.last_updated else '-'}"
        for record in records
    )
    return lines
