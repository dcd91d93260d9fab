"""
Sync status classification.

Timestamps closer together than the clock-skew tolerance are not
trusted to order two edits: such slots surface as CONFLICT instead of
letting the last write win.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from savesync.conf import DEFAULT_CLOCK_SKEW_TOLERANCE
from savesync.sync.slots import SlotMetadata, SyncStatus

DEFAULT_TOLERANCE = timedelta(seconds=DEFAULT_CLOCK_SKEW_TOLERANCE)


def compare_timestamps(
    local: datetime,
    remote: datetime,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> int:
    """
    Order two modification times.

    Returns:
        1 if local is later by more than tolerance, -1 if remote is,
        0 if neither strictly dominates
    """
    delta = local - remote
    if delta > tolerance:
        return 1
    if -delta > tolerance:
        return -1
    return 0


def classify(
    local: SlotMetadata | None,
    remote: SlotMetadata | None,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> SyncStatus:
    """
    Compute the sync status of a slot from the metadata of both copies.

    A copy present on one side only needs propagating and is reported as
    newer on that side, not as a conflict.
    """
    if local is None and remote is None:
        return SyncStatus.EMPTY
    if remote is None:
        return SyncStatus.LOCAL_NEWER
    if local is None:
        return SyncStatus.CLOUD_NEWER
    if local.checksum == remote.checksum:
        return SyncStatus.SYNCED

    order = compare_timestamps(local.last_modified, remote.last_modified, tolerance)
    if order > 0:
        return SyncStatus.LOCAL_NEWER
    if order < 0:
        return SyncStatus.CLOUD_NEWER
    return SyncStatus.CONFLICT
