"""
In-memory index of per-slot sync state.

The registry is advisory: it is rebuilt from the stores by refresh()
and never treated as the source of truth. Updates to one slot are
serialized by a per-slot lock.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from savesync.conf import DEFAULT_SLOT_COUNT
from savesync.stores.base import SlotStore
from savesync.sync.exceptions import SyncError
from savesync.sync.gateway import RemoteGateway
from savesync.sync.slots import SaveSlot, SlotMetadata, SyncStatus
from savesync.sync.status import DEFAULT_TOLERANCE, classify

logger = logging.getLogger(__name__)

_UNCHANGED = object()


class SlotRegistry:
    """Cache of SaveSlot snapshots for a fixed slot space 0..slot_count-1."""

    def __init__(
        self,
        local: SlotStore,
        gateway: RemoteGateway,
        slot_count: int = DEFAULT_SLOT_COUNT,
        tolerance: timedelta = DEFAULT_TOLERANCE,
    ):
        self.local = local
        self.gateway = gateway
        self.slot_count = slot_count
        self.tolerance = tolerance
        self._slots: dict[int, SaveSlot] = {n: SaveSlot(slot_number=n) for n in range(slot_count)}
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def slot_numbers(self) -> range:
        return range(self.slot_count)

    def validate(self, slot_number: int) -> int:
        """
        Raises:
            ValueError: If the slot number is outside the slot space
        """
        if not isinstance(slot_number, int) or not 0 <= slot_number < self.slot_count:
            raise ValueError(f"Slot {slot_number!r} is outside 0..{self.slot_count - 1}")
        return slot_number

    def _lock(self, slot_number: int) -> asyncio.Lock:
        lock = self._locks.get(slot_number)
        if lock is None:
            lock = self._locks[slot_number] = asyncio.Lock()
        return lock

    def get(self, slot_number: int) -> SaveSlot:
        return self._slots[self.validate(slot_number)]

    def snapshot(self) -> dict[int, SaveSlot]:
        return dict(self._slots)

    async def refresh(self, slot_numbers: Iterable[int] | None = None) -> dict[int, SaveSlot]:
        """
        Re-read metadata for the given slots (all slots if omitted).

        Local metadata is always read. Remote metadata is only read while
        the remote is available; when it is not, or when a slot's remote
        read fails, the previous remote metadata is kept and flagged stale.
        """
        if slot_numbers is None:
            numbers = list(self.slot_numbers)
        else:
            numbers = sorted({self.validate(n) for n in slot_numbers})

        remote_available = self.gateway.is_available()
        if not remote_available:
            logger.info("Cloud storage unavailable; keeping cached cloud metadata")

        await asyncio.gather(*(self._refresh_slot(n, remote_available) for n in numbers))

        stale = [n for n in numbers if self._slots[n].remote_stale]
        logger.debug(f"Refreshed {len(numbers)} slot(s), {len(stale)} with stale cloud metadata")
        return {n: self._slots[n] for n in numbers}

    async def _refresh_slot(self, slot_number: int, remote_available: bool) -> None:
        async with self._lock(slot_number):
            prior = self._slots[slot_number]
            local, remote = prior.local, prior.remote
            remote_stale = True
            local_error = None

            try:
                local = await self.local.stat(slot_number)
            except SyncError as e:
                logger.warning(f"Failed to read local metadata for slot {slot_number}: {e}")
                local_error = e.for_slot(slot_number)

            if remote_available:
                try:
                    remote = await self.gateway.stat(slot_number)
                    remote_stale = False
                except SyncError as e:
                    logger.warning(f"Keeping stale cloud metadata for slot {slot_number}: {e}")
                except Exception as e:
                    logger.warning(
                        f"Unexpected error reading cloud metadata for slot {slot_number}: {e}",
                        exc_info=True,
                    )

            status = classify(local, remote, self.tolerance)
            last_error = prior.last_error
            if local_error is not None:
                status, last_error = SyncStatus.SYNC_FAILED, local_error
            elif prior.status == SyncStatus.SYNC_FAILED and status != SyncStatus.EMPTY:
                # Only a successful operation clears a failure
                status = SyncStatus.SYNC_FAILED

            self._slots[slot_number] = prior.evolve(
                local=local,
                remote=remote,
                status=status,
                remote_stale=remote_stale,
                last_error=last_error,
                refreshed_at=datetime.now(timezone.utc),
            )

    async def record_success(
        self,
        slot_number: int,
        local: SlotMetadata | None,
        remote: SlotMetadata | None,
        operation_type: str,
    ) -> SaveSlot:
        """Store the outcome of a successful operation and clear any failure."""
        async with self._lock(slot_number):
            prior = self._slots[slot_number]
            slot = prior.evolve(
                local=local,
                remote=remote,
                status=classify(local, remote, self.tolerance),
                remote_stale=False,
                last_error=None,
                last_direction=str(operation_type),
                previous_status=prior.status,
            )
            self._slots[slot_number] = slot
        return slot

    async def record_failure(
        self,
        slot_number: int,
        error: Exception,
        operation_type: str,
    ) -> SaveSlot:
        """
        Mark the slot SYNC_FAILED after an attempted operation errored.

        Errors raised before anything was attempted leave the slot as it is.
        """
        if isinstance(error, SyncError) and not error.marks_failed:
            return self._slots[slot_number]

        async with self._lock(slot_number):
            prior = self._slots[slot_number]
            slot = prior.evolve(
                status=SyncStatus.SYNC_FAILED,
                last_error=error,
                last_direction=str(operation_type),
                previous_status=(
                    prior.previous_status if prior.status == SyncStatus.SYNC_FAILED else prior.status
                ),
            )
            self._slots[slot_number] = slot
        return slot

    async def update(self, slot_number: int, local=_UNCHANGED, remote=_UNCHANGED) -> SaveSlot:
        """Replace one side's cached metadata without touching the status."""
        async with self._lock(slot_number):
            prior = self._slots[slot_number]
            changes = {}
            if local is not _UNCHANGED:
                changes["local"] = local
            if remote is not _UNCHANGED:
                changes["remote"] = remote
            slot = prior.evolve(**changes)
            self._slots[slot_number] = slot
        return slot
