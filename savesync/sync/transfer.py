"""
Copy primitives between the local and remote stores.

Payloads are only ever copied; the engine never rewrites their bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from savesync.conf import DEFAULT_MAX_SAVE_SIZE
from savesync.stores.base import SlotStore
from savesync.sync.exceptions import NewerCopyExists, RemoteRejected, StorageError, SyncError
from savesync.sync.gateway import RemoteGateway
from savesync.sync.quota import QuotaTracker
from savesync.sync.slots import SlotMetadata, SlotRecord
from savesync.sync.status import DEFAULT_TOLERANCE, compare_timestamps

logger = logging.getLogger(__name__)

Progress = Callable[[str, int, str], None]


def no_progress(phase: str, percent: int, message: str) -> None:
    pass


@dataclass(frozen=True)
class SlotOutcome:
    """
    What a finished single-slot action left behind.

    ``local`` and ``remote`` are the metadata of both copies afterwards.
    ``settled`` is False when the action changed nothing and the cached
    slot state should be left alone.
    """

    local: SlotMetadata | None
    remote: SlotMetadata | None
    bytes_transferred: int = 0
    skipped: bool = False
    settled: bool = True
    detail: Any = None


class SlotTransfer:
    def __init__(
        self,
        local: SlotStore,
        gateway: RemoteGateway,
        quota: QuotaTracker,
        max_save_size: int = DEFAULT_MAX_SAVE_SIZE,
        tolerance: timedelta = DEFAULT_TOLERANCE,
    ):
        self.local = local
        self.gateway = gateway
        self.quota = quota
        self.max_save_size = max_save_size
        self.tolerance = tolerance

    async def _local_call(self, action: str, awaitable, slot_number: int):
        try:
            return await awaitable
        except SyncError as e:
            raise e.for_slot(slot_number)
        except OSError as e:
            raise StorageError(f"Local {action} failed: {e}", slot_number) from e

    async def read_local(self, slot_number: int) -> SlotRecord:
        return await self._local_call("read", self.local.read(slot_number), slot_number)

    async def stat_local(self, slot_number: int) -> SlotMetadata | None:
        return await self._local_call("read", self.local.stat(slot_number), slot_number)

    async def write_local(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        await self._local_call("write", self.local.write(slot_number, payload, metadata), slot_number)

    async def delete_local(self, slot_number: int) -> bool:
        return await self._local_call("delete", self.local.delete(slot_number), slot_number)

    async def push(self, slot_number: int, record: SlotRecord, progress: Progress = no_progress) -> int:
        """
        Upload a record to the remote store, overwriting whatever is there.

        Raises:
            RemoteRejected: If the payload exceeds the maximum save size
            QuotaExceeded: If the remote has less space left than the payload needs
            RemoteUnavailable: If the remote is offline or the upload fails
        """
        size = len(record.payload)
        if size > self.max_save_size:
            raise RemoteRejected(
                f"Save is {size:,} bytes; the cloud accepts at most {self.max_save_size:,}",
                slot_number,
            )

        progress("quota", 30, "Checking cloud storage space")
        await self.quota.ensure_capacity(size, slot_number)

        progress("upload", 50, f"Uploading {size:,} bytes")
        await self.gateway.write(slot_number, record.payload, record.metadata)
        progress("upload", 90, "Upload finished")

        logger.info(f"Uploaded slot {slot_number} ({size:,} bytes)")
        return size

    async def pull(self, slot_number: int, record: SlotRecord, progress: Progress = no_progress) -> int:
        """Write a downloaded record into the local store."""
        size = len(record.payload)
        progress("write", 70, "Writing save to this device")
        await self.write_local(slot_number, record.payload, record.metadata)
        progress("write", 90, "Save written")

        logger.info(f"Restored slot {slot_number} ({size:,} bytes)")
        return size

    def _refuse_if_newer(
        self,
        slot_number: int,
        source: SlotMetadata,
        destination: SlotMetadata,
        destination_name: str,
    ) -> None:
        if compare_timestamps(source.last_modified, destination.last_modified, self.tolerance) <= 0:
            raise NewerCopyExists(
                f"The {destination_name} copy (modified {destination.last_modified.isoformat()}) "
                f"is not older than the one being copied; pass overwrite_newer to replace it",
                slot_number,
            )

    async def backup(
        self,
        slot_number: int,
        progress: Progress = no_progress,
        overwrite_newer: bool = False,
    ) -> SlotOutcome:
        """
        Copy the local save to the cloud.

        No write happens when the cloud already holds the same payload.

        Raises:
            NotFound: If the slot has no local save
            NewerCopyExists: If the cloud copy is newer or concurrent and
                overwrite_newer is False
        """
        progress("read", 10, "Reading local save")
        record = await self.read_local(slot_number)

        progress("compare", 20, "Checking cloud copy")
        remote = await self.gateway.stat(slot_number)

        if remote is not None and remote.checksum == record.metadata.checksum:
            logger.debug(f"Slot {slot_number} already backed up; skipping upload")
            return SlotOutcome(local=record.metadata, remote=remote, skipped=True)

        if remote is not None and not overwrite_newer:
            self._refuse_if_newer(slot_number, record.metadata, remote, "cloud")

        size = await self.push(slot_number, record, progress)
        return SlotOutcome(local=record.metadata, remote=record.metadata, bytes_transferred=size)

    async def restore(
        self,
        slot_number: int,
        progress: Progress = no_progress,
        overwrite_newer: bool = False,
    ) -> SlotOutcome:
        """
        Copy the cloud save to this device.

        Raises:
            NotFound: If the slot has no cloud save
            NewerCopyExists: If the local copy is newer or concurrent and
                overwrite_newer is False
        """
        progress("compare", 10, "Checking local copy")
        local = await self.stat_local(slot_number)

        progress("download", 20, "Checking cloud copy")
        remote = await self.gateway.stat(slot_number)

        if remote is not None and local is not None and local.checksum == remote.checksum:
            logger.debug(f"Slot {slot_number} already restored; skipping download")
            return SlotOutcome(local=local, remote=remote, skipped=True)

        if remote is not None and local is not None and not overwrite_newer:
            self._refuse_if_newer(slot_number, remote, local, "local")

        progress("download", 30, "Downloading cloud save")
        record = await self.gateway.read(slot_number)

        size = await self.pull(slot_number, record, progress)
        return SlotOutcome(local=record.metadata, remote=record.metadata, bytes_transferred=size)
