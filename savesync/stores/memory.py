"""
In-process slot stores.

Used for offline play sessions that never touch disk, and as the
stores behind the engine tests.
"""

from __future__ import annotations

import logging

from savesync.stores.base import RemoteQuota, RemoteStore, SlotStore
from savesync.sync.exceptions import NotFound, RemoteUnavailable
from savesync.sync.slots import SlotMetadata, SlotRecord

logger = logging.getLogger(__name__)


class MemorySlotStore(SlotStore):
    """Slot store backed by a dict."""

    name = "memory"

    def __init__(self):
        self._slots: dict[int, SlotRecord] = {}

    async def read(self, slot_number: int) -> SlotRecord:
        try:
            return self._slots[slot_number]
        except KeyError:
            raise NotFound(f"No {self.name} save in slot", slot_number) from None

    async def stat(self, slot_number: int) -> SlotMetadata | None:
        record = self._slots.get(slot_number)
        return record.metadata if record else None

    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        self._slots[slot_number] = SlotRecord(payload=bytes(payload), metadata=metadata)
        logger.debug(f"Wrote {len(payload)} bytes to {self.name} slot {slot_number}")

    async def delete(self, slot_number: int) -> bool:
        return self._slots.pop(slot_number, None) is not None

    async def list(self) -> set[int]:
        return set(self._slots)

    async def put(self, slot_number: int, payload: bytes, **metadata_fields) -> SlotMetadata:
        """Write a payload, describing it from its bytes."""
        metadata = SlotMetadata.for_payload(payload, **metadata_fields)
        await self.write(slot_number, payload, metadata)
        return metadata


class MemoryRemoteStore(MemorySlotStore, RemoteStore):
    """
    Remote store backed by a dict.

    ``online`` simulates connectivity; ``total_bytes`` sets the quota
    limit (None for unlimited).
    """

    name = "memory-remote"

    def __init__(self, online: bool = True, total_bytes: int | None = None, overhead_bytes: int = 0):
        super().__init__()
        self.online = online
        self.total_bytes = total_bytes
        self.overhead_bytes = overhead_bytes

    def is_available(self) -> bool:
        return self.online

    def _check_online(self, slot_number: int | None = None) -> None:
        if not self.online:
            raise RemoteUnavailable("Remote store is offline", slot_number)

    async def read(self, slot_number: int) -> SlotRecord:
        self._check_online(slot_number)
        return await super().read(slot_number)

    async def stat(self, slot_number: int) -> SlotMetadata | None:
        self._check_online(slot_number)
        return await super().stat(slot_number)

    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        self._check_online(slot_number)
        await super().write(slot_number, payload, metadata)

    async def delete(self, slot_number: int) -> bool:
        self._check_online(slot_number)
        return await super().delete(slot_number)

    async def list(self) -> set[int]:
        self._check_online()
        return await super().list()

    async def quota(self) -> RemoteQuota:
        self._check_online()
        used = sum(record.metadata.size_bytes + self.overhead_bytes for record in self._slots.values())
        return RemoteQuota(used_bytes=used, total_bytes=self.total_bytes)
