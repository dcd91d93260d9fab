"""
Guarded access to the remote store.

Every remote call goes through here so that the offline check, the
per-call timeout and the error translation are applied the same way
everywhere.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from savesync.conf import DEFAULT_NETWORK_TIMEOUT
from savesync.stores.base import RemoteQuota, RemoteStore
from savesync.sync.exceptions import RemoteUnavailable, SyncError
from savesync.sync.slots import SlotMetadata, SlotRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteGateway:
    """Wraps a RemoteStore with availability gating and timeouts."""

    def __init__(self, store: RemoteStore, timeout: float = DEFAULT_NETWORK_TIMEOUT):
        self.store = store
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.store.is_available()

    async def _call(self, action: str, awaitable: Awaitable[T], slot_number: int | None = None) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except SyncError as e:
            if slot_number is not None:
                e.for_slot(slot_number)
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Remote {action} timed out after {self.timeout}s (slot={slot_number})")
            raise RemoteUnavailable(
                f"Remote {action} timed out after {self.timeout:g}s", slot_number
            ) from None
        except (ConnectionError, OSError) as e:
            logger.warning(f"Remote {action} failed (slot={slot_number}): {e}")
            raise RemoteUnavailable(f"Remote {action} failed: {e}", slot_number) from e

    def _require_available(self, action: str, slot_number: int | None = None) -> None:
        if not self.store.is_available():
            raise RemoteUnavailable(
                f"Cannot {action}: cloud storage is offline or not signed in", slot_number
            )

    async def stat(self, slot_number: int) -> SlotMetadata | None:
        self._require_available("read cloud metadata", slot_number)
        return await self._call("stat", self.store.stat(slot_number), slot_number)

    async def read(self, slot_number: int) -> SlotRecord:
        self._require_available("download", slot_number)
        return await self._call("read", self.store.read(slot_number), slot_number)

    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        self._require_available("upload", slot_number)
        await self._call("write", self.store.write(slot_number, payload, metadata), slot_number)

    async def delete(self, slot_number: int) -> bool:
        self._require_available("delete cloud save", slot_number)
        return await self._call("delete", self.store.delete(slot_number), slot_number)

    async def list(self) -> set[int]:
        self._require_available("list cloud saves")
        return await self._call("list", self.store.list())

    async def quota(self) -> RemoteQuota:
        self._require_available("check cloud quota")
        return await self._call("quota", self.store.quota())
