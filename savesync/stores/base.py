"""
Interfaces for the local and remote slot stores.

Stores hold opaque payloads keyed by slot number. They never decide
anything about sync state; the engine only calls these methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from savesync.sync.slots import SlotMetadata, SlotRecord


@dataclass(frozen=True)
class RemoteQuota:
    """Storage accounting as reported by the remote store itself."""

    used_bytes: int
    total_bytes: int | None  # None when the remote enforces no limit


class SlotStore(ABC):
    """Durable key-value store of save payloads keyed by slot number."""

    name = "local"

    @abstractmethod
    async def read(self, slot_number: int) -> SlotRecord:
        """
        Read payload and metadata.

        Raises:
            NotFound: If the slot holds no payload
        """

    @abstractmethod
    async def stat(self, slot_number: int) -> SlotMetadata | None:
        """Read metadata only; None if the slot holds no payload."""

    @abstractmethod
    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        """Store payload and metadata, replacing any existing copy."""

    @abstractmethod
    async def delete(self, slot_number: int) -> bool:
        """Delete the slot; False if there was nothing to delete."""

    @abstractmethod
    async def list(self) -> set[int]:
        """Slot numbers that currently hold a payload."""


class RemoteStore(SlotStore):
    """
    Slot store reachable over the network.

    Calls are only attempted while ``is_available()`` is true.
    """

    name = "remote"

    @abstractmethod
    def is_available(self) -> bool:
        """True when online and authenticated."""

    @abstractmethod
    async def quota(self) -> RemoteQuota:
        """Storage used and allowed for the signed-in account."""
