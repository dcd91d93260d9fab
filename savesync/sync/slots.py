"""
Slot records shared by the stores, the registry and the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from django.db import models

from savesync.storage import compute_digest


class SyncStatus(models.TextChoices):
    EMPTY = "empty", "Empty"
    SYNCED = "synced", "Synced"
    LOCAL_NEWER = "local_newer", "Local Newer"
    CLOUD_NEWER = "cloud_newer", "Cloud Newer"
    CONFLICT = "conflict", "Conflict"
    SYNC_FAILED = "sync_failed", "Sync Failed"


def _parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SlotMetadata:
    """
    Descriptor of one copy of a save.

    ``checksum`` is the comparison token: two copies with the same
    checksum hold byte-identical payloads.
    """

    last_modified: datetime
    checksum: str
    size_bytes: int
    player_summary: dict = field(default_factory=dict, compare=False)
    is_favorite: bool = False

    @classmethod
    def for_payload(
        cls,
        payload: bytes,
        last_modified: datetime | None = None,
        player_summary: dict | None = None,
        is_favorite: bool = False,
    ) -> "SlotMetadata":
        """Describe a payload that is about to be written."""
        return cls(
            last_modified=_parse_timestamp(last_modified or datetime.now(timezone.utc)),
            checksum=compute_digest(payload),
            size_bytes=len(payload),
            player_summary=dict(player_summary or {}),
            is_favorite=is_favorite,
        )

    def to_dict(self) -> dict:
        return {
            "last_modified": self.last_modified.isoformat(),
            "checksum": self.checksum,
            "size_bytes": self.size_bytes,
            "player_summary": dict(self.player_summary),
            "is_favorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SlotMetadata":
        """
        Build metadata from its dict form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong shape
        """
        size_bytes = int(data["size_bytes"])
        if size_bytes < 0:
            raise ValueError(f"Negative size: {size_bytes}")
        player_summary = data.get("player_summary") or {}
        if not isinstance(player_summary, dict):
            raise ValueError("player_summary must be a mapping")
        return cls(
            last_modified=_parse_timestamp(data["last_modified"]),
            checksum=str(data["checksum"]),
            size_bytes=size_bytes,
            player_summary=player_summary,
            is_favorite=bool(data.get("is_favorite", False)),
        )


@dataclass(frozen=True)
class SlotRecord:
    """Payload plus metadata as read from a store."""

    payload: bytes
    metadata: SlotMetadata


@dataclass(frozen=True)
class SaveSlot:
    """
    Read-only snapshot of a slot as the registry currently sees it.

    ``local`` and ``remote`` are the metadata of each copy, or None when
    that side has no payload.
    """

    slot_number: int
    local: SlotMetadata | None = None
    remote: SlotMetadata | None = None
    status: SyncStatus = SyncStatus.EMPTY
    remote_stale: bool = False
    last_error: Exception | None = None
    last_direction: str | None = None
    previous_status: SyncStatus | None = None
    refreshed_at: datetime | None = None

    @property
    def local_presence(self) -> bool:
        return self.local is not None

    @property
    def cloud_presence(self) -> bool:
        return self.remote is not None

    @property
    def metadata(self) -> SlotMetadata | None:
        """Metadata for display: the local copy, else the cloud copy."""
        return self.local or self.remote

    @property
    def is_empty(self) -> bool:
        return self.status == SyncStatus.EMPTY

    def evolve(self, **changes) -> "SaveSlot":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "slot_number": self.slot_number,
            "status": str(self.status),
            "local": self.local.to_dict() if self.local else None,
            "remote": self.remote.to_dict() if self.remote else None,
            "remote_stale": self.remote_stale,
            "last_error": str(self.last_error) if self.last_error else None,
            "last_direction": self.last_direction,
            "previous_status": str(self.previous_status) if self.previous_status else None,
        }
