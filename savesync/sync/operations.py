"""
Operation records, option structs and results returned by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from django.db import models

from savesync.sync.exceptions import InvalidOptions

if TYPE_CHECKING:
    from savesync.sync.progress import ProgressChannel
    from savesync.sync.slots import SlotMetadata, SyncStatus


class OperationType(models.TextChoices):
    BACKUP = "backup", "Backup"
    RESTORE = "restore", "Restore"
    RESOLVE = "resolve", "Resolve"
    DELETE = "delete", "Delete"
    IMPORT = "import", "Import"


class OperationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class ResolutionPolicy(models.TextChoices):
    KEEP_LOCAL = "keep_local", "Keep Local"
    KEEP_CLOUD = "keep_cloud", "Keep Cloud"
    KEEP_NEWEST = "keep_newest", "Keep Newest"
    MANUAL = "manual", "Manual"

    @classmethod
    def parse(cls, value: "str | ResolutionPolicy") -> "ResolutionPolicy":
        """
        Accept a policy or its name/value in any case.

        Raises:
            ValueError: If the value is not a known policy
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unknown resolution policy {value!r}; expected one of {', '.join(cls.values)}"
            ) from None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncOperation:
    """
    Transient work item for one slot.

    Returned to the caller once the operation finishes; the engine does
    not keep it.
    """

    type: OperationType
    slot_number: int
    status: OperationStatus = OperationStatus.PENDING
    progress_percent: int = 0
    error: Exception | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    bytes_transferred: int = 0
    # True when the operation found nothing to do (tokens already equal)
    skipped: bool = False

    def start(self) -> None:
        self.status = OperationStatus.IN_PROGRESS
        self.started_at = _now()

    def complete(self, bytes_transferred: int = 0, skipped: bool = False) -> None:
        self.status = OperationStatus.COMPLETED
        self.progress_percent = 100
        self.bytes_transferred = bytes_transferred
        self.skipped = skipped
        self.finished_at = _now()

    def fail(self, error: Exception) -> None:
        self.status = OperationStatus.FAILED
        self.error = error
        self.finished_at = _now()

    @property
    def is_finished(self) -> bool:
        return self.status in (OperationStatus.COMPLETED, OperationStatus.FAILED)


class CancellationToken:
    """
    Cooperative cancellation flag for batch operations.

    Checked between slots; a slot that already started runs to the end.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class _Options:
    """Mixin for option structs that can be built from a plain mapping."""

    @classmethod
    def from_mapping(cls, data: dict | None):
        """
        Build options from a mapping, rejecting unrecognised keys.

        Raises:
            InvalidOptions: If the mapping has keys the struct does not define
        """
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidOptions(
                f"Unknown option(s) for {cls.__name__}: {', '.join(unknown)}"
            )
        return cls(**data)


@dataclass(frozen=True)
class BackupOptions(_Options):
    """
    Options for backup().

    overwrite_newer: replace a cloud copy that is newer than (or concurrent
        with) the local copy instead of raising NewerCopyExists.
    progress: channel receiving progress events; defaults to the
        orchestrator's own channel.
    """

    overwrite_newer: bool = False
    progress: ProgressChannel | None = None


@dataclass(frozen=True)
class RestoreOptions(_Options):
    """
    Options for restore().

    overwrite_newer: replace a local copy that is newer than (or
        concurrent with) the cloud copy instead of raising NewerCopyExists.
    progress: channel receiving progress events.
    """

    overwrite_newer: bool = False
    progress: ProgressChannel | None = None


@dataclass(frozen=True)
class SyncOptions(_Options):
    """
    Options for quick_sync() and full_sync().

    progress: channel receiving per-slot progress events.
    cancel: token checked between slots.
    slots: restrict the batch to these slot numbers.
    """

    progress: ProgressChannel | None = None
    cancel: CancellationToken | None = None
    slots: frozenset[int] | None = None


@dataclass(frozen=True)
class ResolvedSlot:
    """Successful conflict resolution."""

    slot_number: int
    policy: ResolutionPolicy
    winner: str  # "local" or "cloud"
    metadata: SlotMetadata
    previous_status: SyncStatus
    operation: SyncOperation | None = None


@dataclass(frozen=True)
class PendingManualChoice:
    """
    Both candidates of a conflict, waiting for an outside decision.

    Carries metadata only; resolve again with KEEP_LOCAL or KEEP_CLOUD
    once the choice is made.
    """

    slot_number: int
    local: SlotMetadata | None
    remote: SlotMetadata | None
    status: SyncStatus


@dataclass
class SyncReport:
    """Result of a batch sync."""

    started_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None
    operations: dict[int, SyncOperation] = field(default_factory=dict)
    failures: dict[int, Exception] = field(default_factory=dict)
    conflicts: list[int] = field(default_factory=list)
    deferred: list[int] = field(default_factory=list)
    cancelled: list[int] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def bytes_transferred(self) -> int:
        return sum(op.bytes_transferred for op in self.operations.values())

    @property
    def synced_slots(self) -> list[int]:
        return sorted(
            slot
            for slot, op in self.operations.items()
            if op.status == OperationStatus.COMPLETED
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.duration,
            "synced": {
                str(slot): str(self.operations[slot].type) for slot in self.synced_slots
            },
            "failures": {
                str(slot): (
                    error.to_dict()
                    if hasattr(error, "to_dict")
                    else {"kind": "unexpected", "slot_number": slot, "message": str(error)}
                )
                for slot, error in sorted(self.failures.items())
            },
            "conflicts": sorted(self.conflicts),
            "deferred": sorted(self.deferred),
            "cancelled": sorted(self.cancelled),
            "bytes_transferred": self.bytes_transferred,
        }
