"""
Sync engine for game save slots.
"""

from savesync.sync.engine import SyncOrchestrator
from savesync.sync.exceptions import (
    AmbiguousResolution,
    InvalidOptions,
    NewerCopyExists,
    NotFound,
    OperationInProgress,
    PartialFailure,
    QuotaExceeded,
    RemoteRejected,
    RemoteUnavailable,
    StorageError,
    SyncError,
    ValidationError,
)
from savesync.sync.operations import (
    BackupOptions,
    CancellationToken,
    OperationStatus,
    OperationType,
    PendingManualChoice,
    ResolutionPolicy,
    ResolvedSlot,
    RestoreOptions,
    SyncOperation,
    SyncOptions,
    SyncReport,
)
from savesync.sync.progress import ProgressChannel, ProgressEvent
from savesync.sync.quota import QuotaLevel, QuotaTracker, QuotaUsage
from savesync.sync.registry import SlotRegistry
from savesync.sync.slots import SaveSlot, SlotMetadata, SlotRecord, SyncStatus
from savesync.sync.status import classify

__all__ = [
    "SyncOrchestrator",
    "SlotRegistry",
    "QuotaTracker",
    "QuotaUsage",
    "QuotaLevel",
    "ProgressChannel",
    "ProgressEvent",
    "classify",
    "SaveSlot",
    "SlotMetadata",
    "SlotRecord",
    "SyncStatus",
    "SyncOperation",
    "OperationType",
    "OperationStatus",
    "ResolutionPolicy",
    "ResolvedSlot",
    "PendingManualChoice",
    "BackupOptions",
    "RestoreOptions",
    "SyncOptions",
    "CancellationToken",
    "SyncReport",
    "SyncError",
    "NotFound",
    "RemoteUnavailable",
    "RemoteRejected",
    "QuotaExceeded",
    "AmbiguousResolution",
    "OperationInProgress",
    "ValidationError",
    "PartialFailure",
    "StorageError",
    "NewerCopyExists",
    "InvalidOptions",
]
