"""
Exceptions for sync operations.

Every error carries the slot it concerns (when there is one) so the
caller can offer a retry for exactly that slot.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync operations."""

    kind = "sync_error"
    retryable = False
    # Whether raising this error marks the slot SYNC_FAILED
    marks_failed = True

    def __init__(self, message: str, slot_number: int | None = None):
        super().__init__(message)
        self.message = message
        self.slot_number = slot_number

    def for_slot(self, slot_number: int) -> "SyncError":
        """Attach a slot number if the error was raised without one."""
        if self.slot_number is None:
            self.slot_number = slot_number
        return self

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "slot_number": self.slot_number,
            "message": self.message,
            "retryable": self.retryable,
        }

    def __str__(self):
        if self.slot_number is None:
            return self.message
        return f"[slot {self.slot_number}] {self.message}"


class NotFound(SyncError):
    """The slot has no payload on the queried side."""

    kind = "not_found"
    marks_failed = False


class RemoteUnavailable(SyncError):
    """Remote store is offline, timed out, or the transport failed."""

    kind = "remote_unavailable"
    retryable = True


class RemoteRejected(SyncError):
    """Remote store refused the request (auth, quota, server-side refusal)."""

    kind = "remote_rejected"


class QuotaExceeded(RemoteRejected):
    """Not enough remote storage left for the payload."""

    kind = "quota_exceeded"

    def __init__(
        self,
        message: str,
        slot_number: int | None = None,
        required_bytes: int | None = None,
        remaining_bytes: int | None = None,
    ):
        super().__init__(message, slot_number)
        self.required_bytes = required_bytes
        self.remaining_bytes = remaining_bytes

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["required_bytes"] = self.required_bytes
        data["remaining_bytes"] = self.remaining_bytes
        return data


class AmbiguousResolution(SyncError):
    """KEEP_NEWEST could not pick a side because the timestamps tie."""

    kind = "ambiguous_resolution"
    marks_failed = False


class OperationInProgress(SyncError):
    """Another operation is already running for this slot."""

    kind = "operation_in_progress"
    retryable = True
    marks_failed = False


class ValidationError(SyncError):
    """Import blob is corrupt, malformed, or from a newer format version."""

    kind = "validation_error"
    marks_failed = False


class PartialFailure(SyncError):
    """One half of a two-part operation succeeded and the other failed."""

    kind = "partial_failure"
    retryable = True

    def __init__(
        self,
        message: str,
        slot_number: int | None = None,
        completed: tuple[str, ...] = (),
        failed: tuple[str, ...] = (),
        cause: Exception | None = None,
    ):
        super().__init__(message, slot_number)
        self.completed = tuple(completed)
        self.failed = tuple(failed)
        self.cause = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["completed"] = list(self.completed)
        data["failed"] = list(self.failed)
        return data


class StorageError(SyncError):
    """Failed to read or write the local slot store."""

    kind = "storage_error"
    retryable = True


class NewerCopyExists(SyncError):
    """The destination holds a newer or concurrent copy; refusing to overwrite it."""

    kind = "newer_copy_exists"
    marks_failed = False


class InvalidOptions(SyncError):
    """An options mapping contained fields the operation does not recognise."""

    kind = "invalid_options"
    marks_failed = False
