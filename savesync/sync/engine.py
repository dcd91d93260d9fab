"""
Core sync engine for game saves.

Orchestrates single-slot backup, restore, resolution and deletion, and
the batch quick/full syncs built on them. Each slot runs at most one
operation at a time; batch operations fan out across slots with a
bounded number of concurrent workers and collect per-slot failures
instead of aborting.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Awaitable, Callable

from savesync.conf import SyncSettings, get_sync_settings
from savesync.stores.base import RemoteStore, SlotStore
from savesync.sync.exceptions import OperationInProgress, PartialFailure, SyncError
from savesync.sync.gateway import RemoteGateway
from savesync.sync.operations import (
    BackupOptions,
    OperationType,
    PendingManualChoice,
    ResolutionPolicy,
    ResolvedSlot,
    RestoreOptions,
    SyncOperation,
    SyncOptions,
    SyncReport,
)
from savesync.sync.portable import decode_slot, encode_slot
from savesync.sync.progress import ProgressChannel, SlotProgress
from savesync.sync.quota import QuotaTracker, QuotaUsage
from savesync.sync.registry import SlotRegistry
from savesync.sync.resolver import ConflictResolver
from savesync.sync.slots import SaveSlot, SyncStatus
from savesync.sync.status import classify
from savesync.sync.transfer import SlotOutcome, SlotTransfer

if TYPE_CHECKING:
    from savesync.sync.journal import SyncJournal

logger = logging.getLogger(__name__)

Action = Callable[[int, SlotProgress], Awaitable[SlotOutcome]]

# Directions a SYNC_FAILED slot can be retried in during quick sync
RETRYABLE_DIRECTIONS = (OperationType.BACKUP, OperationType.RESTORE)


class SyncOrchestrator:
    """
    Coordinates sync operations between a local and a remote slot store.

    Owns the slot registry; callers read slot state through ``slots()``
    and ``slot()`` and change it only through the operations below.
    """

    def __init__(
        self,
        local: SlotStore,
        remote: RemoteStore,
        config: SyncSettings | None = None,
        registry: SlotRegistry | None = None,
        quota: QuotaTracker | None = None,
        resolver: ConflictResolver | None = None,
        journal: SyncJournal | None = None,
        progress: ProgressChannel | None = None,
    ):
        self.config = config or get_sync_settings()
        tolerance = self.config.clock_skew_tolerance

        self.local = local
        self.gateway = RemoteGateway(remote, timeout=self.config.network_timeout)
        self.registry = registry or SlotRegistry(
            local, self.gateway, slot_count=self.config.slot_count, tolerance=tolerance
        )
        self.quota = quota or QuotaTracker(
            self.gateway,
            warning_percent=self.config.quota_warning_percent,
            critical_percent=self.config.quota_critical_percent,
        )
        self.transfer = SlotTransfer(
            local,
            self.gateway,
            self.quota,
            max_save_size=self.config.max_save_size,
            tolerance=tolerance,
        )
        self.resolver = resolver or ConflictResolver(self.registry, self.transfer, tolerance)
        self.journal = journal
        self.progress = progress
        self._in_flight: set[int] = set()

    # Read-only views

    def slot(self, slot_number: int) -> SaveSlot:
        return self.registry.get(slot_number)

    def slots(self) -> dict[int, SaveSlot]:
        return self.registry.snapshot()

    def in_flight(self) -> frozenset[int]:
        return frozenset(self._in_flight)

    async def refresh(self, slot_numbers=None) -> dict[int, SaveSlot]:
        return await self.registry.refresh(slot_numbers)

    async def quota_usage(self) -> QuotaUsage:
        return await self.quota.current_usage()

    # Single-slot operations

    async def backup(self, slot_number: int, options: BackupOptions | dict | None = None) -> SyncOperation:
        """
        Copy the local save in a slot to the cloud.

        Returns:
            The completed SyncOperation (``skipped`` when the cloud copy
            already matched)

        Raises:
            NotFound, RemoteUnavailable, RemoteRejected, QuotaExceeded,
            NewerCopyExists, OperationInProgress, StorageError
        """
        options = self._coerce(BackupOptions, options)
        action = partial(self.transfer.backup, overwrite_newer=options.overwrite_newer)
        operation, _ = await self._perform(
            OperationType.BACKUP, slot_number, action, self._sink(options.progress)
        )
        await self._journal_single(operation)
        return self._result(operation)

    async def restore(self, slot_number: int, options: RestoreOptions | dict | None = None) -> SyncOperation:
        """
        Copy the cloud save in a slot to this device.

        Raises:
            NotFound, RemoteUnavailable, RemoteRejected, NewerCopyExists,
            OperationInProgress, StorageError
        """
        options = self._coerce(RestoreOptions, options)
        action = partial(self.transfer.restore, overwrite_newer=options.overwrite_newer)
        operation, _ = await self._perform(
            OperationType.RESTORE, slot_number, action, self._sink(options.progress)
        )
        await self._journal_single(operation)
        return self._result(operation)

    async def resolve(
        self,
        slot_number: int,
        policy: ResolutionPolicy | str,
        progress: ProgressChannel | None = None,
    ) -> ResolvedSlot | PendingManualChoice:
        """
        Collapse a slot's two copies into one according to a policy.

        MANUAL returns both candidates' metadata without writing anything.

        Raises:
            ValueError: If the policy is unknown
            AmbiguousResolution: If KEEP_NEWEST cannot order the copies
        """
        policy = ResolutionPolicy.parse(policy)
        action = partial(self.resolver.resolve, policy=policy)
        operation, outcome = await self._perform(
            OperationType.RESOLVE, slot_number, action, self._sink(progress)
        )
        await self._journal_single(operation)
        self._result(operation)

        if isinstance(outcome.detail, ResolvedSlot):
            return replace(outcome.detail, operation=operation)
        return outcome.detail

    async def delete_cloud_save(
        self,
        slot_number: int,
        also_delete_local: bool = False,
        progress: ProgressChannel | None = None,
    ) -> SyncOperation:
        """
        Delete the cloud copy of a slot, and optionally the local copy.

        Callers confirm with the player before calling this. The cloud
        copy is deleted first; if the local delete then fails,
        PartialFailure is raised and calling again finishes the job.

        Raises:
            RemoteUnavailable, RemoteRejected, PartialFailure,
            OperationInProgress
        """
        action = partial(self._delete, also_delete_local=also_delete_local)
        operation, _ = await self._perform(
            OperationType.DELETE, slot_number, action, self._sink(progress)
        )
        await self._journal_single(operation)
        return self._result(operation)

    async def export_slot(self, slot_number: int) -> bytes:
        """
        Serialize the local save in a slot into a portable blob.

        Raises:
            NotFound: If the slot has no local save
        """
        self.registry.validate(slot_number)
        record = await self.transfer.read_local(slot_number)
        logger.info(f"Exported slot {slot_number} ({record.metadata.size_bytes:,} bytes)")
        return encode_slot(slot_number, record)

    async def import_slot(
        self,
        blob: bytes,
        target_slot: int,
        progress: ProgressChannel | None = None,
    ) -> SyncOperation:
        """
        Write a portable blob into a local slot.

        The imported save counts as a fresh local edit, so its
        modification time is the time of import. Nothing is written if
        the blob fails validation.

        Raises:
            ValidationError: If the blob is corrupt, tampered with, or
                from a newer format version
        """
        action = partial(self._import, blob=blob)
        operation, _ = await self._perform(
            OperationType.IMPORT, target_slot, action, self._sink(progress)
        )
        await self._journal_single(operation)
        return self._result(operation)

    async def _delete(self, slot_number: int, progress: SlotProgress, also_delete_local: bool) -> SlotOutcome:
        progress("delete", 10, "Deleting cloud save")
        existed = await self.gateway.delete(slot_number)
        if not existed:
            logger.info(f"Slot {slot_number} had no cloud save to delete")

        if not also_delete_local:
            try:
                local = await self.transfer.stat_local(slot_number)
            except SyncError as e:
                logger.warning(f"Could not re-read local metadata for slot {slot_number}: {e}")
                local = self.registry.get(slot_number).local
            return SlotOutcome(local=local, remote=None)

        progress("delete", 60, "Deleting save on this device")
        try:
            await self.transfer.delete_local(slot_number)
        except Exception as e:
            await self.registry.update(slot_number, remote=None)
            raise PartialFailure(
                f"Cloud save deleted but the local save could not be: {e}",
                slot_number,
                completed=("remote",),
                failed=("local",),
                cause=e,
            ) from e

        return SlotOutcome(local=None, remote=None)

    async def _import(self, slot_number: int, progress: SlotProgress, blob: bytes) -> SlotOutcome:
        progress("validate", 10, "Checking save file")
        source_slot, record = decode_slot(blob)

        metadata = replace(record.metadata, last_modified=datetime.now(timezone.utc))
        progress("write", 50, f"Importing save exported from slot {source_slot}")
        await self.transfer.write_local(slot_number, record.payload, metadata)

        logger.info(f"Imported save into slot {slot_number} (exported from slot {source_slot})")
        return SlotOutcome(
            local=metadata,
            remote=self.registry.get(slot_number).remote,
            bytes_transferred=len(record.payload),
        )

    # Batch operations

    async def quick_sync(self, options: SyncOptions | dict | None = None) -> SyncReport:
        """
        Bring every out-of-sync slot in the cached state up to date.

        LOCAL_NEWER slots are backed up and CLOUD_NEWER slots restored.
        CONFLICT slots are left for the caller. A SYNC_FAILED slot left by a
        backup or restore is retried once, in whichever direction its
        copies now point; other failed slots are deferred.
        """
        options = self._coerce(SyncOptions, options)
        return await self._run_batch("quick_sync", options)

    async def full_sync(self, options: SyncOptions | dict | None = None) -> SyncReport:
        """Refresh slot metadata from both stores, then quick sync."""
        options = self._coerce(SyncOptions, options)
        await self.registry.refresh(options.slots)
        return await self._run_batch("full_sync", options)

    def _plan(self, slots: dict[int, SaveSlot], report: SyncReport) -> list[tuple[int, OperationType]]:
        plan = []
        for slot_number, slot in sorted(slots.items()):
            status = slot.status
            if status == SyncStatus.SYNC_FAILED:
                status = self._retry_status(slot)
                if status is None:
                    report.deferred.append(slot_number)
                    continue

            if status == SyncStatus.LOCAL_NEWER:
                plan.append((slot_number, OperationType.BACKUP))
            elif status == SyncStatus.CLOUD_NEWER:
                plan.append((slot_number, OperationType.RESTORE))
            elif status == SyncStatus.CONFLICT:
                report.conflicts.append(slot_number)
        return plan

    def _retry_status(self, slot: SaveSlot) -> SyncStatus | None:
        """
        Status to act on when retrying a failed slot, or None to defer it.

        The copies as last read decide the direction; the failed direction
        is only reused when they show nothing left to transfer.
        """
        if slot.last_direction not in RETRYABLE_DIRECTIONS:
            return None
        current = classify(slot.local, slot.remote, self.registry.tolerance)
        if current == SyncStatus.EMPTY:
            return None
        if current == SyncStatus.SYNCED:
            # Retrying finds nothing to copy and clears the failure
            if slot.last_direction == OperationType.BACKUP:
                return SyncStatus.LOCAL_NEWER
            return SyncStatus.CLOUD_NEWER
        return current

    async def _run_batch(self, kind: str, options: SyncOptions) -> SyncReport:
        channel = self._sink(options.progress)
        report = SyncReport()

        slots = self.registry.snapshot()
        if options.slots is not None:
            for slot_number in options.slots:
                self.registry.validate(slot_number)
            slots = {n: s for n, s in slots.items() if n in options.slots}

        plan = self._plan(slots, report)
        total = len(plan)
        logger.info(
            f"Starting {kind.replace('_', ' ')}: {total} slot(s) to sync, "
            f"{len(report.conflicts)} conflict(s), {len(report.deferred)} deferred"
        )
        if channel is not None:
            channel.emit(None, "start", 0, f"Syncing {total} slot(s)", kind)

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        completed = 0

        async def run(slot_number: int, op_type: OperationType) -> None:
            nonlocal completed
            async with semaphore:
                if options.cancel is not None and options.cancel.cancelled:
                    report.cancelled.append(slot_number)
                    return

                action = self.transfer.backup if op_type == OperationType.BACKUP else self.transfer.restore
                operation, _ = await self._perform(op_type, slot_number, action, None)

                report.operations[slot_number] = operation
                if operation.error is not None:
                    report.failures[slot_number] = operation.error
                    logger.warning(f"{op_type.label} of slot {slot_number} failed: {operation.error}")

                completed += 1
                if channel is not None:
                    failed = operation.error is not None
                    channel.emit(
                        slot_number,
                        "slot_failed" if failed else "slot_complete",
                        completed * 100 // total,
                        f"{op_type.label} of slot {slot_number} "
                        f"{'failed' if failed else 'done'} ({completed}/{total})",
                        kind,
                    )

        await asyncio.gather(*(run(n, op_type) for n, op_type in plan))

        report.finished_at = datetime.now(timezone.utc)
        if channel is not None:
            channel.emit(None, "complete", 100, self._summary(report), kind)

        logger.info(f"Finished {kind.replace('_', ' ')}: {self._summary(report)}")
        await self._journal(kind, report)
        return report

    @staticmethod
    def _summary(report: SyncReport) -> str:
        parts = [f"{len(report.synced_slots)} synced", f"{len(report.failures)} failed"]
        if report.conflicts:
            parts.append(f"{len(report.conflicts)} conflict(s)")
        if report.deferred:
            parts.append(f"{len(report.deferred)} deferred")
        if report.cancelled:
            parts.append(f"{len(report.cancelled)} cancelled")
        return ", ".join(parts)

    # Plumbing

    @staticmethod
    def _coerce(options_class, options):
        if options is None:
            return options_class()
        if isinstance(options, options_class):
            return options
        return options_class.from_mapping(options)

    def _sink(self, channel: ProgressChannel | None) -> ProgressChannel | None:
        return channel if channel is not None else self.progress

    @asynccontextmanager
    async def _claim(self, slot_number: int):
        if slot_number in self._in_flight:
            raise OperationInProgress("Another operation is already running for this slot", slot_number)
        self._in_flight.add(slot_number)
        try:
            yield
        finally:
            self._in_flight.discard(slot_number)

    async def _perform(
        self,
        op_type: OperationType,
        slot_number: int,
        action: Action,
        channel: ProgressChannel | None,
    ) -> tuple[SyncOperation, SlotOutcome | None]:
        """
        Run one single-slot action under the slot's in-flight marker.

        Never raises for failures of the action itself: the error is
        stored on the returned operation and the slot marked failed when
        the error calls for it.
        """
        self.registry.validate(slot_number)
        operation = SyncOperation(type=op_type, slot_number=slot_number)
        progress = SlotProgress(channel, operation)
        outcome = None

        try:
            async with self._claim(slot_number):
                operation.start()
                progress("start", 0, f"Starting {op_type.label.lower()}")
                outcome = await action(slot_number, progress=progress)
                if outcome.settled:
                    await self.registry.record_success(
                        slot_number, outcome.local, outcome.remote, op_type
                    )
                operation.complete(outcome.bytes_transferred, outcome.skipped)
                progress("complete", 100, "Already up to date" if outcome.skipped else "Done")
        except SyncError as e:
            e.for_slot(slot_number)
            operation.fail(e)
            await self.registry.record_failure(slot_number, e, op_type)
            progress("failed", operation.progress_percent, str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error during {op_type.label.lower()} of slot {slot_number}: {e}",
                exc_info=True,
            )
            operation.fail(e)
            await self.registry.record_failure(slot_number, e, op_type)
            progress("failed", operation.progress_percent, str(e))

        return operation, outcome

    @staticmethod
    def _result(operation: SyncOperation) -> SyncOperation:
        if operation.error is not None:
            raise operation.error
        return operation

    async def _journal_single(self, operation: SyncOperation) -> None:
        report = SyncReport(started_at=operation.started_at or datetime.now(timezone.utc))
        report.operations[operation.slot_number] = operation
        if operation.error is not None:
            report.failures[operation.slot_number] = operation.error
        report.finished_at = operation.finished_at
        await self._journal(str(operation.type), report)

    async def _journal(self, kind: str, report: SyncReport) -> None:
        if self.journal is None:
            return
        try:
            await self.journal.record(kind, report, self.registry.snapshot())
        except Exception as e:
            logger.error(f"Failed to record {kind} in the sync journal: {e}", exc_info=True)
