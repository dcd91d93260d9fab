"""
Audit journal for sync operations.

The orchestrator hands every finished operation to a journal. The
Django journal stores it as a SyncSession with one SyncEvent per slot.
"""

from __future__ import annotations

import logging

from asgiref.sync import sync_to_async
from django.db import transaction
from django.utils import timezone

from savesync.sync.operations import OperationStatus, OperationType, SyncReport
from savesync.sync.slots import SaveSlot, SyncStatus

logger = logging.getLogger(__name__)


class SyncJournal:
    """Journal that records nothing."""

    async def record(self, kind: str, report: SyncReport, slots: dict[int, SaveSlot]) -> None:
        pass


def _planned_operation(slot: SaveSlot | None) -> str:
    """The operation a batch sync would have run for a slot it did not run."""
    if slot is None:
        return OperationType.BACKUP
    if slot.status == SyncStatus.CLOUD_NEWER:
        return OperationType.RESTORE
    if slot.status == SyncStatus.SYNC_FAILED and slot.last_direction:
        return slot.last_direction
    return OperationType.BACKUP


def _session_status(report: SyncReport) -> str:
    if not report.failures:
        return "completed"
    if report.synced_slots:
        return "partial"
    return "failed"


class DjangoSyncJournal(SyncJournal):
    """Writes SyncSession/SyncEvent rows."""

    async def record(self, kind: str, report: SyncReport, slots: dict[int, SaveSlot]) -> None:
        await sync_to_async(self._record)(kind, report, slots)

    @transaction.atomic
    def _record(self, kind: str, report: SyncReport, slots: dict[int, SaveSlot]):
        from savesync.sync.models import SyncEvent, SyncSession

        errors = [str(error) for _, error in sorted(report.failures.items())]
        session = SyncSession.objects.create(
            kind=kind,
            started_at=report.started_at,
            completed_at=report.finished_at or timezone.now(),
            status=_session_status(report),
            slots_synced=len(report.synced_slots),
            slots_failed=len(report.failures),
            conflicts=len(report.conflicts),
            bytes_transferred=report.bytes_transferred,
            error_message="\n".join(errors),
        )

        events = []
        for slot_number, operation in sorted(report.operations.items()):
            slot = slots.get(slot_number)
            error = operation.error
            if operation.status == OperationStatus.FAILED:
                event_type = "failed"
            elif operation.skipped:
                event_type = "skipped"
            else:
                event_type = "completed"
            events.append(
                SyncEvent(
                    session=session,
                    slot_number=slot_number,
                    operation=operation.type,
                    event_type=event_type,
                    previous_status=(slot.previous_status or "") if slot else "",
                    new_status=slot.status if slot else "",
                    error_kind=getattr(error, "kind", type(error).__name__) if error else "",
                    message=str(error) if error else "",
                )
            )

        for slot_number, event_type in (
            *((n, "conflict") for n in report.conflicts),
            *((n, "skipped") for n in report.deferred),
            *((n, "cancelled") for n in report.cancelled),
        ):
            slot = slots.get(slot_number)
            events.append(
                SyncEvent(
                    session=session,
                    slot_number=slot_number,
                    operation=(
                        OperationType.RESOLVE if event_type == "conflict" else _planned_operation(slot)
                    ),
                    event_type=event_type,
                    previous_status=slot.status if slot else "",
                    new_status=slot.status if slot else "",
                )
            )

        SyncEvent.objects.bulk_create(events)
        logger.debug(f"Journaled {kind} session {session.id} with {len(events)} event(s)")
        return session
