"""
Celery tasks for background save syncing.
"""

import logging

from asgiref.sync import async_to_sync
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def auto_sync_task(slots: list[int] | None = None):
    """
    Sync save slots in the background.

    Each run starts from a fresh orchestrator with nothing cached, so it
    always runs a full sync. Failed slots are reported, not retried;
    the next run picks them up again.

    Args:
        slots: Restrict the sync to these slot numbers
    """
    from savesync.services import build_orchestrator
    from savesync.sync.operations import SyncOptions

    orchestrator = build_orchestrator()
    if not orchestrator.gateway.is_available():
        logger.info("Skipping auto sync: cloud storage unavailable")
        return {"status": "skipped", "reason": "remote_unavailable"}

    options = SyncOptions(slots=frozenset(slots) if slots else None)
    report = async_to_sync(orchestrator.full_sync)(options)

    if report.success:
        logger.info(f"Auto sync finished: {len(report.synced_slots)} slot(s) synced")
    else:
        logger.warning(
            f"Auto sync finished with {len(report.failures)} failure(s): "
            f"slots {sorted(report.failures)}"
        )

    return {"status": "completed" if report.success else "partial", **report.to_dict()}
