"""
Wiring for the sync engine.

Builds an orchestrator over the database-backed local store and the
Google Drive store using the project settings.
"""

from __future__ import annotations

import logging

from savesync.conf import SyncSettings, get_sync_settings
from savesync.storage import SaveBlobStorage
from savesync.stores.base import RemoteStore
from savesync.stores.local import DatabaseSlotStore
from savesync.sync.engine import SyncOrchestrator
from savesync.sync.journal import DjangoSyncJournal
from savesync.sync.progress import ProgressChannel

logger = logging.getLogger(__name__)


def build_local_store(config: SyncSettings | None = None) -> DatabaseSlotStore:
    config = config or get_sync_settings()
    return DatabaseSlotStore(SaveBlobStorage(config.root))


def build_remote_store(config: SyncSettings | None = None, online: bool = True) -> RemoteStore:
    from savesync.stores.drive import DriveSlotStore

    config = config or get_sync_settings()
    return DriveSlotStore(profile=config.profile, online=online, compress=config.compress_uploads)


def build_orchestrator(
    remote: RemoteStore | None = None,
    progress: ProgressChannel | None = None,
    online: bool = True,
    config: SyncSettings | None = None,
) -> SyncOrchestrator:
    """
    Create an orchestrator for the configured profile.

    Args:
        remote: Remote store to use instead of Google Drive
        progress: Default progress channel for operations
        online: Whether the remote may be contacted at all
    """
    config = config or get_sync_settings()
    local = build_local_store(config)
    if remote is None:
        remote = build_remote_store(config, online=online)

    logger.debug(f"Building orchestrator for profile {config.profile!r} ({remote.name})")
    return SyncOrchestrator(
        local,
        remote,
        config=config,
        journal=DjangoSyncJournal(),
        progress=progress,
    )
