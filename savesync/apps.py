import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class SaveSyncConfig(AppConfig):
    name = "savesync"
    verbose_name = "Save Sync"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        """
        Run when Django app is ready.

        Validates the sync settings once so a bad value fails at startup
        instead of in the middle of a sync.
        """
        from savesync.conf import get_sync_settings

        config = get_sync_settings()
        logger.debug(
            f"Save sync ready: {config.slot_count} slots, "
            f"tolerance={config.clock_skew_tolerance.total_seconds()}s, "
            f"concurrency={config.max_concurrency}"
        )
