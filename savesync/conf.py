"""
Settings for the save sync engine.

Every value can be overridden from the Django settings module; anything
not set there falls back to the defaults below.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

DEFAULT_SLOT_COUNT = 10
DEFAULT_CLOCK_SKEW_TOLERANCE = 5  # seconds
DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_NETWORK_TIMEOUT = 30.0  # seconds
DEFAULT_PROGRESS_BUFFER = 32
DEFAULT_MAX_SAVE_SIZE = 50 * 1024 * 1024
DEFAULT_QUOTA_WARNING_PERCENT = 75.0
DEFAULT_QUOTA_CRITICAL_PERCENT = 90.0


@dataclass(frozen=True)
class SyncSettings:
    """Resolved sync configuration."""

    root: Path
    secrets_file: Path
    profile: str = "default"
    slot_count: int = DEFAULT_SLOT_COUNT
    clock_skew_tolerance: timedelta = timedelta(seconds=DEFAULT_CLOCK_SKEW_TOLERANCE)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    network_timeout: float = DEFAULT_NETWORK_TIMEOUT
    progress_buffer: int = DEFAULT_PROGRESS_BUFFER
    max_save_size: int = DEFAULT_MAX_SAVE_SIZE
    quota_warning_percent: float = DEFAULT_QUOTA_WARNING_PERCENT
    quota_critical_percent: float = DEFAULT_QUOTA_CRITICAL_PERCENT
    compress_uploads: bool = True


def _default_root() -> Path:
    base_dir = getattr(settings, "BASE_DIR", None)
    if base_dir is None:
        return Path.cwd() / "savesync_data"
    return Path(base_dir) / "savesync_data"


def get_sync_settings() -> SyncSettings:
    """
    Build SyncSettings from Django settings.

    Raises:
        ImproperlyConfigured: If a value is out of range
    """
    root = Path(getattr(settings, "SAVESYNC_ROOT", None) or _default_root())
    secrets_file = getattr(settings, "SAVESYNC_SECRETS_FILE", None) or root / ".secrets.json"

    tolerance = getattr(settings, "SAVESYNC_CLOCK_SKEW_TOLERANCE", DEFAULT_CLOCK_SKEW_TOLERANCE)
    if not isinstance(tolerance, timedelta):
        tolerance = timedelta(seconds=float(tolerance))

    config = SyncSettings(
        root=root,
        secrets_file=Path(secrets_file),
        profile=getattr(settings, "SAVESYNC_PROFILE", "default"),
        slot_count=int(getattr(settings, "SAVESYNC_SLOT_COUNT", DEFAULT_SLOT_COUNT)),
        clock_skew_tolerance=tolerance,
        max_concurrency=int(getattr(settings, "SAVESYNC_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)),
        network_timeout=float(getattr(settings, "SAVESYNC_NETWORK_TIMEOUT", DEFAULT_NETWORK_TIMEOUT)),
        progress_buffer=int(getattr(settings, "SAVESYNC_PROGRESS_BUFFER", DEFAULT_PROGRESS_BUFFER)),
        max_save_size=int(getattr(settings, "SAVESYNC_MAX_SAVE_SIZE", DEFAULT_MAX_SAVE_SIZE)),
        quota_warning_percent=float(
            getattr(settings, "SAVESYNC_QUOTA_WARNING_PERCENT", DEFAULT_QUOTA_WARNING_PERCENT)
        ),
        quota_critical_percent=float(
            getattr(settings, "SAVESYNC_QUOTA_CRITICAL_PERCENT", DEFAULT_QUOTA_CRITICAL_PERCENT)
        ),
        compress_uploads=bool(getattr(settings, "SAVESYNC_COMPRESS_UPLOADS", True)),
    )

    if config.slot_count < 1:
        raise ImproperlyConfigured("SAVESYNC_SLOT_COUNT must be at least 1")
    if config.max_concurrency < 1:
        raise ImproperlyConfigured("SAVESYNC_MAX_CONCURRENCY must be at least 1")
    if config.clock_skew_tolerance < timedelta(0):
        raise ImproperlyConfigured("SAVESYNC_CLOCK_SKEW_TOLERANCE cannot be negative")
    if config.network_timeout <= 0:
        raise ImproperlyConfigured("SAVESYNC_NETWORK_TIMEOUT must be positive")
    if config.progress_buffer < 1:
        raise ImproperlyConfigured("SAVESYNC_PROGRESS_BUFFER must be at least 1")
    if not 0 < config.quota_warning_percent <= config.quota_critical_percent <= 100:
        raise ImproperlyConfigured(
            "Quota thresholds must satisfy 0 < warning <= critical <= 100"
        )

    return config
