"""
Remote storage quota tracking.

Usage comes from the remote store's own accounting rather than from
summing local slot sizes, since the remote may compress or add
per-object overhead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from django.db import models

from savesync.conf import DEFAULT_QUOTA_CRITICAL_PERCENT, DEFAULT_QUOTA_WARNING_PERCENT
from savesync.sync.exceptions import QuotaExceeded
from savesync.sync.gateway import RemoteGateway

logger = logging.getLogger(__name__)


class QuotaLevel(models.TextChoices):
    NORMAL = "normal", "Normal"
    WARNING = "warning", "Warning"
    CRITICAL = "critical", "Critical"
    EXCEEDED = "exceeded", "Exceeded"


@dataclass(frozen=True)
class QuotaUsage:
    used_bytes: int
    total_bytes: int | None
    remaining_bytes: int | None
    percentage: float
    level: QuotaLevel
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def unlimited(self) -> bool:
        return self.total_bytes is None

    def allows(self, size_bytes: int) -> bool:
        return self.remaining_bytes is None or self.remaining_bytes >= size_bytes

    def to_dict(self) -> dict:
        return {
            "used_bytes": self.used_bytes,
            "total_bytes": self.total_bytes,
            "remaining_bytes": self.remaining_bytes,
            "percentage": round(self.percentage, 2),
            "level": str(self.level),
        }


class QuotaTracker:
    """Reports consumed vs. available remote storage."""

    def __init__(
        self,
        gateway: RemoteGateway,
        warning_percent: float = DEFAULT_QUOTA_WARNING_PERCENT,
        critical_percent: float = DEFAULT_QUOTA_CRITICAL_PERCENT,
    ):
        self.gateway = gateway
        self.warning_percent = warning_percent
        self.critical_percent = critical_percent
        self.last_usage: QuotaUsage | None = None

    def _level(self, percentage: float, remaining: int | None) -> QuotaLevel:
        if remaining is not None and remaining <= 0:
            return QuotaLevel.EXCEEDED
        if percentage >= self.critical_percent:
            return QuotaLevel.CRITICAL
        if percentage >= self.warning_percent:
            return QuotaLevel.WARNING
        return QuotaLevel.NORMAL

    async def current_usage(self) -> QuotaUsage:
        """
        Query the remote store for current usage.

        Raises:
            RemoteUnavailable: If the remote is offline or the call fails
        """
        quota = await self.gateway.quota()

        if quota.total_bytes is None:
            remaining = None
            percentage = 0.0
        else:
            remaining = max(quota.total_bytes - quota.used_bytes, 0)
            percentage = (quota.used_bytes / quota.total_bytes * 100) if quota.total_bytes else 100.0

        usage = QuotaUsage(
            used_bytes=quota.used_bytes,
            total_bytes=quota.total_bytes,
            remaining_bytes=remaining,
            percentage=percentage,
            level=self._level(percentage, remaining),
        )

        previous = self.last_usage.level if self.last_usage else QuotaLevel.NORMAL
        if usage.level != QuotaLevel.NORMAL and usage.level != previous:
            logger.warning(
                f"Cloud storage quota {usage.level.label.lower()}: "
                f"{usage.used_bytes:,} of {usage.total_bytes:,} bytes used ({usage.percentage:.1f}%)"
            )

        self.last_usage = usage
        return usage

    async def ensure_capacity(self, size_bytes: int, slot_number: int | None = None) -> QuotaUsage:
        """
        Pre-flight check before an upload.

        Raises:
            QuotaExceeded: If the remaining space is smaller than size_bytes
        """
        usage = await self.current_usage()
        if not usage.allows(size_bytes):
            raise QuotaExceeded(
                f"Not enough cloud storage: need {size_bytes:,} bytes, "
                f"{usage.remaining_bytes:,} remaining",
                slot_number,
                required_bytes=size_bytes,
                remaining_bytes=usage.remaining_bytes,
            )
        return usage
