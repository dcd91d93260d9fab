from django.db import models


class LocalSaveSlot(models.Model):
    """
    Local copy of a save slot.

    The payload itself lives in blob storage under ``digest``; this row
    holds the metadata the sync engine compares against the cloud copy.
    """

    slot_number = models.PositiveSmallIntegerField(unique=True)
    digest = models.CharField(max_length=71)  # sha256:<64 hex chars>
    # Comparison token; differs from digest when the save came from a
    # cloud file that carried no checksum of its own
    checksum = models.CharField(max_length=255)
    size_bytes = models.BigIntegerField()
    last_modified = models.DateTimeField()
    player_summary = models.JSONField(default=dict, blank=True)
    is_favorite = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["slot_number"]
        indexes = [
            models.Index(fields=["digest"]),
        ]

    def __str__(self):
        return f"Slot {self.slot_number} ({self.digest[:20]}...)"


# Audit models live with the sync engine
from savesync.sync.models import SyncEvent, SyncSession  # noqa: E402,F401
