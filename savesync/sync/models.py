"""
Models for auditing sync operations.
"""

from django.db import models

from savesync.sync.operations import OperationType
from savesync.sync.slots import SyncStatus


class SyncSession(models.Model):
    """
    Records each orchestrated operation for audit and display.

    A single-slot operation produces a session with one event; a batch
    sync produces one event per slot it touched.
    """

    KIND_CHOICES = [
        ("backup", "Backup"),
        ("restore", "Restore"),
        ("resolve", "Resolve"),
        ("delete", "Delete"),
        ("import", "Import"),
        ("quick_sync", "Quick Sync"),
        ("full_sync", "Full Sync"),
    ]

    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=[
            ("running", "Running"),
            ("completed", "Completed"),
            ("failed", "Failed"),
            ("partial", "Partial Success"),
        ],
        default="running",
    )

    # Statistics
    slots_synced = models.PositiveIntegerField(default=0)
    slots_failed = models.PositiveIntegerField(default=0)
    conflicts = models.PositiveIntegerField(default=0)
    bytes_transferred = models.BigIntegerField(default=0)

    error_message = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["kind", "-started_at"]),
            models.Index(fields=["status"]),
        ]
        ordering = ["-started_at"]

    def __str__(self):
        return f"{self.get_kind_display()} - {self.get_status_display()}"


class SyncEvent(models.Model):
    """
    Outcome for one slot within a session.

    ``previous_status`` is kept for undo display only; the engine never
    rolls back on its own.
    """

    session = models.ForeignKey(
        SyncSession, on_delete=models.CASCADE, related_name="events"
    )
    timestamp = models.DateTimeField(auto_now_add=True)

    slot_number = models.PositiveSmallIntegerField()
    operation = models.CharField(max_length=20, choices=OperationType.choices)
    event_type = models.CharField(
        max_length=20,
        choices=[
            ("completed", "Completed"),
            ("skipped", "Skipped"),
            ("failed", "Failed"),
            ("conflict", "Conflict"),
            ("cancelled", "Cancelled"),
        ],
    )
    previous_status = models.CharField(max_length=20, choices=SyncStatus.choices, blank=True)
    new_status = models.CharField(max_length=20, choices=SyncStatus.choices, blank=True)
    error_kind = models.CharField(max_length=40, blank=True)
    message = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["session", "timestamp"]),
            models.Index(fields=["slot_number", "timestamp"]),
        ]
        ordering = ["timestamp"]

    def __str__(self):
        return f"Slot {self.slot_number}: {self.get_event_type_display()}"
