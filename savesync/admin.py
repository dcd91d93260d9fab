from django.contrib import admin

from .models import LocalSaveSlot
from .sync.models import SyncEvent, SyncSession


@admin.register(LocalSaveSlot)
class LocalSaveSlotAdmin(admin.ModelAdmin):
    list_display = ["slot_number", "size_bytes", "last_modified", "is_favorite", "updated_at"]
    list_filter = ["is_favorite"]
    search_fields = ["digest"]
    readonly_fields = ["digest", "checksum", "size_bytes", "created_at", "updated_at"]


class SyncEventInline(admin.TabularInline):
    model = SyncEvent
    extra = 0
    readonly_fields = [
        "timestamp",
        "slot_number",
        "operation",
        "event_type",
        "previous_status",
        "new_status",
        "error_kind",
        "message",
    ]
    can_delete = False


@admin.register(SyncSession)
class SyncSessionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "kind",
        "status",
        "started_at",
        "completed_at",
        "slots_synced",
        "slots_failed",
        "conflicts",
        "bytes_transferred",
    ]
    list_filter = ["kind", "status"]
    readonly_fields = ["started_at", "completed_at"]
    inlines = [SyncEventInline]


@admin.register(SyncEvent)
class SyncEventAdmin(admin.ModelAdmin):
    list_display = ["session", "slot_number", "operation", "event_type", "new_status", "timestamp"]
    list_filter = ["operation", "event_type", "error_kind"]
    search_fields = ["message"]
    raw_id_fields = ["session"]
