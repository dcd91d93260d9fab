"""
Django management command to show the sync state of every save slot.
"""

import json

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand

from savesync.services import build_orchestrator
from savesync.sync.exceptions import SyncError


def _summary(player_summary: dict) -> str:
    return ", ".join(f"{key}={value}" for key, value in sorted(player_summary.items()))


class Command(BaseCommand):
    help = "List save slots with their local and cloud state"

    def add_arguments(self, parser):
        parser.add_argument(
            "--offline",
            action="store_true",
            help="Do not contact cloud storage",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output as JSON",
        )

    def handle(self, *args, **options):
        orchestrator = build_orchestrator(online=not options["offline"])
        slots = async_to_sync(orchestrator.refresh)()

        quota = None
        if orchestrator.gateway.is_available():
            try:
                quota = async_to_sync(orchestrator.quota_usage)()
            except SyncError as e:
                self.stderr.write(self.style.WARNING(f"Could not read cloud quota: {e}"))

        if options["json"]:
            self.stdout.write(
                json.dumps(
                    {
                        "slots": [slot.to_dict() for _, slot in sorted(slots.items())],
                        "quota": quota.to_dict() if quota else None,
                    },
                    indent=2,
                )
            )
            return

        self.stdout.write(f"{'Slot':<6}{'Status':<14}{'Local':<28}{'Cloud':<28}Summary")
        self.stdout.write("-" * 90)
        for slot_number, slot in sorted(slots.items()):
            local = slot.local.last_modified.strftime("%Y-%m-%d %H:%M:%S") if slot.local else "-"
            cloud = slot.remote.last_modified.strftime("%Y-%m-%d %H:%M:%S") if slot.remote else "-"
            if slot.remote_stale and slot.remote:
                cloud += " (stale)"
            favorite = "*" if slot.metadata and slot.metadata.is_favorite else " "
            summary = _summary(slot.metadata.player_summary) if slot.metadata else ""
            self.stdout.write(
                f"{slot_number:<5}{favorite}{slot.status.label:<14}{local:<28}{cloud:<28}{summary}"
            )

        if quota is None:
            self.stdout.write("\nCloud storage: unavailable")
        elif quota.unlimited:
            self.stdout.write(f"\nCloud storage: {quota.used_bytes:,} bytes used (no limit)")
        else:
            self.stdout.write(
                f"\nCloud storage: {quota.used_bytes:,} of {quota.total_bytes:,} bytes used "
                f"({quota.percentage:.1f}%, {quota.level.label.lower()})"
            )
