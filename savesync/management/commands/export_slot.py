"""
Django management command to export a save slot to a file.
"""

from pathlib import Path

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from savesync.services import build_orchestrator
from savesync.sync.exceptions import SyncError


class Command(BaseCommand):
    help = "Export the local save in a slot to a portable file"

    def add_arguments(self, parser):
        parser.add_argument("slot", type=int, help="Slot number to export")
        parser.add_argument("path", type=Path, help="File to write")

    def handle(self, *args, **options):
        orchestrator = build_orchestrator(online=False)

        try:
            blob = async_to_sync(orchestrator.export_slot)(options["slot"])
        except (SyncError, ValueError) as e:
            raise CommandError(f"Export failed: {e}")

        try:
            options["path"].write_bytes(blob)
        except OSError as e:
            raise CommandError(f"Could not write {options['path']}: {e}")

        self.stdout.write(
            self.style.SUCCESS(f"Exported slot {options['slot']} to {options['path']} ({len(blob):,} bytes)")
        )
