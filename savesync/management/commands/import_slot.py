"""
Django management command to import a save file into a slot.
"""

from pathlib import Path

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from savesync.services import build_orchestrator
from savesync.sync.exceptions import SyncError


class Command(BaseCommand):
    help = "Import an exported save file into a local slot"

    def add_arguments(self, parser):
        parser.add_argument("path", type=Path, help="Exported save file")
        parser.add_argument("slot", type=int, help="Slot number to import into")
        parser.add_argument(
            "--offline",
            action="store_true",
            help="Do not contact cloud storage",
        )

    def handle(self, *args, **options):
        try:
            blob = options["path"].read_bytes()
        except OSError as e:
            raise CommandError(f"Could not read {options['path']}: {e}")

        orchestrator = build_orchestrator(online=not options["offline"])
        slot_number = options["slot"]

        async def run():
            await orchestrator.refresh({slot_number})
            await orchestrator.import_slot(blob, slot_number)
            return orchestrator.slot(slot_number)

        try:
            slot = async_to_sync(run)()
        except (SyncError, ValueError) as e:
            raise CommandError(f"Import failed: {e}")

        self.stdout.write(
            self.style.SUCCESS(f"Imported {options['path']} into slot {slot_number} ({slot.status.label})")
        )
