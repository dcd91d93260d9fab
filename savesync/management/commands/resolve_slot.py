"""
Django management command to resolve a save slot conflict.
"""

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from savesync.services import build_orchestrator
from savesync.sync.exceptions import SyncError
from savesync.sync.operations import PendingManualChoice, ResolutionPolicy


class Command(BaseCommand):
    help = "Resolve a slot whose local and cloud saves differ"

    def add_arguments(self, parser):
        parser.add_argument("slot", type=int, help="Slot number to resolve")
        parser.add_argument(
            "--policy",
            choices=ResolutionPolicy.values,
            default=ResolutionPolicy.MANUAL,
            help="Which copy to keep (default: manual, which only shows both)",
        )

    def handle(self, *args, **options):
        orchestrator = build_orchestrator()
        slot_number = options["slot"]

        async def run():
            await orchestrator.refresh({slot_number})
            return await orchestrator.resolve(slot_number, options["policy"])

        try:
            result = async_to_sync(run)()
        except (SyncError, ValueError) as e:
            raise CommandError(f"Resolve failed: {e}")

        if isinstance(result, PendingManualChoice):
            self.stdout.write(f"Slot {slot_number} is {result.status.label}:")
            for side, metadata in (("local", result.local), ("cloud", result.remote)):
                if metadata is None:
                    self.stdout.write(f"  {side:<6} (none)")
                else:
                    self.stdout.write(
                        f"  {side:<6} modified {metadata.last_modified.isoformat()}, "
                        f"{metadata.size_bytes:,} bytes"
                    )
            self.stdout.write("Run again with --policy keep_local or --policy keep_cloud to choose.")
            return

        self.stdout.write(
            self.style.SUCCESS(
                f"Slot {slot_number} resolved: kept the {result.winner} copy "
                f"(was {result.previous_status.label})"
            )
        )
