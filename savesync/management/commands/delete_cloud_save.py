"""
Django management command to delete a cloud save.
"""

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from savesync.services import build_orchestrator
from savesync.sync.exceptions import PartialFailure, SyncError


class Command(BaseCommand):
    help = "Delete the cloud copy of a save slot"

    def add_arguments(self, parser):
        parser.add_argument("slot", type=int, help="Slot number")
        parser.add_argument(
            "--also-local",
            action="store_true",
            help="Delete the save on this device as well",
        )
        parser.add_argument(
            "--yes",
            action="store_true",
            help="Confirm the deletion",
        )

    def handle(self, *args, **options):
        slot_number = options["slot"]
        what = "cloud and local saves" if options["also_local"] else "cloud save"

        if not options["yes"]:
            raise CommandError(f"This permanently deletes the {what} in slot {slot_number}; pass --yes to confirm")

        orchestrator = build_orchestrator()

        async def run():
            await orchestrator.refresh({slot_number})
            return await orchestrator.delete_cloud_save(
                slot_number, also_delete_local=options["also_local"]
            )

        try:
            async_to_sync(run)()
        except PartialFailure as e:
            raise CommandError(f"{e}\nRun the command again to retry the {', '.join(e.failed)} delete")
        except (SyncError, ValueError) as e:
            raise CommandError(f"Delete failed: {e}")

        self.stdout.write(self.style.SUCCESS(f"Deleted the {what} in slot {slot_number}"))
