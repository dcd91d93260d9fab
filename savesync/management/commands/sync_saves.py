"""
Django management command to sync save slots with the cloud.
"""

import asyncio
import json

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from savesync.conf import get_sync_settings
from savesync.services import build_orchestrator
from savesync.sync.operations import SyncOptions
from savesync.sync.progress import ProgressChannel


class Command(BaseCommand):
    help = "Refresh every save slot from both stores and sync the ones that differ"

    def add_arguments(self, parser):
        parser.add_argument(
            "--slot",
            type=int,
            action="append",
            dest="slots",
            help="Only sync this slot (repeatable)",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the sync report as JSON",
        )

    def handle(self, *args, **options):
        config = get_sync_settings()
        orchestrator = build_orchestrator(config=config)

        if not orchestrator.gateway.is_available():
            raise CommandError("Cloud storage is unavailable; run connect_drive to sign in")

        try:
            report = async_to_sync(self._sync)(
                orchestrator, options["slots"], config.progress_buffer, not options["json"]
            )
        except ValueError as e:
            raise CommandError(str(e))

        if options["json"]:
            self.stdout.write(json.dumps(report.to_dict(), indent=2))
            return

        style = self.style.SUCCESS if report.success else self.style.WARNING
        self.stdout.write(
            style(
                f"\nSync finished in {report.duration:.1f}s:\n"
                f"  - Slots synced: {len(report.synced_slots)}\n"
                f"  - Failures: {len(report.failures)}\n"
                f"  - Conflicts: {len(report.conflicts)}\n"
                f"  - Bytes transferred: {report.bytes_transferred:,}"
            )
        )

        for slot_number, error in sorted(report.failures.items()):
            self.stdout.write(self.style.ERROR(f"  Slot {slot_number}: {error}"))
        if report.conflicts:
            slots = ", ".join(str(n) for n in report.conflicts)
            self.stdout.write(
                self.style.WARNING(f"  Resolve conflicts with resolve_slot for slot(s) {slots}")
            )

    async def _sync(self, orchestrator, slots, buffer_size, show_progress):
        channel = ProgressChannel(buffer_size)

        async def show():
            async for event in channel:
                if show_progress:
                    self.stdout.write(f"  [{event.percent:3d}%] {event.message}")

        consumer = asyncio.create_task(show())
        try:
            return await orchestrator.full_sync(
                SyncOptions(progress=channel, slots=frozenset(slots) if slots else None)
            )
        finally:
            channel.close()
            await consumer
