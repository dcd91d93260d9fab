"""
Django management command to sign a profile in to Google Drive.
"""

from django.core.management.base import BaseCommand, CommandError

from savesync import secrets
from savesync.conf import get_sync_settings
from savesync.sync.exceptions import SyncError


class Command(BaseCommand):
    help = "Sign in to Google Drive for cloud saves"

    def add_arguments(self, parser):
        parser.add_argument(
            "--no-browser",
            action="store_true",
            help="Print the sign-in URL instead of opening a browser",
        )
        parser.add_argument(
            "--disconnect",
            action="store_true",
            help="Forget the stored tokens instead",
        )

    def handle(self, *args, **options):
        profile = get_sync_settings().profile

        if options["disconnect"]:
            if secrets.delete_tokens(profile):
                self.stdout.write(self.style.SUCCESS(f"Signed profile {profile!r} out of Google Drive"))
            else:
                self.stdout.write(self.style.WARNING(f"Profile {profile!r} was not signed in"))
            return

        from savesync.stores.drive import sign_in

        self.stdout.write(f"Signing profile {profile!r} in to Google Drive...")
        try:
            sign_in(profile, open_browser=not options["no_browser"])
        except SyncError as e:
            raise CommandError(
                f"{e}\n\nSet GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in settings,\n"
                "or add them to the secrets file under oauth_clients.google"
            )

        self.stdout.write(self.style.SUCCESS("Signed in; cloud saves are available"))
