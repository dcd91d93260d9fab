"""Tests for the Google Drive slot store."""

import json
import zlib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, override_settings
from googleapiclient.errors import HttpError

from savesync.stores.drive import (
    APP_DATA_FOLDER,
    DriveSlotStore,
    _client_config,
    _file_body,
    _file_metadata,
    decode_payload,
    encode_payload,
    parse_slot_file_name,
    slot_file_name,
    translate_http_error,
)
from savesync.sync.exceptions import (
    NotFound,
    QuotaExceeded,
    RemoteRejected,
    RemoteUnavailable,
)
from savesync.sync.slots import SlotMetadata

T0 = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


def http_error(status, reason=None):
    errors = [{"reason": reason}] if reason else []
    content = json.dumps({"error": {"code": status, "errors": errors}}).encode()
    return HttpError(resp=MagicMock(status=status), content=content)


def drive_file(file_id="file123", **props):
    return {
        "id": file_id,
        "name": "slot-2.sav",
        "size": "7",
        "modifiedTime": "2024-01-15T10:31:00.000Z",
        "appProperties": {
            "slotNumber": "2",
            "checksum": "sha256:" + "a" * 64,
            "lastModified": "2024-01-15T10:30:00+00:00",
            "sizeBytes": "7",
            "isFavorite": "true",
            **props,
        },
        "description": json.dumps({"level": 12, "location": "Harbor"}),
    }


class SlotFileNameTests(SimpleTestCase):
    def test_round_trip(self):
        self.assertEqual(slot_file_name(3), "slot-3.sav")
        self.assertEqual(parse_slot_file_name("slot-3.sav"), 3)

    def test_unrelated_names(self):
        for name in ("notes.txt", "slot-x.sav", "slot-.sav", "slot-3.bak"):
            self.assertIsNone(parse_slot_file_name(name), name)


class TranslateHttpErrorTests(SimpleTestCase):
    def test_not_found(self):
        self.assertIsInstance(translate_http_error(http_error(404), 1), NotFound)

    def test_storage_quota(self):
        error = translate_http_error(http_error(403, "storageQuotaExceeded"), 1)
        self.assertIsInstance(error, QuotaExceeded)
        self.assertEqual(error.slot_number, 1)
        self.assertIn("storageQuotaExceeded", error.message)

    def test_rate_limited_is_unavailable(self):
        self.assertIsInstance(translate_http_error(http_error(429)), RemoteUnavailable)
        self.assertIsInstance(
            translate_http_error(http_error(403, "userRateLimitExceeded")), RemoteUnavailable
        )

    def test_server_error_is_unavailable(self):
        self.assertIsInstance(translate_http_error(http_error(503)), RemoteUnavailable)

    def test_other_errors_are_rejections(self):
        for status, reason in ((401, "authError"), (403, "insufficientPermissions"), (400, None)):
            error = translate_http_error(http_error(status, reason))
            self.assertIs(type(error), RemoteRejected, status)

    def test_unparseable_body(self):
        error = HttpError(resp=MagicMock(status=403), content=b"<html>Forbidden</html>")
        self.assertIs(type(translate_http_error(error)), RemoteRejected)


class FileMetadataTests(SimpleTestCase):
    def test_reads_app_properties(self):
        metadata = _file_metadata(drive_file())

        self.assertEqual(metadata.last_modified, T0)
        self.assertEqual(metadata.checksum, "sha256:" + "a" * 64)
        self.assertEqual(metadata.size_bytes, 7)
        self.assertEqual(metadata.player_summary, {"level": 12, "location": "Harbor"})
        self.assertTrue(metadata.is_favorite)

    def test_falls_back_to_drive_fields(self):
        data = {"id": "abc", "modifiedTime": "2024-01-15T10:31:00.000Z", "size": "42"}

        metadata = _file_metadata(data)

        self.assertEqual(metadata.checksum, "drive:abc:2024-01-15T10:31:00.000Z")
        self.assertEqual(metadata.size_bytes, 42)
        self.assertEqual(metadata.player_summary, {})
        self.assertFalse(metadata.is_favorite)

    def test_ignores_non_json_description(self):
        data = drive_file()
        data["description"] = "uploaded by hand"
        self.assertEqual(_file_metadata(data).player_summary, {})

    def test_file_body_round_trips_metadata(self):
        metadata = SlotMetadata(T0, "sha256:" + "b" * 64, 9, {"level": 3}, is_favorite=False)
        body = _file_body(2, metadata)

        self.assertEqual(body["name"], "slot-2.sav")
        self.assertEqual(body["appProperties"]["slotNumber"], "2")
        parsed = _file_metadata({"id": "x", "modifiedTime": "2024-01-15T11:00:00Z", **body})
        self.assertEqual(parsed, metadata)
        self.assertEqual(parsed.player_summary, {"level": 3})


class PayloadEncodingTests(SimpleTestCase):
    def test_compressible_payload_is_compressed(self):
        payload = b"inventory: potion " * 200

        stored, encoding = encode_payload(payload)

        self.assertEqual(encoding, "zlib")
        self.assertLess(len(stored), len(payload))
        self.assertEqual(decode_payload(stored, encoding), payload)

    def test_incompressible_payload_is_stored_as_is(self):
        payload = bytes(range(256))
        self.assertEqual(encode_payload(payload), (payload, "identity"))

    def test_compression_disabled(self):
        payload = b"a" * 1000
        self.assertEqual(encode_payload(payload, compress=False), (payload, "identity"))

    def test_files_without_encoding_are_raw(self):
        self.assertEqual(decode_payload(b"raw", None), b"raw")

    def test_unknown_encoding(self):
        with self.assertRaises(RemoteRejected):
            decode_payload(b"data", "lz-string", 2)

    def test_corrupt_compressed_file(self):
        with self.assertRaises(RemoteRejected) as ctx:
            decode_payload(b"not zlib", "zlib", 2)
        self.assertEqual(ctx.exception.slot_number, 2)


class ClientConfigTests(SimpleTestCase):
    @override_settings(GOOGLE_CLIENT_ID="id", GOOGLE_CLIENT_SECRET="secret")
    def test_from_settings(self):
        self.assertEqual(_client_config(), {"client_id": "id", "client_secret": "secret"})

    @override_settings(GOOGLE_CLIENT_ID=None, GOOGLE_CLIENT_SECRET=None)
    def test_missing(self):
        with patch("savesync.stores.drive.secrets.get_oauth_client_config", return_value=None):
            with self.assertRaises(RemoteRejected):
                _client_config()


class DriveSlotStoreTests(SimpleTestCase):
    def setUp(self):
        self.service = MagicMock()
        self.files = self.service.files.return_value
        self.store = DriveSlotStore(service=self.service)

    def test_availability(self):
        self.assertTrue(self.store.is_available())
        self.store.online = False
        self.assertFalse(self.store.is_available())

    def test_not_available_without_tokens(self):
        with patch("savesync.stores.drive.secrets.has_tokens", return_value=False):
            self.assertFalse(DriveSlotStore(profile="nobody").is_available())

    async def test_stat(self):
        self.files.list.return_value.execute.return_value = {"files": [drive_file()]}

        metadata = await self.store.stat(2)

        self.assertEqual(metadata.size_bytes, 7)
        kwargs = self.files.list.call_args.kwargs
        self.assertEqual(kwargs["spaces"], APP_DATA_FOLDER)
        self.assertIn("slot-2.sav", kwargs["q"])

    async def test_stat_missing(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        self.assertIsNone(await self.store.stat(2))

    async def test_read_missing(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        with self.assertRaises(NotFound):
            await self.store.read(2)

    async def test_write_creates_file_in_app_data(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        metadata = SlotMetadata.for_payload(b"payload", last_modified=T0)

        await self.store.write(2, b"payload", metadata)

        body = self.files.create.call_args.kwargs["body"]
        self.assertEqual(body["parents"], [APP_DATA_FOLDER])
        self.assertEqual(body["appProperties"]["checksum"], metadata.checksum)
        self.files.update.assert_not_called()

    async def test_write_updates_existing_file(self):
        self.files.list.return_value.execute.return_value = {"files": [drive_file("existing")]}
        metadata = SlotMetadata.for_payload(b"payload", last_modified=T0)

        await self.store.write(2, b"payload", metadata)

        self.assertEqual(self.files.update.call_args.kwargs["fileId"], "existing")
        self.files.create.assert_not_called()

    async def test_write_compresses_payload(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        payload = b"inventory: potion " * 200
        metadata = SlotMetadata.for_payload(payload, last_modified=T0)

        with patch("savesync.stores.drive.MediaIoBaseUpload") as upload:
            await self.store.write(2, payload, metadata)

        uploaded = upload.call_args.args[0].getvalue()
        self.assertEqual(zlib.decompress(uploaded), payload)
        body = self.files.create.call_args.kwargs["body"]
        self.assertEqual(body["appProperties"]["encoding"], "zlib")
        self.assertEqual(body["appProperties"]["sizeBytes"], str(len(payload)))

    async def test_write_uncompressed_when_disabled(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        store = DriveSlotStore(service=self.service, compress=False)
        payload = b"a" * 1000
        metadata = SlotMetadata.for_payload(payload, last_modified=T0)

        with patch("savesync.stores.drive.MediaIoBaseUpload") as upload:
            await store.write(2, payload, metadata)

        self.assertEqual(upload.call_args.args[0].getvalue(), payload)
        body = self.files.create.call_args.kwargs["body"]
        self.assertEqual(body["appProperties"]["encoding"], "identity")

    async def test_read_decompresses_payload(self):
        payload = b"inventory: potion " * 200
        self.files.list.return_value.execute.return_value = {"files": [drive_file(encoding="zlib")]}

        def fake_download(buffer, request):
            buffer.write(zlib.compress(payload))
            downloader = MagicMock()
            downloader.next_chunk.return_value = (None, True)
            return downloader

        with patch("savesync.stores.drive.MediaIoBaseDownload", side_effect=fake_download):
            record = await self.store.read(2)

        self.assertEqual(record.payload, payload)
        self.assertTrue(record.metadata.is_favorite)

    async def test_write_quota_error(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        self.files.create.return_value.execute.side_effect = http_error(403, "storageQuotaExceeded")
        metadata = SlotMetadata.for_payload(b"payload", last_modified=T0)

        with self.assertRaises(QuotaExceeded) as ctx:
            await self.store.write(2, b"payload", metadata)
        self.assertEqual(ctx.exception.slot_number, 2)

    async def test_delete(self):
        self.files.list.return_value.execute.return_value = {"files": [drive_file("existing")]}
        self.assertTrue(await self.store.delete(2))
        self.files.delete.assert_called_once_with(fileId="existing")

    async def test_delete_missing(self):
        self.files.list.return_value.execute.return_value = {"files": []}
        self.assertFalse(await self.store.delete(2))
        self.files.delete.assert_not_called()

    async def test_list_follows_pages(self):
        self.files.list.return_value.execute.side_effect = [
            {"files": [{"id": "a", "name": "slot-0.sav"}, {"id": "b", "name": "other"}], "nextPageToken": "p2"},
            {"files": [{"id": "c", "name": "slot-4.sav"}]},
        ]

        self.assertEqual(await self.store.list(), {0, 4})
        self.assertEqual(self.files.list.call_args.kwargs["pageToken"], "p2")

    async def test_quota(self):
        self.service.about.return_value.get.return_value.execute.return_value = {
            "storageQuota": {"limit": "1000", "usage": "250"}
        }
        quota = await self.store.quota()
        self.assertEqual((quota.used_bytes, quota.total_bytes), (250, 1000))

    async def test_unlimited_quota(self):
        self.service.about.return_value.get.return_value.execute.return_value = {
            "storageQuota": {"usage": "250"}
        }
        self.assertIsNone((await self.store.quota()).total_bytes)

    async def test_server_error(self):
        self.files.list.return_value.execute.side_effect = http_error(500)
        with self.assertRaises(RemoteUnavailable):
            await self.store.stat(2)
