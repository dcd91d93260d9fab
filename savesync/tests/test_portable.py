"""Tests for portable save export files."""

import base64
import json
import zlib
from datetime import datetime, timezone

from django.test import SimpleTestCase

from savesync.sync.exceptions import ValidationError
from savesync.sync.portable import FORMAT_VERSION, MAGIC, decode_slot, encode_slot
from savesync.sync.slots import SlotMetadata, SlotRecord

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_record(payload=b"\x00save\xffdata"):
    return SlotRecord(
        payload=payload,
        metadata=SlotMetadata.for_payload(payload, last_modified=T0, player_summary={"level": 9}),
    )


def unpack(blob):
    return json.loads(zlib.decompress(blob[len(MAGIC):]))


def repack(document):
    return MAGIC + zlib.compress(json.dumps(document).encode())


class PortableSlotTests(SimpleTestCase):
    def test_decode_returns_what_was_encoded(self):
        record = make_record()

        slot_number, decoded = decode_slot(encode_slot(4, record))

        self.assertEqual(slot_number, 4)
        self.assertEqual(decoded.payload, record.payload)
        self.assertEqual(decoded.metadata, record.metadata)
        self.assertEqual(decoded.metadata.player_summary, {"level": 9})

    def test_blob_carries_format_and_version(self):
        document = unpack(encode_slot(0, make_record()))
        self.assertEqual(document["format"], "savesync-slot")
        self.assertEqual(document["version"], FORMAT_VERSION)

    def test_rejects_foreign_data(self):
        for blob in (b"", b"PK\x03\x04zipfile", "SAVESYNC"):
            with self.assertRaises(ValidationError):
                decode_slot(blob)

    def test_rejects_truncated_blob(self):
        blob = encode_slot(0, make_record())
        with self.assertRaises(ValidationError) as ctx:
            decode_slot(blob[:-8])
        self.assertIn("corrupt", str(ctx.exception))

    def test_rejects_newer_version(self):
        document = unpack(encode_slot(0, make_record()))
        document["version"] = FORMAT_VERSION + 1

        with self.assertRaises(ValidationError) as ctx:
            decode_slot(repack(document))
        self.assertIn("newer", str(ctx.exception))

    def test_rejects_unknown_format(self):
        document = unpack(encode_slot(0, make_record()))
        document["format"] = "other-game"
        with self.assertRaises(ValidationError):
            decode_slot(repack(document))

    def test_rejects_tampered_payload(self):
        document = unpack(encode_slot(0, make_record()))
        document["payload"] = base64.b64encode(b"999 gold").decode()

        with self.assertRaises(ValidationError) as ctx:
            decode_slot(repack(document))
        self.assertIn("integrity", str(ctx.exception))

    def test_rejects_tampered_metadata(self):
        document = unpack(encode_slot(0, make_record()))
        document["metadata"]["player_summary"]["level"] = 99
        with self.assertRaises(ValidationError):
            decode_slot(repack(document))

    def test_rejects_missing_fields(self):
        document = unpack(encode_slot(0, make_record()))
        del document["metadata"]
        with self.assertRaises(ValidationError) as ctx:
            decode_slot(repack(document))
        self.assertIn("malformed", str(ctx.exception))
