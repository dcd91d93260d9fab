"""
Portable save files for export and import.

A blob is a magic header followed by zlib-compressed JSON holding the
payload (base64), its metadata and a digest over both. Everything is
validated before anything is written, so a bad blob is never partially
applied.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import zlib
from datetime import datetime, timezone

from savesync.storage import compute_digest
from savesync.sync.exceptions import ValidationError
from savesync.sync.slots import SlotMetadata, SlotRecord

logger = logging.getLogger(__name__)

MAGIC = b"SAVESYNC"
FORMAT_NAME = "savesync-slot"
FORMAT_VERSION = 1


def _envelope_digest(payload: bytes, metadata: dict) -> str:
    canonical = json.dumps(metadata, sort_keys=True, separators=(",", ":")).encode()
    return compute_digest(canonical + b"\0" + payload)


def encode_slot(slot_number: int, record: SlotRecord) -> bytes:
    """Serialize a slot record into an export blob."""
    metadata = record.metadata.to_dict()
    document = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "slot_number": slot_number,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "metadata": metadata,
        "payload": base64.b64encode(record.payload).decode("ascii"),
        "digest": _envelope_digest(record.payload, metadata),
    }
    body = json.dumps(document, sort_keys=True).encode("utf-8")
    return MAGIC + zlib.compress(body, 9)


def decode_slot(blob: bytes) -> tuple[int, SlotRecord]:
    """
    Parse and verify an export blob.

    Returns:
        (slot number the blob was exported from, record)

    Raises:
        ValidationError: If the blob is not an export, is corrupt, fails
            its integrity check, or was written by a newer format version
    """
    if not isinstance(blob, (bytes, bytearray)) or not blob.startswith(MAGIC):
        raise ValidationError("Not a save export file")

    try:
        document = json.loads(zlib.decompress(bytes(blob[len(MAGIC):])).decode("utf-8"))
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Save export is corrupt: {e}") from e

    if not isinstance(document, dict) or document.get("format") != FORMAT_NAME:
        raise ValidationError("Save export has an unknown format")

    version = document.get("version")
    if not isinstance(version, int) or version < 1:
        raise ValidationError(f"Save export has an invalid version: {version!r}")
    if version > FORMAT_VERSION:
        raise ValidationError(
            f"Save export version {version} is newer than supported version {FORMAT_VERSION}"
        )

    try:
        payload = base64.b64decode(document["payload"], validate=True)
        raw_metadata = document["metadata"]
        metadata = SlotMetadata.from_dict(raw_metadata)
        slot_number = int(document["slot_number"])
        expected = document["digest"]
    except (KeyError, TypeError, ValueError, binascii.Error) as e:
        raise ValidationError(f"Save export is malformed: {e}") from e

    if _envelope_digest(payload, raw_metadata) != expected:
        raise ValidationError("Save export failed its integrity check")
    if compute_digest(payload) != metadata.checksum or len(payload) != metadata.size_bytes:
        raise ValidationError("Save export payload does not match its metadata")

    logger.debug(f"Decoded export of slot {slot_number} ({len(payload)} bytes, v{version})")
    return slot_number, SlotRecord(payload=payload, metadata=metadata)
