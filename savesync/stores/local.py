"""
Local slot store backed by the database and content-addressed blobs.

Each slot is a LocalSaveSlot row pointing at a blob by digest. A blob
is deleted once no slot references it any more.
"""

from __future__ import annotations

import logging

from asgiref.sync import sync_to_async
from django.db import DatabaseError, transaction

from savesync.models import LocalSaveSlot
from savesync.storage import BlobNotFoundError, DigestError, SaveBlobStorage
from savesync.stores.base import SlotStore
from savesync.sync.exceptions import NotFound, StorageError
from savesync.sync.slots import SlotMetadata, SlotRecord

logger = logging.getLogger(__name__)


def _metadata(row: LocalSaveSlot) -> SlotMetadata:
    return SlotMetadata(
        last_modified=row.last_modified,
        checksum=row.checksum or row.digest,
        size_bytes=row.size_bytes,
        player_summary=dict(row.player_summary or {}),
        is_favorite=row.is_favorite,
    )


class DatabaseSlotStore(SlotStore):
    """SlotStore over LocalSaveSlot rows and SaveBlobStorage."""

    name = "local"

    def __init__(self, blob_storage: SaveBlobStorage):
        self.blob_storage = blob_storage

    async def read(self, slot_number: int) -> SlotRecord:
        return await sync_to_async(self._read)(slot_number)

    async def stat(self, slot_number: int) -> SlotMetadata | None:
        return await sync_to_async(self._stat)(slot_number)

    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        await sync_to_async(self._write)(slot_number, payload, metadata)

    async def delete(self, slot_number: int) -> bool:
        return await sync_to_async(self._delete)(slot_number)

    async def list(self) -> set[int]:
        return await sync_to_async(self._list)()

    async def put(self, slot_number: int, payload: bytes, **metadata_fields) -> SlotMetadata:
        """Save a payload from gameplay, describing it from its bytes."""
        metadata = SlotMetadata.for_payload(payload, **metadata_fields)
        await self.write(slot_number, payload, metadata)
        return metadata

    def _read(self, slot_number: int) -> SlotRecord:
        row = self._row(slot_number)
        if row is None:
            raise NotFound("No local save in slot", slot_number)
        try:
            payload = self.blob_storage.read_blob_bytes(row.digest)
        except BlobNotFoundError as e:
            raise StorageError(f"Local save data is missing: {e}", slot_number) from e
        except DigestError as e:
            raise StorageError(f"Local save data is corrupt: {e}", slot_number) from e
        except OSError as e:
            raise StorageError(f"Failed to read local save: {e}", slot_number) from e
        return SlotRecord(payload=payload, metadata=_metadata(row))

    def _stat(self, slot_number: int) -> SlotMetadata | None:
        row = self._row(slot_number)
        return _metadata(row) if row else None

    def _row(self, slot_number: int) -> LocalSaveSlot | None:
        try:
            return LocalSaveSlot.objects.filter(slot_number=slot_number).first()
        except DatabaseError as e:
            raise StorageError(f"Failed to read local slot index: {e}", slot_number) from e

    def _write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        # Tokens written by other clients may not be sha256 digests
        expected = metadata.checksum if metadata.checksum.startswith("sha256:") else None
        try:
            digest = self.blob_storage.write_blob(payload, expected_digest=expected)
        except DigestError as e:
            raise StorageError(f"Save data does not match its checksum: {e}", slot_number) from e
        except OSError as e:
            raise StorageError(f"Failed to write local save: {e}", slot_number) from e

        try:
            with transaction.atomic():
                row = LocalSaveSlot.objects.select_for_update().filter(slot_number=slot_number).first()
                old_digest = row.digest if row else None
                LocalSaveSlot.objects.update_or_create(
                    slot_number=slot_number,
                    defaults={
                        "digest": digest,
                        "checksum": metadata.checksum,
                        "size_bytes": len(payload),
                        "last_modified": metadata.last_modified,
                        "player_summary": dict(metadata.player_summary),
                        "is_favorite": metadata.is_favorite,
                    },
                )
        except DatabaseError as e:
            raise StorageError(f"Failed to update local slot index: {e}", slot_number) from e

        if old_digest and old_digest != digest:
            self._release_blob(old_digest)
        logger.debug(f"Wrote local slot {slot_number} ({len(payload)} bytes, {digest[:19]})")

    def _delete(self, slot_number: int) -> bool:
        try:
            with transaction.atomic():
                row = LocalSaveSlot.objects.select_for_update().filter(slot_number=slot_number).first()
                if row is None:
                    return False
                digest = row.digest
                row.delete()
        except DatabaseError as e:
            raise StorageError(f"Failed to delete local slot: {e}", slot_number) from e

        self._release_blob(digest)
        logger.info(f"Deleted local save in slot {slot_number}")
        return True

    def _list(self) -> set[int]:
        try:
            return set(LocalSaveSlot.objects.values_list("slot_number", flat=True))
        except DatabaseError as e:
            raise StorageError(f"Failed to list local slots: {e}") from e

    def _release_blob(self, digest: str) -> None:
        """Delete a blob if no slot references it any more."""
        if LocalSaveSlot.objects.filter(digest=digest).exists():
            return
        try:
            self.blob_storage.delete_blob(digest)
        except OSError as e:
            # The slot row is already gone; an orphaned blob is harmless
            logger.warning(f"Failed to delete unreferenced blob {digest}: {e}")
