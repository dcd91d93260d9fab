"""Tests for the slot registry."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from django.test import SimpleTestCase

from savesync.stores.memory import MemoryRemoteStore, MemorySlotStore
from savesync.sync.exceptions import NotFound, RemoteRejected, RemoteUnavailable, StorageError
from savesync.sync.gateway import RemoteGateway
from savesync.sync.registry import SlotRegistry
from savesync.sync.slots import SyncStatus

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class SlotRegistryTests(SimpleTestCase):
    def setUp(self):
        self.local = MemorySlotStore()
        self.remote = MemoryRemoteStore()
        self.registry = SlotRegistry(
            self.local, RemoteGateway(self.remote, timeout=1), slot_count=3
        )

    def test_starts_with_every_slot_empty(self):
        slots = self.registry.snapshot()
        self.assertEqual(sorted(slots), [0, 1, 2])
        self.assertTrue(all(slot.is_empty for slot in slots.values()))

    def test_validate(self):
        self.assertEqual(self.registry.validate(2), 2)
        for bad in (-1, 3, "1", None):
            with self.assertRaises(ValueError):
                self.registry.validate(bad)

    def test_snapshot_is_a_copy(self):
        snapshot = self.registry.snapshot()
        snapshot.clear()
        self.assertEqual(len(self.registry.snapshot()), 3)

    async def test_refresh_classifies_every_slot(self):
        await self.local.put(0, b"local", last_modified=T0)
        await self.remote.put(1, b"cloud", last_modified=T0)

        slots = await self.registry.refresh()

        self.assertEqual(slots[0].status, SyncStatus.LOCAL_NEWER)
        self.assertEqual(slots[1].status, SyncStatus.CLOUD_NEWER)
        self.assertEqual(slots[2].status, SyncStatus.EMPTY)
        self.assertTrue(slots[0].local_presence)
        self.assertFalse(slots[0].cloud_presence)
        self.assertIsNotNone(slots[0].refreshed_at)
        self.assertFalse(slots[0].remote_stale)

    async def test_refresh_subset(self):
        await self.local.put(0, b"local", last_modified=T0)
        await self.local.put(1, b"local", last_modified=T0)

        slots = await self.registry.refresh([1])

        self.assertEqual(list(slots), [1])
        self.assertEqual(self.registry.get(0).status, SyncStatus.EMPTY)
        self.assertEqual(self.registry.get(1).status, SyncStatus.LOCAL_NEWER)

    async def test_refresh_rejects_unknown_slot(self):
        with self.assertRaises(ValueError):
            await self.registry.refresh([7])

    async def test_offline_keeps_cached_cloud_metadata(self):
        await self.remote.put(0, b"cloud", last_modified=T0)
        await self.registry.refresh()
        cached = self.registry.get(0).remote

        self.remote.online = False
        await self.local.put(0, b"local edit", last_modified=T0 + timedelta(minutes=5))
        await self.registry.refresh()

        slot = self.registry.get(0)
        self.assertEqual(slot.remote, cached)
        self.assertTrue(slot.remote_stale)
        self.assertEqual(slot.status, SyncStatus.LOCAL_NEWER)

    async def test_failed_cloud_read_only_affects_that_slot(self):
        await self.remote.put(0, b"zero", last_modified=T0)
        await self.remote.put(1, b"one", last_modified=T0)
        original_stat = self.remote.stat

        async def flaky_stat(slot_number):
            if slot_number == 1:
                raise RemoteUnavailable("Connection reset")
            return await original_stat(slot_number)

        with patch.object(self.remote, "stat", flaky_stat):
            await self.registry.refresh()

        self.assertFalse(self.registry.get(0).remote_stale)
        self.assertEqual(self.registry.get(0).status, SyncStatus.CLOUD_NEWER)
        self.assertTrue(self.registry.get(1).remote_stale)
        self.assertIsNone(self.registry.get(1).remote)

    async def test_local_read_failure_marks_slot_failed(self):
        async def broken_stat(slot_number):
            raise StorageError("Index unreadable")

        with patch.object(self.local, "stat", broken_stat):
            await self.registry.refresh([0])

        slot = self.registry.get(0)
        self.assertEqual(slot.status, SyncStatus.SYNC_FAILED)
        self.assertEqual(slot.last_error.slot_number, 0)

    async def test_failure_survives_refresh_until_success(self):
        await self.local.put(0, b"local", last_modified=T0)
        await self.registry.refresh()
        error = RemoteRejected("Refused", 0)

        await self.registry.record_failure(0, error, "backup")
        await self.registry.refresh()

        slot = self.registry.get(0)
        self.assertEqual(slot.status, SyncStatus.SYNC_FAILED)
        self.assertIs(slot.last_error, error)
        self.assertEqual(slot.previous_status, SyncStatus.LOCAL_NEWER)

        metadata = await self.local.stat(0)
        slot = await self.registry.record_success(0, metadata, metadata, "backup")
        self.assertEqual(slot.status, SyncStatus.SYNCED)
        self.assertIsNone(slot.last_error)
        self.assertEqual(slot.previous_status, SyncStatus.SYNC_FAILED)

    async def test_failure_clears_once_slot_is_empty(self):
        await self.registry.record_failure(0, RemoteRejected("Refused", 0), "restore")
        await self.registry.refresh([0])
        self.assertEqual(self.registry.get(0).status, SyncStatus.EMPTY)

    async def test_repeated_failure_keeps_original_previous_status(self):
        await self.local.put(0, b"local", last_modified=T0)
        await self.registry.refresh()

        await self.registry.record_failure(0, RemoteRejected("first", 0), "backup")
        await self.registry.record_failure(0, RemoteRejected("second", 0), "backup")

        slot = self.registry.get(0)
        self.assertEqual(slot.previous_status, SyncStatus.LOCAL_NEWER)
        self.assertEqual(str(slot.last_error), "[slot 0] second")

    async def test_precondition_errors_do_not_mark_failed(self):
        await self.registry.record_failure(0, NotFound("Nothing here", 0), "backup")
        self.assertEqual(self.registry.get(0).status, SyncStatus.EMPTY)
        self.assertIsNone(self.registry.get(0).last_error)

    async def test_update_replaces_one_side(self):
        await self.remote.put(0, b"cloud", last_modified=T0)
        await self.registry.refresh()

        slot = await self.registry.update(0, remote=None)

        self.assertIsNone(slot.remote)
        self.assertEqual(slot.status, SyncStatus.CLOUD_NEWER)
