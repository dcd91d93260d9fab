"""Tests for the progress channel."""

import asyncio

from django.test import SimpleTestCase

from savesync.sync.operations import OperationType, SyncOperation
from savesync.sync.progress import ProgressChannel, SlotProgress


class ProgressChannelTests(SimpleTestCase):
    def test_rejects_zero_capacity(self):
        with self.assertRaises(ValueError):
            ProgressChannel(0)

    def test_drops_oldest_when_full(self):
        channel = ProgressChannel(maxsize=3)
        for percent in range(5):
            channel.emit(1, "upload", percent * 10, f"step {percent}")

        events = channel.drain()
        self.assertEqual([e.percent for e in events], [20, 30, 40])
        self.assertEqual(channel.dropped, 2)
        self.assertEqual(len(channel), 0)

    def test_percent_is_clamped(self):
        channel = ProgressChannel()
        channel.emit(None, "start", -5, "before")
        channel.emit(None, "complete", 250, "after")
        self.assertEqual([e.percent for e in channel.drain()], [0, 100])

    def test_publish_after_close_is_ignored(self):
        channel = ProgressChannel()
        channel.close()
        channel.emit(1, "upload", 50, "late")
        self.assertEqual(len(channel), 0)
        self.assertTrue(channel.closed)

    async def test_iteration_ends_when_closed_and_drained(self):
        channel = ProgressChannel()
        channel.emit(1, "start", 0, "a")
        channel.emit(1, "complete", 100, "b")
        channel.close()

        messages = [event.message async for event in channel]
        self.assertEqual(messages, ["a", "b"])

    async def test_consumer_waits_for_events(self):
        channel = ProgressChannel()
        received = []

        async def consume():
            async for event in channel:
                received.append(event.message)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.emit(2, "upload", 50, "halfway")
        await asyncio.sleep(0)
        channel.close()
        await asyncio.wait_for(consumer, timeout=1)

        self.assertEqual(received, ["halfway"])


class SlotProgressTests(SimpleTestCase):
    def test_updates_operation_percent(self):
        channel = ProgressChannel()
        operation = SyncOperation(type=OperationType.BACKUP, slot_number=4)
        progress = SlotProgress(channel, operation)

        progress("upload", 60, "Uploading")

        self.assertEqual(operation.progress_percent, 60)
        event = channel.drain()[0]
        self.assertEqual(event.slot_number, 4)
        self.assertEqual(event.operation, "backup")
        self.assertEqual(event.phase, "upload")

    def test_works_without_channel(self):
        operation = SyncOperation(type=OperationType.RESTORE, slot_number=1)
        SlotProgress(None, operation)("write", 70, "Writing")
        self.assertEqual(operation.progress_percent, 70)
