"""
Progress reporting for sync operations.

Progress is advisory: when the consumer falls behind, the oldest
buffered events are dropped instead of slowing the sync down.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from savesync.conf import DEFAULT_PROGRESS_BUFFER

if TYPE_CHECKING:
    from savesync.sync.operations import SyncOperation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress update.

    ``slot_number`` is None for events that describe a whole batch.
    """

    slot_number: int | None
    phase: str
    percent: int
    message: str
    operation: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressChannel:
    """
    Bounded stream of progress events.

    The engine publishes without waiting; the caller consumes with
    ``async for event in channel``. Iteration ends once the channel is
    closed and drained.
    """

    def __init__(self, maxsize: int = DEFAULT_PROGRESS_BUFFER):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._events: deque[ProgressEvent] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def publish(self, event: ProgressEvent) -> None:
        """Buffer an event, dropping the oldest one when full."""
        if self._closed:
            return
        if len(self._events) >= self.maxsize:
            self._events.popleft()
            self.dropped += 1
        self._events.append(event)
        self._wakeup.set()

    def emit(
        self,
        slot_number: int | None,
        phase: str,
        percent: int,
        message: str,
        operation: str = "",
    ) -> None:
        percent = max(0, min(100, int(percent)))
        logger.debug(f"Progress {operation or 'sync'} slot={slot_number} {percent}%: {message}")
        self.publish(
            ProgressEvent(
                slot_number=slot_number,
                phase=phase,
                percent=percent,
                message=message,
                operation=str(operation),
            )
        )

    def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> list[ProgressEvent]:
        """Return and clear everything buffered so far."""
        events = list(self._events)
        self._events.clear()
        return events

    def __len__(self) -> int:
        return len(self._events)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        while not self._events:
            if self._closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()
        return self._events.popleft()


class SlotProgress:
    """
    Progress helper bound to one running operation.

    Keeps ``operation.progress_percent`` in step with what was published.
    """

    def __init__(self, channel: ProgressChannel | None, operation: SyncOperation):
        self.channel = channel
        self.operation = operation

    def __call__(self, phase: str, percent: int, message: str) -> None:
        self.operation.progress_percent = max(0, min(100, int(percent)))
        if self.channel is not None:
            self.channel.emit(
                self.operation.slot_number, phase, percent, message, self.operation.type
            )
