"""
Conflict resolution policies.

A resolution collapses the two copies of a slot into one. It never
guesses: KEEP_NEWEST refuses to pick a side when the modification
times are within the clock-skew tolerance.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from savesync.sync.exceptions import AmbiguousResolution, NotFound
from savesync.sync.operations import PendingManualChoice, ResolutionPolicy, ResolvedSlot
from savesync.sync.registry import SlotRegistry
from savesync.sync.status import DEFAULT_TOLERANCE, compare_timestamps
from savesync.sync.transfer import SlotOutcome, SlotTransfer, no_progress

logger = logging.getLogger(__name__)

LOCAL = "local"
CLOUD = "cloud"


class ConflictResolver:
    def __init__(
        self,
        registry: SlotRegistry,
        transfer: SlotTransfer,
        tolerance: timedelta = DEFAULT_TOLERANCE,
    ):
        self.registry = registry
        self.transfer = transfer
        self.tolerance = tolerance

    async def resolve(self, slot_number: int, policy, progress=no_progress) -> SlotOutcome:
        """
        Apply a policy to one slot.

        The returned outcome's ``detail`` is a ResolvedSlot, or a
        PendingManualChoice for MANUAL (in which case nothing was written).

        Raises:
            ValueError: If the policy is unknown
            NotFound: If neither side holds a copy, or the chosen side holds none
            AmbiguousResolution: If KEEP_NEWEST finds the timestamps tied
        """
        policy = ResolutionPolicy.parse(policy)
        previous_status = self.registry.get(slot_number).status

        progress("compare", 10, "Reading both copies")
        local = await self.transfer.stat_local(slot_number)
        remote = await self.transfer.gateway.stat(slot_number)

        if policy == ResolutionPolicy.MANUAL:
            logger.info(f"Slot {slot_number} waiting for a manual choice")
            choice = PendingManualChoice(
                slot_number=slot_number, local=local, remote=remote, status=previous_status
            )
            return SlotOutcome(local=local, remote=remote, settled=False, detail=choice)

        if local is None and remote is None:
            raise NotFound("Nothing to resolve: slot is empty on both sides", slot_number)

        winner = self._pick_winner(slot_number, policy, local, remote)
        logger.info(f"Resolving slot {slot_number} with {policy.label}: keeping {winner} copy")

        if local is not None and remote is not None and local.checksum == remote.checksum:
            metadata, size = await self._align_metadata(slot_number, winner, local, remote, progress)
            skipped = _same_metadata(local, remote)
        elif winner == LOCAL:
            record = await self.transfer.read_local(slot_number)
            size = await self.transfer.push(slot_number, record, progress)
            metadata, skipped = record.metadata, False
        else:
            progress("download", 30, "Downloading cloud save")
            record = await self.transfer.gateway.read(slot_number)
            size = await self.transfer.pull(slot_number, record, progress)
            metadata, skipped = record.metadata, False

        resolved = ResolvedSlot(
            slot_number=slot_number,
            policy=policy,
            winner=winner,
            metadata=metadata,
            previous_status=previous_status,
        )
        return SlotOutcome(
            local=metadata,
            remote=metadata,
            bytes_transferred=size,
            skipped=skipped,
            detail=resolved,
        )

    def _pick_winner(self, slot_number, policy, local, remote) -> str:
        if policy == ResolutionPolicy.KEEP_LOCAL:
            if local is None:
                raise NotFound("Cannot keep the local copy: there is none", slot_number)
            return LOCAL
        if policy == ResolutionPolicy.KEEP_CLOUD:
            if remote is None:
                raise NotFound("Cannot keep the cloud copy: there is none", slot_number)
            return CLOUD

        if remote is None:
            return LOCAL
        if local is None:
            return CLOUD

        order = compare_timestamps(local.last_modified, remote.last_modified, self.tolerance)
        if local.checksum == remote.checksum:
            # Same bytes; only the details differ
            return CLOUD if order < 0 else LOCAL
        if order == 0:
            raise AmbiguousResolution(
                f"Local ({local.last_modified.isoformat()}) and cloud "
                f"({remote.last_modified.isoformat()}) copies are too close in time to "
                f"tell which is newer; choose one explicitly",
                slot_number,
            )
        return LOCAL if order > 0 else CLOUD

    async def _align_metadata(self, slot_number, winner, local, remote, progress):
        """
        Copy the winner's metadata over a loser that already holds the same bytes.

        Returns the kept metadata and the number of bytes uploaded.
        """
        metadata = local if winner == LOCAL else remote
        if _same_metadata(local, remote):
            return metadata, 0

        record = await self.transfer.read_local(slot_number)
        progress("metadata", 50, f"Updating the {CLOUD if winner == LOCAL else LOCAL} copy's details")
        if winner == LOCAL:
            await self.transfer.gateway.write(slot_number, record.payload, metadata)
            size = len(record.payload)
        else:
            await self.transfer.write_local(slot_number, record.payload, metadata)
            size = 0
        logger.info(f"Slot {slot_number} copies already matched; kept the {winner} copy's details")
        return metadata, size


def _same_metadata(a, b) -> bool:
    return a == b and a.player_summary == b.player_summary
