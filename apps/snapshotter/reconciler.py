"""Snapshot reconciliation policy.

One pass evaluates every rule against the current inventory:

1. Volumes whose tags match the rule's label get a new snapshot unless their
   latest snapshot started within the rule's interval and is not in an error
   state.
2. Snapshots of a matching volume older than the rule's retention period are
   deleted, one call at a time with a fixed pause between calls.

A failed create skips the retention sweep for that volume so a volume is
never pruned without a replacement in flight. A failed delete only affects
the snapshot it was for.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, UTC

from snapshotter.clients.base import InventoryClient
from snapshotter.errors import InventoryError, ReconcileError, SnapshotterError
from snapshotter.index import SnapshotIndex, build_snapshot_index, latest_snapshot
from snapshotter.metrics import SnapshotMetrics
from snapshotter.models import Snapshot, SnapshotRule, Volume

logger = logging.getLogger(__name__)

# Pause between consecutive deletions for the same volume (EC2 request limits)
DELETE_DELAY_SECONDS = 2.0


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ReconcileOutcome:
    """What a single pass did.

    Attributes:
        created: Ids of volumes that received a new snapshot
        deleted: Ids of snapshots removed
        up_to_date: Ids of volumes whose latest snapshot was fresh enough
        errors: Human readable description of each failed action
    """
    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    up_to_date: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class Reconciler:
    """Create missing snapshots and prune expired ones.

    Args:
        client: Inventory backend used for listing and mutations
        metrics: Registry receiving created/deleted/error counts
        clock: Returns the current timezone-aware time
        sleep: Called with ``delete_delay`` between deletions
        delete_delay: Seconds to wait between deletions for one volume
    """

    def __init__(
        self,
        client: InventoryClient,
        metrics: SnapshotMetrics,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        delete_delay: float = DELETE_DELAY_SECONDS,
    ):
        self.client = client
        self.metrics = metrics
        self.clock = clock
        self.sleep = sleep
        self.delete_delay = delete_delay

    def run(self, rules: Iterable[SnapshotRule]) -> ReconcileOutcome:
        """Fetch the inventory and reconcile it against ``rules``.

        Raises:
            ReconcileError: If volumes or snapshots could not be listed
        """
        try:
            volumes = self.client.get_volumes()
        except InventoryError as exc:
            raise ReconcileError(f"error while fetching volumes: {exc}") from exc

        try:
            snapshots = self.client.get_snapshots()
        except InventoryError as exc:
            raise ReconcileError(f"error while fetching snapshots: {exc}") from exc

        return self.reconcile(rules, volumes, build_snapshot_index(snapshots))

    def reconcile(
        self,
        rules: Iterable[SnapshotRule],
        volumes: Mapping[str, Volume],
        snapshot_index: SnapshotIndex,
    ) -> ReconcileOutcome:
        """Apply ``rules`` to an already fetched inventory."""
        now = self.clock()
        outcome = ReconcileOutcome()
        # A volume refreshed or a snapshot removed by an earlier rule is not
        # acted on again in the same pass.
        created: set[str] = set()
        removed: set[str] = set()

        logger.info("checking volumes and snapshots")
        for rule in rules:
            acceptable_start_time = now - rule.interval
            retention_start_date = now - rule.retention_period

            for vol in volumes.values():
                if not vol.has_tag(rule.labels):
                    continue
                self._reconcile_volume(
                    vol,
                    snapshot_index,
                    acceptable_start_time,
                    retention_start_date,
                    outcome,
                    created,
                    removed,
                )
        logger.info("finished checking volumes and snapshots")
        return outcome

    def _reconcile_volume(
        self,
        volume: Volume,
        snapshot_index: SnapshotIndex,
        acceptable_start_time: datetime,
        retention_start_date: datetime,
        outcome: ReconcileOutcome,
        created: set[str],
        removed: set[str],
    ) -> None:
        snapshots = snapshot_index.get(volume.id, [])
        self.metrics.set_snapshot_count(volume, len(snapshots))
        latest = latest_snapshot(snapshot_index, volume.id)

        if volume.id in created:
            logger.debug(f"volume {volume.id} already received a snapshot in this pass")
            keep = None
        elif (
            latest is not None
            and not latest.failed
            and latest.start_time >= acceptable_start_time
        ):
            logger.debug(f"volume {volume.id} has an up to date snapshot")
            outcome.up_to_date.append(volume.id)
            keep = latest
        else:
            try:
                self.client.create_snapshot(volume)
            except SnapshotterError as exc:
                logger.error(
                    f"error occurred while creating snapshot for volume {volume.id}: {exc}"
                )
                self.metrics.error(volume)
                outcome.errors.append(f"create snapshot for volume {volume.id}: {exc}")
                return

            logger.info(f"created snapshot for volume {volume.id}")
            self.metrics.snapshot_created(volume)
            created.add(volume.id)
            outcome.created.append(volume.id)
            keep = None

        self._sweep(volume, snapshots, retention_start_date, keep, outcome, removed)

    def _sweep(
        self,
        volume: Volume,
        snapshots: list[Snapshot],
        retention_start_date: datetime,
        keep: Snapshot | None,
        outcome: ReconcileOutcome,
        removed: set[str],
    ) -> None:
        """Delete every snapshot of ``volume`` past the retention date.

        ``keep`` is the snapshot currently satisfying the freshness check; it
        survives even when the retention period is shorter than the interval.
        This is the one case where an expired snapshot is not deleted:
        removing it would leave the volume without a fresh snapshot and force
        a new one on every pass.
        """
        calls = 0
        for snap in snapshots:
            if snap.id in removed:
                continue

            if snap.start_time > retention_start_date:
                logger.info(
                    "skipped snapshot removal, retention period not exceeded: "
                    f"volume - {volume.id}; snapshot - {snap.id}"
                )
                continue

            # Expired but still the freshness anchor for this volume
            if keep is not None and snap.id == keep.id:
                logger.warning(
                    f"keeping expired snapshot {snap.id} for volume {volume.id}: "
                    "it is the latest up to date snapshot"
                )
                continue

            if calls:
                self.sleep(self.delete_delay)
            calls += 1

            try:
                self.client.remove_snapshot(snap)
            except SnapshotterError as exc:
                logger.error(
                    f"failed to remove old snapshot {snap.id} for volume {volume.id}: {exc}"
                )
                self.metrics.error(volume)
                outcome.errors.append(f"remove snapshot {snap.id}: {exc}")
                continue

            removed.add(snap.id)
            self.metrics.snapshot_deleted(volume, snap.id)
            outcome.deleted.append(snap.id)
            logger.info(f"old snapshot with id {snap.id} for volume {volume.id} has been deleted")

