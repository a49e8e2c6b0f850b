"""Group a flat snapshot listing into a per-volume, newest-first view."""

from __future__ import annotations

from collections.abc import Iterable

from snapshotter.models import Snapshot

SnapshotIndex = dict[str, list[Snapshot]]


def build_snapshot_index(snapshots: Iterable[Snapshot]) -> SnapshotIndex:
    """Map each volume id to its snapshots, most recent start time first.

    Sorting is stable, so snapshots sharing a start time keep their input
    order.
    """
    index: SnapshotIndex = {}
    for snap in snapshots:
        index.setdefault(snap.volume_id, []).append(snap)

    for snaps in index.values():
        snaps.sort(key=lambda s: s.start_time, reverse=True)

    return index


def latest_snapshot(index: SnapshotIndex, volume_id: str) -> Snapshot | None:
    """Return the most recent snapshot of ``volume_id``, or None."""
    snaps = index.get(volume_id)
    if not snaps:
        return None
    return snaps[0]
