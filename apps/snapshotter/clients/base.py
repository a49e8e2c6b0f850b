"""Capability contract every inventory backend satisfies."""

from __future__ import annotations

from typing import Protocol

from snapshotter.models import Snapshot, Volume


class InventoryClient(Protocol):
    """Read the volume/snapshot inventory and mutate snapshots.

    Listing methods raise ``InventoryError`` on failure; mutation methods
    raise ``SnapshotOperationError``.
    """

    def get_volumes(self) -> dict[str, Volume]:
        """Return every visible volume keyed by volume id."""
        ...

    def get_snapshots(self) -> list[Snapshot]:
        """Return every snapshot owned by this account/cluster, unordered."""
        ...

    def create_snapshot(self, volume: Volume) -> None:
        ...

    def remove_snapshot(self, snapshot: Snapshot) -> None:
        ...
