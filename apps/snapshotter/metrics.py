"""Prometheus counters describing what each reconciliation pass did.

All metrics live in a dedicated ``CollectorRegistry`` owned by a
``SnapshotMetrics`` instance, so tests can build isolated registries and the
entry point can expose exactly this registry over HTTP.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge

from snapshotter.models import Volume

VOLUME_LABELS = ["pvc_name", "pvc_namespace", "volume_id"]


def volume_labels(volume: Volume) -> dict[str, str]:
    """Stable metric identity of a volume."""
    return {
        "pvc_name": volume.pvc_name or "",
        "pvc_namespace": volume.pvc_namespace or "",
        "volume_id": volume.id,
    }


class SnapshotMetrics:
    """Counters for created/removed snapshots and errors, per volume."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.created = Counter(
            "snapshots_performed",
            "A counter of the total number of snapshots created",
            VOLUME_LABELS,
            registry=self.registry,
        )
        self.deleted = Counter(
            "old_snapshots_removed",
            "A counter of the total number of old snapshots removed",
            VOLUME_LABELS + ["snapshot_id"],
            registry=self.registry,
        )
        self.errors = Counter(
            "errors",
            "A counter of the total number of errors encountered",
            VOLUME_LABELS,
            registry=self.registry,
        )
        self.snapshots = Gauge(
            "snapshots_total",
            "The number of snapshots currently held per volume",
            VOLUME_LABELS,
            registry=self.registry,
        )

    def snapshot_created(self, volume: Volume) -> None:
        self.created.labels(**volume_labels(volume)).inc()

    def snapshot_deleted(self, volume: Volume, snapshot_id: str) -> None:
        self.deleted.labels(**volume_labels(volume), snapshot_id=snapshot_id).inc()

    def error(self, volume: Volume) -> None:
        self.errors.labels(**volume_labels(volume)).inc()

    def set_snapshot_count(self, volume: Volume, count: int) -> None:
        self.snapshots.labels(**volume_labels(volume)).set(count)
