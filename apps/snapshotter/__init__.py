"""Periodic volume snapshot creation and retention for cloud block storage."""

from .errors import (
    SnapshotterError,
    ConfigError,
    InventoryError,
    SnapshotOperationError,
    ReconcileError,
)
from .index import build_snapshot_index, latest_snapshot
from .metrics import SnapshotMetrics
from .models import Label, Snapshot, SnapshotRule, Volume
from .reconciler import ReconcileOutcome, Reconciler

__version__ = "1.0.0"

__all__ = [
    'SnapshotterError',
    'ConfigError',
    'InventoryError',
    'SnapshotOperationError',
    'ReconcileError',
    'build_snapshot_index',
    'latest_snapshot',
    'SnapshotMetrics',
    'Label',
    'Snapshot',
    'SnapshotRule',
    'Volume',
    'ReconcileOutcome',
    'Reconciler',
]
