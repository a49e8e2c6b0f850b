"""Exception types raised by the snapshotter."""


class SnapshotterError(Exception):
    """Base class for all snapshotter errors."""


class ConfigError(SnapshotterError):
    """Rule configuration file is missing, unreadable or malformed."""


class InventoryError(SnapshotterError):
    """Listing volumes or snapshots from the backend failed."""


class SnapshotOperationError(SnapshotterError):
    """Creating or removing a single snapshot failed."""


class ReconcileError(SnapshotterError):
    """A reconciliation pass was aborted before any action was taken."""
