"""Data types shared by the reconciler and the inventory backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

STATE_PENDING = "pending"
STATE_COMPLETED = "completed"
STATE_ERROR = "error"

# Tags the AWS EBS CSI driver / in-tree provisioner put on dynamically
# provisioned volumes.
PVC_NAME_TAG = "kubernetes.io/created-for/pvc/name"
PVC_NAMESPACE_TAG = "kubernetes.io/created-for/pvc/namespace"


@dataclass(frozen=True)
class Label:
    """Tag selector matched against a volume's tags."""
    key: str
    value: str


@dataclass
class Volume:
    """A block-storage volume as seen in the current poll."""
    id: str
    tags: dict[str, str] = field(default_factory=dict)
    pvc_name: str | None = None
    pvc_namespace: str | None = None

    def has_tag(self, label: Label) -> bool:
        """Return True if one of the volume's tags equals ``label``."""
        return self.tags.get(label.key) == label.value


@dataclass(frozen=True)
class Snapshot:
    """A point-in-time snapshot owned by exactly one volume."""
    id: str
    volume_id: str
    start_time: datetime
    state: str = STATE_COMPLETED

    @property
    def failed(self) -> bool:
        return self.state == STATE_ERROR


@dataclass(frozen=True)
class SnapshotRule:
    """Freshness and retention policy for volumes carrying ``labels``.

    Attributes:
        labels: Tag selector (exact key + value match on one volume tag)
        interval: How recently the latest snapshot must have started
        retention_period: Age after which a snapshot may be deleted
    """
    labels: Label
    interval: timedelta
    retention_period: timedelta
