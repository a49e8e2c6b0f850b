"""Kubernetes CSI inventory backend.

PersistentVolumeClaims are the volumes (their labels are the tags) and
``snapshot.storage.k8s.io/v1`` VolumeSnapshot objects are the snapshots.
Volume ids take the form ``<namespace>/<pvc-name>`` because PVC names are only
unique inside a namespace.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, UTC
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader
from kubernetes import client, config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from snapshotter.errors import InventoryError, SnapshotOperationError
from snapshotter.models import (
    STATE_COMPLETED,
    STATE_ERROR,
    STATE_PENDING,
    Snapshot,
    Volume,
)

logger = logging.getLogger(__name__)

GROUP = "snapshot.storage.k8s.io"
VERSION = "v1"
PLURAL = "volumesnapshots"

PAGE_SIZE = 500
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
SNAPSHOT_TEMPLATE = "volumesnapshot.yaml.j2"


def init_clients() -> tuple[client.CoreV1Api, client.CustomObjectsApi]:
    """Initialize Kubernetes API clients.

    Attempts in-cluster configuration first; falls back to local kubeconfig.

    Raises:
        InventoryError: If neither configuration can be loaded
    """
    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        try:
            k8s_config.load_kube_config()
        except Exception as exc:
            raise InventoryError(f"Failed to load kubeconfig: {exc}") from exc
    return client.CoreV1Api(), client.CustomObjectsApi()


def volume_id(namespace: str, pvc_name: str) -> str:
    return f"{namespace}/{pvc_name}"


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by the API server."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def snapshot_state(status: dict[str, Any]) -> str:
    if status.get("error"):
        return STATE_ERROR
    if status.get("readyToUse"):
        return STATE_COMPLETED
    return STATE_PENDING


def snapshot_from_object(obj: dict[str, Any]) -> Snapshot | None:
    """Translate a VolumeSnapshot object; None if it has no PVC source."""
    meta = obj.get("metadata", {})
    status = obj.get("status") or {}
    pvc_name = obj.get("spec", {}).get("source", {}).get("persistentVolumeClaimName")
    if not pvc_name:
        return None

    start = parse_timestamp(status.get("creationTime")) or parse_timestamp(
        meta.get("creationTimestamp")
    )
    if start is None:
        return None

    return Snapshot(
        id=volume_id(meta["namespace"], meta["name"]),
        volume_id=volume_id(meta["namespace"], pvc_name),
        start_time=start,
        state=snapshot_state(status),
    )


def render_yaml_template(path: Path, context: dict[str, Any]) -> dict[str, Any]:
    """Render a Jinja2 template file and parse YAML into a dict."""
    env = Environment(loader=FileSystemLoader(str(path.parent)))
    template = env.get_template(path.name)
    data = yaml.safe_load(template.render(**context))
    if not isinstance(data, dict):
        raise ValueError(f"Rendered template {path.name} root must be a mapping")
    return data


class KubernetesClient:
    """Inventory client for PVCs and CSI VolumeSnapshots.

    Args:
        core_api: CoreV1Api used to list PersistentVolumeClaims
        custom_api: CustomObjectsApi used for VolumeSnapshot objects
        snapshot_class: VolumeSnapshotClass for newly created snapshots
        namespace: Restrict the inventory to one namespace (all if None)
    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        custom_api: client.CustomObjectsApi,
        snapshot_class: str,
        namespace: str | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.core_api = core_api
        self.custom_api = custom_api
        self.snapshot_class = snapshot_class
        self.namespace = namespace
        self.clock = clock

    def get_volumes(self) -> dict[str, Volume]:
        volumes: dict[str, Volume] = {}
        kwargs: dict[str, Any] = {"limit": PAGE_SIZE}
        try:
            while True:
                if self.namespace:
                    resp = self.core_api.list_namespaced_persistent_volume_claim(
                        self.namespace, **kwargs
                    )
                else:
                    resp = self.core_api.list_persistent_volume_claim_for_all_namespaces(**kwargs)

                for pvc in resp.items or []:
                    meta = pvc.metadata
                    vol = Volume(
                        id=volume_id(meta.namespace, meta.name),
                        tags=dict(meta.labels or {}),
                        pvc_name=meta.name,
                        pvc_namespace=meta.namespace,
                    )
                    volumes[vol.id] = vol

                token = resp.metadata._continue if resp.metadata else None
                if not token:
                    break
                kwargs["_continue"] = token
        except (ApiException, HTTPError) as exc:
            raise InventoryError(f"error while listing persistent volume claims: {exc}") from exc
        return volumes

    def get_snapshots(self) -> list[Snapshot]:
        snapshots: list[Snapshot] = []
        kwargs: dict[str, Any] = {"limit": PAGE_SIZE}
        try:
            while True:
                if self.namespace:
                    resp = self.custom_api.list_namespaced_custom_object(
                        GROUP, VERSION, self.namespace, PLURAL, **kwargs
                    )
                else:
                    resp = self.custom_api.list_cluster_custom_object(
                        GROUP, VERSION, PLURAL, **kwargs
                    )

                for obj in resp.get("items", []):
                    snap = snapshot_from_object(obj)
                    if snap is not None:
                        snapshots.append(snap)

                token = resp.get("metadata", {}).get("continue")
                if not token:
                    break
                kwargs["_continue"] = token
        except (ApiException, HTTPError) as exc:
            raise InventoryError(f"error while listing volume snapshots: {exc}") from exc
        return snapshots

    def create_snapshot(self, volume: Volume) -> None:
        ts = self.clock().strftime("%Y%m%d%H%M%S")
        name = f"{volume.pvc_name}-snap-{ts}"
        body = render_yaml_template(
            TEMPLATE_DIR / SNAPSHOT_TEMPLATE,
            {
                "name": name,
                "namespace": volume.pvc_namespace,
                "pvc_name": volume.pvc_name,
                "snapshot_class": self.snapshot_class,
            },
        )
        try:
            self.custom_api.create_namespaced_custom_object(
                GROUP, VERSION, volume.pvc_namespace, PLURAL, body
            )
        except ApiException as exc:
            raise SnapshotOperationError(
                f"Failed to create VolumeSnapshot {volume.pvc_namespace}/{name}: {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise SnapshotOperationError(
                f"Failed to create VolumeSnapshot {volume.pvc_namespace}/{name}: {exc}"
            ) from exc
        logger.debug(f"Submitted VolumeSnapshot {volume.pvc_namespace}/{name}")

    def remove_snapshot(self, snapshot: Snapshot) -> None:
        namespace, name = snapshot.id.split("/", 1)
        try:
            self.custom_api.delete_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name
            )
        except ApiException as exc:
            if exc.status == 404:  # Already gone
                logger.warning(f"VolumeSnapshot {snapshot.id} no longer exists")
                return
            raise SnapshotOperationError(
                f"Failed to delete VolumeSnapshot {snapshot.id}: {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise SnapshotOperationError(
                f"Failed to delete VolumeSnapshot {snapshot.id}: {exc}"
            ) from exc
