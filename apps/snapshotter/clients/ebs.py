"""AWS EBS inventory backend built on boto3's EC2 client."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from snapshotter.errors import InventoryError, SnapshotOperationError
from snapshotter.models import (
    PVC_NAME_TAG,
    PVC_NAMESPACE_TAG,
    STATE_COMPLETED,
    Snapshot,
    Volume,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
SNAPSHOT_DESCRIPTION = "Created by volume-snapshotter"
MANAGED_BY_TAG = {"Key": "managed-by", "Value": "volume-snapshotter"}


def init_ec2_client(region: str | None = None) -> Any:
    """Create an EC2 client from the default credential chain."""
    session = boto3.session.Session(region_name=region)
    return session.client("ec2")


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    """Flatten EC2's ``[{'Key': k, 'Value': v}]`` tag list."""
    return {tag["Key"]: tag.get("Value", "") for tag in tags or []}


def volume_from_ec2(item: dict[str, Any]) -> Volume:
    tags = tags_to_dict(item.get("Tags"))
    return Volume(
        id=item["VolumeId"],
        tags=tags,
        pvc_name=tags.get(PVC_NAME_TAG),
        pvc_namespace=tags.get(PVC_NAMESPACE_TAG),
    )


def snapshot_from_ec2(item: dict[str, Any]) -> Snapshot:
    return Snapshot(
        id=item["SnapshotId"],
        volume_id=item.get("VolumeId", ""),
        start_time=item["StartTime"],
        state=item.get("State", STATE_COMPLETED),
    )


class EBSClient:
    """Inventory client for EBS volumes and snapshots in one region."""

    def __init__(self, ec2_client: Any):
        self.ec2 = ec2_client

    def get_volumes(self) -> dict[str, Volume]:
        volumes: dict[str, Volume] = {}
        try:
            paginator = self.ec2.get_paginator("describe_volumes")
            for page in paginator.paginate(PaginationConfig={"PageSize": PAGE_SIZE}):
                for item in page.get("Volumes", []):
                    vol = volume_from_ec2(item)
                    volumes[vol.id] = vol
        except (ClientError, BotoCoreError) as exc:
            raise InventoryError(f"error while describing volumes: {exc}") from exc
        return volumes

    def get_snapshots(self) -> list[Snapshot]:
        snapshots: list[Snapshot] = []
        try:
            paginator = self.ec2.get_paginator("describe_snapshots")
            for page in paginator.paginate(
                OwnerIds=["self"], PaginationConfig={"PageSize": PAGE_SIZE}
            ):
                for item in page.get("Snapshots", []):
                    snapshots.append(snapshot_from_ec2(item))
        except (ClientError, BotoCoreError) as exc:
            raise InventoryError(f"error while describing snapshots: {exc}") from exc
        return snapshots

    def create_snapshot(self, volume: Volume) -> None:
        try:
            resp = self.ec2.create_snapshot(
                VolumeId=volume.id,
                Description=SNAPSHOT_DESCRIPTION,
                TagSpecifications=[
                    {"ResourceType": "snapshot", "Tags": [MANAGED_BY_TAG]}
                ],
            )
        except (ClientError, BotoCoreError) as exc:
            raise SnapshotOperationError(str(exc)) from exc
        logger.debug(f"EC2 accepted snapshot {resp.get('SnapshotId')} for volume {volume.id}")

    def remove_snapshot(self, snapshot: Snapshot) -> None:
        try:
            self.ec2.delete_snapshot(SnapshotId=snapshot.id)
        except (ClientError, BotoCoreError) as exc:
            raise SnapshotOperationError(str(exc)) from exc
