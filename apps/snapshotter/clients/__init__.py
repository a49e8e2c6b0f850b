"""Inventory backends for the snapshotter."""

from .base import InventoryClient
from .ebs import EBSClient
from .k8s import KubernetesClient

__all__ = [
    'InventoryClient',
    'EBSClient',
    'KubernetesClient',
]
