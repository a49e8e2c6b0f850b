"""Shared fixtures for the snapshotter tests."""

from datetime import datetime, timedelta, UTC

import pytest

from snapshotter.metrics import SnapshotMetrics
from snapshotter.models import Label, SnapshotRule
from snapshotter.reconciler import Reconciler
from tests.fakes import FakeInventoryClient

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
INTERVAL = timedelta(seconds=11)
RETENTION = timedelta(hours=10)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def rule():
    """Rule selecting volumes tagged test-key-1=test-value-1."""
    return SnapshotRule(
        labels=Label("test-key-1", "test-value-1"),
        interval=INTERVAL,
        retention_period=RETENTION,
    )


@pytest.fixture
def metrics():
    """Fresh metrics with their own registry."""
    return SnapshotMetrics()


@pytest.fixture
def client():
    return FakeInventoryClient(clock=lambda: NOW)


@pytest.fixture
def sleeps():
    """Records every pacing delay requested by the reconciler."""
    return []


@pytest.fixture
def reconciler(client, metrics, sleeps):
    return Reconciler(client, metrics, clock=lambda: NOW, sleep=sleeps.append)
