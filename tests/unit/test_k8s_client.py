"""Unit tests for the Kubernetes VolumeSnapshot backend."""

from datetime import datetime, timedelta, UTC
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from snapshotter.clients.k8s import (
    GROUP,
    PLURAL,
    VERSION,
    KubernetesClient,
    snapshot_from_object,
)
from snapshotter.metrics import SnapshotMetrics
from snapshotter.models import Label, SnapshotRule
from snapshotter.reconciler import Reconciler
from snapshotter.errors import InventoryError, ReconcileError, SnapshotOperationError
from snapshotter.models import STATE_COMPLETED, STATE_ERROR, STATE_PENDING, Snapshot, Volume

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def pvc(name, namespace, labels=None):
    return SimpleNamespace(metadata=SimpleNamespace(name=name, namespace=namespace, labels=labels))


def pvc_list(items, token=None):
    return SimpleNamespace(items=items, metadata=SimpleNamespace(_continue=token))


def volume_snapshot(name, namespace, pvc_name, created="2026-03-01T10:00:00Z", status=None):
    return {
        "metadata": {"name": name, "namespace": namespace, "creationTimestamp": created},
        "spec": {"source": {"persistentVolumeClaimName": pvc_name}},
        "status": status,
    }


@pytest.fixture
def core_api():
    return MagicMock()


@pytest.fixture
def custom_api():
    return MagicMock()


@pytest.fixture
def k8s(core_api, custom_api):
    return KubernetesClient(core_api, custom_api, "longhorn", clock=lambda: NOW)


class TestSnapshotFromObject:
    """Translation of VolumeSnapshot objects."""

    def test_ready_snapshot(self):
        snap = snapshot_from_object(volume_snapshot(
            "data-snap-1", "db", "data", status={"readyToUse": True, "creationTime": "2026-03-01T09:00:00Z"}
        ))

        assert snap.id == "db/data-snap-1"
        assert snap.volume_id == "db/data"
        assert snap.state == STATE_COMPLETED
        assert snap.start_time == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    def test_falls_back_to_creation_timestamp(self):
        snap = snapshot_from_object(volume_snapshot("s", "db", "data"))

        assert snap.start_time == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert snap.state == STATE_PENDING

    def test_error_status(self):
        snap = snapshot_from_object(volume_snapshot(
            "s", "db", "data", status={"readyToUse": False, "error": {"message": "csi failed"}}
        ))

        assert snap.state == STATE_ERROR

    def test_pre_provisioned_snapshot_is_skipped(self):
        obj = volume_snapshot("s", "db", "data")
        obj["spec"]["source"] = {"volumeSnapshotContentName": "content-1"}

        assert snapshot_from_object(obj) is None


class TestKubernetesClient:
    """Tests for KubernetesClient."""

    def test_volumes_from_all_namespaces(self, k8s, core_api):
        core_api.list_persistent_volume_claim_for_all_namespaces.side_effect = [
            pvc_list([pvc("data", "db", {"snapshot": "hourly"})], token="next"),
            pvc_list([pvc("cache", "web")]),
        ]

        volumes = k8s.get_volumes()

        assert set(volumes) == {"db/data", "web/cache"}
        assert volumes["db/data"].tags == {"snapshot": "hourly"}
        assert volumes["db/data"].pvc_namespace == "db"
        second_call = core_api.list_persistent_volume_claim_for_all_namespaces.call_args_list[1]
        assert second_call.kwargs["_continue"] == "next"

    def test_volumes_in_one_namespace(self, core_api, custom_api):
        core_api.list_namespaced_persistent_volume_claim.return_value = pvc_list([pvc("data", "db")])
        client = KubernetesClient(core_api, custom_api, "longhorn", namespace="db")

        assert list(client.get_volumes()) == ["db/data"]
        core_api.list_persistent_volume_claim_for_all_namespaces.assert_not_called()

    def test_volume_listing_error(self, k8s, core_api):
        core_api.list_persistent_volume_claim_for_all_namespaces.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(InventoryError):
            k8s.get_volumes()

    def test_snapshots_across_pages(self, k8s, custom_api):
        custom_api.list_cluster_custom_object.side_effect = [
            {"items": [volume_snapshot("a", "db", "data")], "metadata": {"continue": "tok"}},
            {"items": [volume_snapshot("b", "db", "data")], "metadata": {}},
        ]

        snapshots = k8s.get_snapshots()

        assert [s.id for s in snapshots] == ["db/a", "db/b"]
        first_call = custom_api.list_cluster_custom_object.call_args_list[0]
        assert first_call.args == (GROUP, VERSION, PLURAL)

    def test_snapshot_listing_error(self, k8s, custom_api):
        custom_api.list_cluster_custom_object.side_effect = ApiException(status=500, reason="boom")

        with pytest.raises(InventoryError):
            k8s.get_snapshots()

    def test_create_renders_manifest(self, k8s, custom_api):
        volume = Volume(id="db/data", pvc_name="data", pvc_namespace="db")

        k8s.create_snapshot(volume)

        args = custom_api.create_namespaced_custom_object.call_args.args
        assert args[:4] == (GROUP, VERSION, "db", PLURAL)
        body = args[4]
        assert body["kind"] == "VolumeSnapshot"
        assert body["metadata"]["name"] == "data-snap-20260301120000"
        assert body["metadata"]["namespace"] == "db"
        assert body["spec"]["volumeSnapshotClassName"] == "longhorn"
        assert body["spec"]["source"]["persistentVolumeClaimName"] == "data"

    def test_create_error(self, k8s, custom_api):
        custom_api.create_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(SnapshotOperationError, match="Conflict"):
            k8s.create_snapshot(Volume(id="db/data", pvc_name="data", pvc_namespace="db"))

    def test_remove_snapshot(self, k8s, custom_api):
        k8s.remove_snapshot(Snapshot(id="db/data-snap-1", volume_id="db/data", start_time=NOW))

        custom_api.delete_namespaced_custom_object.assert_called_once_with(
            GROUP, VERSION, "db", PLURAL, "data-snap-1"
        )

    def test_remove_missing_snapshot_is_not_an_error(self, k8s, custom_api):
        custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

        k8s.remove_snapshot(Snapshot(id="db/gone", volume_id="db/data", start_time=NOW))

    def test_remove_error(self, k8s, custom_api):
        custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=500, reason="boom")

        with pytest.raises(SnapshotOperationError):
            k8s.remove_snapshot(Snapshot(id="db/s", volume_id="db/data", start_time=NOW))

    @pytest.mark.parametrize("name", ["123", "on", "null", "1e3"])
    def test_create_keeps_pvc_name_a_string(self, k8s, custom_api, name):
        k8s.create_snapshot(Volume(id=f"db/{name}", pvc_name=name, pvc_namespace="db"))

        body = custom_api.create_namespaced_custom_object.call_args.args[4]
        assert body["metadata"]["labels"]["pvc"] == name
        assert body["spec"]["source"]["persistentVolumeClaimName"] == name
        assert body["metadata"]["name"] == f"{name}-snap-20260301120000"


def connection_refused():
    return MaxRetryError(pool=None, url="/apis", reason="connection refused")


class TestTransportErrors:
    """Connection failures below the API layer."""

    def test_volume_listing(self, k8s, core_api):
        core_api.list_persistent_volume_claim_for_all_namespaces.side_effect = connection_refused()

        with pytest.raises(InventoryError, match="persistent volume claims"):
            k8s.get_volumes()

    def test_snapshot_listing(self, k8s, custom_api):
        custom_api.list_cluster_custom_object.side_effect = ReadTimeoutError(
            pool=None, url="/apis", message="read timed out"
        )

        with pytest.raises(InventoryError, match="volume snapshots"):
            k8s.get_snapshots()

    def test_create(self, k8s, custom_api):
        custom_api.create_namespaced_custom_object.side_effect = connection_refused()

        with pytest.raises(SnapshotOperationError):
            k8s.create_snapshot(Volume(id="db/data", pvc_name="data", pvc_namespace="db"))

    def test_remove(self, k8s, custom_api):
        custom_api.delete_namespaced_custom_object.side_effect = connection_refused()

        with pytest.raises(SnapshotOperationError):
            k8s.remove_snapshot(Snapshot(id="db/s", volume_id="db/data", start_time=NOW))

    def test_failed_create_does_not_abort_pass(self, k8s, core_api, custom_api):
        core_api.list_persistent_volume_claim_for_all_namespaces.return_value = pvc_list([
            pvc("data", "db", {"backup": "true"}),
            pvc("logs", "db", {"backup": "true"}),
        ])
        custom_api.list_cluster_custom_object.return_value = {"items": [], "metadata": {}}
        custom_api.create_namespaced_custom_object.side_effect = [connection_refused(), {}]
        rule = SnapshotRule(Label("backup", "true"), timedelta(hours=1), timedelta(hours=24))

        outcome = Reconciler(k8s, SnapshotMetrics(), clock=lambda: NOW).run([rule])

        assert outcome.created == ["db/logs"]
        assert len(outcome.errors) == 1

    def test_failed_listing_aborts_pass_cleanly(self, k8s, core_api):
        core_api.list_persistent_volume_claim_for_all_namespaces.side_effect = connection_refused()
        rule = SnapshotRule(Label("backup", "true"), timedelta(hours=1), timedelta(hours=24))

        with pytest.raises(ReconcileError, match="error while fetching volumes"):
            Reconciler(k8s, SnapshotMetrics(), clock=lambda: NOW).run([rule])
