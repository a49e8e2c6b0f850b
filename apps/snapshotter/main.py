"""Keep labelled volumes snapshotted and prune expired snapshots.

Every poll interval the controller lists volumes and snapshots from the
selected backend, creates a snapshot for each matching volume whose latest
snapshot is too old, and deletes snapshots past their retention period.
Counters are served on ``/metrics`` for Prometheus, and health and
readiness pages under ``/__/``.

Configuration precedence for each setting: CLI flag > environment variable >
built-in default.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Any

from snapshotter.clients.base import InventoryClient
from snapshotter.clients.ebs import EBSClient, init_ec2_client
from snapshotter.clients.k8s import KubernetesClient, init_clients
from snapshotter.config import DEFAULT_RETENTION_HOURS, load_rules, resolve_config_path
from snapshotter.errors import ConfigError, InventoryError, ReconcileError
from snapshotter.metrics import SnapshotMetrics
from snapshotter.models import SnapshotRule
from snapshotter.reconciler import DELETE_DELAY_SECONDS, Reconciler
from snapshotter.server import PassStatus, start_server

logger = logging.getLogger(__name__)

BACKENDS = ("ebs", "kubernetes")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags, falling back to environment variables."""
    parser = argparse.ArgumentParser(description="Snapshot labelled volumes automatically")
    parser.add_argument(
        "-c", "--config",
        help=(
            "Path to rules file. Overrides VOLUME_SNAPSHOT_CONFIG_FILE, "
            "APP_CONFIG and default /config/config.yaml"
        ),
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=os.getenv("SNAPSHOT_BACKEND", "ebs"),
        help="Inventory backend (default: ebs)",
    )
    parser.add_argument(
        "--region",
        default=os.getenv("AWS_REGION"),
        help="AWS region for the ebs backend",
    )
    parser.add_argument(
        "--namespace",
        default=os.getenv("SNAPSHOT_NAMESPACE"),
        help="Restrict the kubernetes backend to one namespace",
    )
    parser.add_argument(
        "--snapshot-class",
        default=os.getenv("SNAPSHOT_CLASS"),
        help="VolumeSnapshotClass used by the kubernetes backend",
    )
    parser.add_argument(
        "--poll-interval-seconds",
        type=int,
        default=int(os.getenv("POLL_INTERVAL_SECONDS", "1800")),
        help="Seconds between reconciliation passes (default: 1800)",
    )
    parser.add_argument(
        "--retention-period-hours",
        type=int,
        default=int(os.getenv("OLD_SNAPSHOTS_RETENTION_PERIOD_HOURS", str(DEFAULT_RETENTION_HOURS))),
        help="Retention for rules that do not set retentionPeriodHours (default: 168)",
    )
    parser.add_argument(
        "--delete-delay-seconds",
        type=float,
        default=float(os.getenv("DELETE_DELAY_SECONDS", str(DELETE_DELAY_SECONDS))),
        help="Pause between snapshot deletions for one volume (default: 2)",
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=int(os.getenv("HTTP_PORT", "8080")),
        help="Port serving /metrics and /__/ status pages (default: 8080, 0 disables)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(levelname)s] %(message)s',
        stream=sys.stdout
    )


def build_client(args: argparse.Namespace) -> InventoryClient:
    """Initialize the selected inventory backend.

    Raises:
        InventoryError: If the backend cannot be configured
    """
    if args.backend == "kubernetes":
        if not args.snapshot_class:
            raise InventoryError("kubernetes backend requires --snapshot-class")
        core_api, custom_api = init_clients()
        return KubernetesClient(core_api, custom_api, args.snapshot_class, args.namespace)

    return EBSClient(init_ec2_client(args.region))


def run_pass(
    reconciler: Reconciler,
    rules: list[SnapshotRule],
    status: PassStatus | None = None,
) -> bool:
    """Run one reconciliation pass, returning False if it was aborted."""
    try:
        outcome = reconciler.run(rules)
    except ReconcileError as exc:
        logger.error(f"Reconciliation pass aborted: {exc}")
        if status is not None:
            status.record(False)
        return False

    if status is not None:
        status.record(True)

    logger.info(
        f"Pass complete: {len(outcome.created)} created, "
        f"{len(outcome.deleted)} deleted, {len(outcome.up_to_date)} up to date, "
        f"{len(outcome.errors)} error(s)"
    )
    return True


def poll_forever(
    reconciler: Reconciler,
    rules: list[SnapshotRule],
    interval: float,
    stop_event: threading.Event,
    status: PassStatus | None = None,
) -> None:
    """Run passes back to back, waiting ``interval`` seconds after each.

    The wait starts only once a pass has returned, so passes never overlap.
    Setting ``stop_event`` ends the loop after the pass in progress.
    """
    while not stop_event.is_set():
        run_pass(reconciler, rules, status)
        if stop_event.wait(interval):
            break
        logger.info("Watching snapshots")


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Stop polling on SIGTERM/SIGINT once the current pass finishes."""
    def handle(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, stopping after current pass")
        stop_event.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


def main(argv: list[str] | None = None) -> None:
    """Program entry point: parse, load, init, execute."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    config_path = resolve_config_path(args.config)
    try:
        rules = load_rules(config_path, args.retention_period_hours)
    except ConfigError as exc:
        logger.error(str(exc))
        sys.exit(2)
    logger.info(f"Loaded {len(rules)} snapshot rule(s) from {config_path}")

    try:
        client = build_client(args)
    except InventoryError as exc:
        logger.error(f"Failed to initialize {args.backend} backend: {exc}")
        sys.exit(3)

    metrics = SnapshotMetrics()
    reconciler = Reconciler(client, metrics, delete_delay=args.delete_delay_seconds)

    if args.once:
        sys.exit(0 if run_pass(reconciler, rules) else 1)

    status = PassStatus()
    if args.http_port:
        start_server(args.http_port, metrics.registry, status)
        logger.info(f"Listening on port {args.http_port}")

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    poll_forever(reconciler, rules, args.poll_interval_seconds, stop_event, status)
    logger.info("Snapshotter stopped")


if __name__ == "__main__":
    main()
