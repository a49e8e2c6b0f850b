"""HTTP endpoints: Prometheus metrics plus operational status under ``/__/``.

``/__/health`` answers 200 while the process is up. ``/__/ready`` answers 503
until the first reconciliation pass has finished, then 200. Every other path
serves the metrics registry, so both ``/metrics`` and ``/_/metrics`` work.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, UTC
from socketserver import ThreadingMixIn
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app

logger = logging.getLogger(__name__)

NAME = "volume-snapshotter"
DESCRIPTION = "Creates volume snapshots at an interval and prunes expired ones"


class PassStatus:
    """Thread-safe record of the most recent reconciliation pass."""

    def __init__(self):
        self._lock = threading.Lock()
        self.last_finished: datetime | None = None
        self.last_ok: bool | None = None

    def record(self, ok: bool) -> None:
        with self._lock:
            self.last_finished = datetime.now(UTC)
            self.last_ok = ok

    @property
    def ready(self) -> bool:
        return self.last_finished is not None

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": NAME,
                "description": DESCRIPTION,
                "ready": self.last_finished is not None,
                "last_pass_finished": (
                    self.last_finished.isoformat() if self.last_finished else None
                ),
                "last_pass_ok": self.last_ok,
            }


def make_app(registry: CollectorRegistry, status: PassStatus):
    """Build the WSGI application serving metrics and status pages."""
    metrics_app = make_wsgi_app(registry)

    def respond(start_response, code: str, payload: dict[str, Any]) -> list[bytes]:
        body = json.dumps(payload).encode("utf-8")
        start_response(code, [
            ("Content-Type", "application/json"),
            ("Content-Length", str(len(body))),
        ])
        return [body]

    def app(environ, start_response):
        path = environ.get("PATH_INFO", "")
        if path in ("/__/health", "/__/about"):
            return respond(start_response, "200 OK", status.as_dict())
        if path == "/__/ready":
            code = "200 OK" if status.ready else "503 Service Unavailable"
            return respond(start_response, code, status.as_dict())
        if path.startswith("/__/"):
            return respond(start_response, "404 Not Found", {"error": "not found"})
        return metrics_app(environ, start_response)

    return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} {format % args}")


def start_server(port: int, registry: CollectorRegistry, status: PassStatus) -> WSGIServer:
    """Serve metrics and status pages on ``port`` from a daemon thread."""
    httpd = make_server(
        "", port, make_app(registry, status),
        server_class=_ThreadingWSGIServer,
        handler_class=_QuietHandler,
    )
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return httpd
