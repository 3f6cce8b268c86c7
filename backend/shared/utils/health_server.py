"""
GET /health for the scheduler process.

The report carries the provider view (breaker state, request and error
counters) and per-job run counts. An open breaker or a failing status
callback is reported as `degraded` with HTTP 503 so orchestrators can tell a
provider outage from a dead process. Served from a daemon thread on PORT;
nothing is started when PORT is unset.
"""
from __future__ import annotations

import json
import os
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)

StatusProvider = Callable[[], dict[str, Any]]

HEALTH_PATHS = frozenset({"/health", "/health/"})


def render_health(
    service_name: str, status_provider: Optional[StatusProvider] = None
) -> tuple[int, bytes]:
    """Build the /health response as `(http_status, json_body)`."""
    report: dict[str, Any] = {"status": "ok", "service": service_name}
    if status_provider is not None:
        try:
            report.update(status_provider())
        except Exception as exc:
            report["status"] = "degraded"
            report["error"] = str(exc)

    provider = report.get("provider")
    if isinstance(provider, dict) and provider.get("circuit_state") == "open":
        report["status"] = "degraded"

    code = HTTPStatus.OK if report["status"] == "ok" else HTTPStatus.SERVICE_UNAVAILABLE
    return int(code), json.dumps(report, default=str).encode("utf-8")


def _handler_for(service_name: str, status_provider: Optional[StatusProvider]) -> type[BaseHTTPRequestHandler]:
    class HealthHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if self.path not in HEALTH_PATHS:
                self.send_error(HTTPStatus.NOT_FOUND)
                return
            code, body = render_health(service_name, status_provider)
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:
            return None

    return HealthHandler


def start_health_server(
    service_name: str,
    status_provider: Optional[StatusProvider] = None,
) -> Optional[ThreadingHTTPServer]:
    """Serve /health on PORT in a daemon thread. Returns the server, or None when PORT is unset."""
    raw_port = os.environ.get("PORT")
    if not raw_port:
        return None
    try:
        port = int(raw_port)
    except ValueError:
        logger.warning("health_server_bad_port", port=raw_port)
        return None

    server = ThreadingHTTPServer(("0.0.0.0", port), _handler_for(service_name, status_provider))
    threading.Thread(target=server.serve_forever, name="health-server", daemon=True).start()
    logger.info("health_server_started", port=port)
    return server
