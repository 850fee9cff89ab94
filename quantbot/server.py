"""HTTP server exposing metrics, health, readiness and liveness endpoints."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

from quantbot.metrics import REGISTRY, Registry

__all__ = ["ServerConfig", "Check", "HealthStatus", "MetricsServer"]

Response = tuple[int, str, bytes]

_TEXT = "text/plain; charset=utf-8"
_JSON = "application/json"
_METRICS = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class ServerConfig:
    """Where the metrics server listens and which paths it serves."""

    port: int = 9090
    metrics_path: str = "/metrics"
    health_path: str = "/health"


@dataclass
class Check:
    """Outcome of a single health check."""

    status: str
    message: str = ""


@dataclass
class HealthStatus:
    """Body of a health check response."""

    status: str
    timestamp: datetime
    uptime: str
    checks: dict[str, Check] = field(default_factory=dict)


HealthChecker = Callable[[], Check]


def _check_to_dict(check: Check) -> dict[str, str]:
    result = {"status": check.status}
    if check.message:
        result["message"] = check.message
    return result


def _health_to_dict(status: HealthStatus) -> dict[str, object]:
    return {
        "status": status.status,
        "timestamp": status.timestamp.isoformat(),
        "uptime": status.uptime,
        "checks": {name: _check_to_dict(c) for name, c in status.checks.items()},
    }


def _scaled(ns: int, unit_ns: int) -> str:
    whole, frac = divmod(ns, unit_ns)
    text = str(whole)
    if frac:
        width = len(str(unit_ns)) - 1
        text += "." + f"{frac:0{width}d}".rstrip("0")
    return text


def _format_duration(seconds: float) -> str:
    """Render a duration such as 1h2m3.5s, 12.5ms or 0s."""
    ns = int(round(seconds * 1e9))
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_scaled(ns, 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_scaled(ns, 1_000_000)}ms"
    hours, rem = divmod(ns, 3600 * 10**9)
    minutes, rem = divmod(rem, 60 * 10**9)
    secs = _scaled(rem, 10**9)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


class MetricsServer:
    """Serves metrics and health endpoints from a background thread."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        logger: logging.Logger | None = None,
        registry: Registry = REGISTRY,
    ) -> None:
        self.config = config if config is not None else ServerConfig()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._registry = registry
        self._start_time = time.monotonic()
        self._lock = threading.Lock()
        self._checkers: dict[str, HealthChecker] = {}
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self.address: tuple[str, int] | None = None

    def register_health_check(self, name: str, checker: HealthChecker) -> None:
        """Add or replace a named health check."""
        with self._lock:
            self._checkers[name] = checker

    def _snapshot_checkers(self) -> dict[str, HealthChecker]:
        with self._lock:
            return dict(self._checkers)

    def uptime(self) -> float:
        """Seconds since the server was created."""
        return time.monotonic() - self._start_time

    def health_response(self) -> Response:
        """Run every check and report the overall health as JSON."""
        checks = {name: checker() for name, checker in self._snapshot_checkers().items()}
        overall = "healthy"
        if any(check.status != "healthy" for check in checks.values()):
            overall = "unhealthy"
        status = HealthStatus(
            status=overall,
            timestamp=datetime.now(timezone.utc),
            uptime=_format_duration(self.uptime()),
            checks=checks,
        )
        body = (json.dumps(_health_to_dict(status)) + "\n").encode("utf-8")
        code = 200 if overall == "healthy" else 503
        return code, _JSON, body

    def ready_response(self) -> Response:
        """Readiness: ready only when every check is healthy."""
        for checker in self._snapshot_checkers().values():
            if checker().status != "healthy":
                return 503, _TEXT, b"not ready"
        return 200, _TEXT, b"ready"

    def live_response(self) -> Response:
        """Liveness: always alive while the process answers."""
        return 200, _TEXT, b"alive"

    def metrics_response(self) -> Response:
        """The registry rendered in the text exposition format."""
        return 200, _METRICS, self._registry.exposition().encode("utf-8")

    def _route(self, path: str) -> Response:
        routes = {
            self.config.metrics_path: self.metrics_response,
            self.config.health_path: self.health_response,
            "/ready": self.ready_response,
            "/live": self.live_response,
        }
        handler = routes.get(path)
        if handler is None:
            return 404, _TEXT, b"404 page not found\n"
        return handler()

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        owner = self

        class _Handler(BaseHTTPRequestHandler):
            timeout = 5

            def do_GET(self) -> None:  # noqa: N802
                code, content_type, body = owner._route(urlsplit(self.path).path)
                self.send_response(code)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            do_POST = do_GET

            def log_message(self, format: str, *args: object) -> None:  # noqa: A002
                owner._logger.debug(format, *args)

        return _Handler

    def start(self) -> None:
        """Bind the port and serve requests in a background thread."""
        if self._httpd is not None:
            raise RuntimeError("metrics server already started")
        self._logger.info(
            "starting metrics server port=%s metrics_path=%s health_path=%s",
            self.config.port,
            self.config.metrics_path,
            self.config.health_path,
        )
        httpd = ThreadingHTTPServer(("", self.config.port), self._make_handler())
        httpd.daemon_threads = True
        self._httpd = httpd
        host, port = httpd.server_address[:2]
        self.address = (str(host), int(port))
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        """Stop serving and release the port."""
        self._logger.info("shutting down metrics server")
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        self._httpd = None
        self._thread = None
        self.address = None