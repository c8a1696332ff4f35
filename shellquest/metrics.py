"""Prometheus metrics exporter for ShellQuest.

Metrics exposed:
- Commands executed (by command name and result)
- Parse errors
- Access denials (by error kind)
- Elevated (sudo) runs and blocked attempts
- Snapshot restores (by result)
- Command latency
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Metric Definitions
# =============================================================================

commands_total = Counter(
    "shellquest_commands_total",
    "Total number of commands executed",
    ["command", "result"],  # result: success, error
)

parse_errors_total = Counter(
    "shellquest_parse_errors_total",
    "Command lines rejected by the parser",
)

access_denials_total = Counter(
    "shellquest_access_denials_total",
    "Operations refused by the access model",
    ["kind"],  # permission_denied, not_permitted, blocked
)

elevations_total = Counter(
    "shellquest_elevations_total",
    "Commands run through sudo",
    ["result"],  # allowed, blocked
)

restores_total = Counter(
    "shellquest_restores_total",
    "Snapshot restores",
    ["result"],  # success, rejected
)

command_latency = Histogram(
    "shellquest_command_latency_seconds",
    "Command execution time in seconds",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
)

system_info = Info(
    "shellquest_system",
    "ShellQuest system information",
)

uptime_seconds = Gauge(
    "shellquest_uptime_seconds",
    "Process uptime in seconds",
)

_DENIAL_KINDS = ("permission_denied", "not_permitted", "blocked")


# =============================================================================
# Metrics Collector Class
# =============================================================================


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self):
        self._start_time = time.time()
        system_info.info({"version": "0.1.0", "mode": "terminal"})
        logger.debug("Prometheus metrics collector initialized")

    def record_command(self, command: str, success: bool, latency: Optional[float] = None):
        """Record a command execution.

        Args:
            command: Command name (first word of the stage)
            success: Whether the command completed without error
            latency: Execution time in seconds (optional)
        """
        result = "success" if success else "error"
        commands_total.labels(command=command, result=result).inc()
        if latency is not None:
            command_latency.observe(latency)
        logger.debug("Command recorded: %s (%s)", command, result)

    def record_parse_error(self):
        """Record a syntax error."""
        parse_errors_total.inc()

    def record_denial(self, kind: str):
        """Record an access-model refusal; other error kinds are ignored."""
        if kind in _DENIAL_KINDS:
            access_denials_total.labels(kind=kind).inc()

    def record_elevation(self, blocked: bool):
        elevations_total.labels(result="blocked" if blocked else "allowed").inc()

    def record_restore(self, success: bool):
        restores_total.labels(result="success" if success else "rejected").inc()

    def update_uptime(self):
        """Update the uptime metric."""
        uptime_seconds.set(time.time() - self._start_time)

    def get_metrics(self) -> bytes:
        """Generate Prometheus metrics in text format."""
        self.update_uptime()
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# =============================================================================
# Global Metrics Instance
# =============================================================================

_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector():
    """Reset the global metrics collector (for testing)."""
    global _metrics_collector
    _metrics_collector = None


# =============================================================================
# HTTP Server for Metrics Endpoint
# =============================================================================


def start_metrics_server(port: int = 9090, host: str = "127.0.0.1"):
    """Start HTTP server for Prometheus metrics endpoint.

    Args:
        port: Port to listen on
        host: Host address to bind to
    """
    from http.server import HTTPServer, BaseHTTPRequestHandler
    from threading import Thread

    collector = get_metrics_collector()

    class MetricsHandler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/metrics":
                self.send_response(200)
                self.send_header("Content-Type", collector.get_content_type())
                self.end_headers()
                self.wfile.write(collector.get_metrics())
            elif self.path == "/health":
                self.send_response(200)
                self.send_header("Content-Type", "text/plain")
                self.end_headers()
                self.wfile.write(b"OK\n")
            else:
                self.send_response(404)
                self.end_headers()
                self.wfile.write(b"Not Found\n")

        def log_message(self, format, *args):
            # Terminal output belongs to the game.
            pass

    server = HTTPServer((host, port), MetricsHandler)

    def serve():
        logger.info("Metrics server started on http://%s:%d/metrics", host, port)
        server.serve_forever()

    thread = Thread(target=serve, daemon=True, name="MetricsServer")
    thread.start()

    return server
