"""
Prometheus metrics for the update ledger.

Exposes counters and histograms via an HTTP /metrics endpoint for
Prometheus scraping.

Environment Variables:
    WARDEN_METRICS_ENABLED: Enable metrics server (true/false) - default: false
    WARDEN_METRICS_PORT: HTTP port for /metrics endpoint - default: 9090

Usage:
    from warden.metrics import start_metrics_server, record_transition

    start_metrics_server(enabled=True, port=9090)
    record_transition("applied")

Recording helpers are no-ops until init_metrics() has run, so library code
can call them unconditionally.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

EVENTS_TOTAL: "Counter" = None  # type: ignore
TRANSITIONS_TOTAL: "Counter" = None  # type: ignore
APPLIER_DURATION: "Histogram" = None  # type: ignore
RECOVERY_ACTIONS_TOTAL: "Counter" = None  # type: ignore

_metrics_initialized = False
_metrics_lock = threading.Lock()


def init_metrics() -> None:
    """
    Initialize Prometheus metrics (call once at startup).

    Thread-safe via module-level lock; repeated calls are ignored.
    """
    global EVENTS_TOTAL, TRANSITIONS_TOTAL, APPLIER_DURATION, RECOVERY_ACTIONS_TOTAL
    global _metrics_initialized

    with _metrics_lock:
        if _metrics_initialized:
            return

        EVENTS_TOTAL = Counter(
            "warden_events_total",
            "Total number of events appended to the event log",
            labelnames=["kind"],
        )

        TRANSITIONS_TOTAL = Counter(
            "warden_transitions_total",
            "Total number of update state transitions",
            labelnames=["to_state"],
        )

        APPLIER_DURATION = Histogram(
            "warden_applier_duration_seconds",
            "Duration of applier calls in seconds",
            labelnames=["operation", "outcome"],
            buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
        )

        RECOVERY_ACTIONS_TOTAL = Counter(
            "warden_recovery_actions_total",
            "Total number of autonomous recovery fix-ups",
            labelnames=["action"],
        )

        _metrics_initialized = True
        logger.info("Prometheus metrics initialized")


def start_metrics_server(enabled: bool, port: int) -> None:
    """
    Start Prometheus metrics HTTP server in a background daemon thread.

    Args:
        enabled: Whether to start the server
        port: HTTP port for /metrics endpoint
    """
    if not enabled:
        logger.debug("Metrics server disabled")
        return

    init_metrics()

    try:
        start_http_server(port, addr="0.0.0.0")
        logger.info(f"Metrics server started on http://0.0.0.0:{port}/metrics")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")


def record_event(kind: str) -> None:
    if EVENTS_TOTAL is not None:
        EVENTS_TOTAL.labels(kind=kind).inc()


def record_transition(to_state: str) -> None:
    if TRANSITIONS_TOTAL is not None:
        TRANSITIONS_TOTAL.labels(to_state=to_state).inc()


def record_recovery(action: str) -> None:
    if RECOVERY_ACTIONS_TOTAL is not None:
        RECOVERY_ACTIONS_TOTAL.labels(action=action).inc()


@contextmanager
def track_applier_duration(operation: str) -> Generator[dict, None, None]:
    """
    Time an applier call.

    The caller sets outcome["outcome"] before leaving the block; it defaults
    to "error" so an exception escaping the block is labelled as such.
    """
    outcome = {"outcome": "error"}
    start = time.monotonic()
    try:
        yield outcome
    finally:
        if APPLIER_DURATION is not None:
            APPLIER_DURATION.labels(operation=operation, outcome=outcome["outcome"]).observe(
                time.monotonic() - start
            )
