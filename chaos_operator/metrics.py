# chaos_operator/metrics.py
"""
Chaos Operator Metrics
----------------------
Prometheus metric definitions on a dedicated registry, plus the helper that
exposes them over HTTP.
"""

from __future__ import annotations

import os
import time
import logging
import threading
import contextlib
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server

LOG = logging.getLogger("chaosoperator.metrics")

PROM_ADDR = os.getenv("CHAOS_OPERATOR_PROMETHEUS_ADDR", "0.0.0.0")

# -----------------------------------------------------------------------------
# Prometheus metric definitions (central registry)
# -----------------------------------------------------------------------------
REGISTRY = CollectorRegistry(auto_describe=False)

# Counters
RECONCILE_TOTAL = Counter(
    "chaosoperator_reconcile_total", "Reconcile passes by outcome", ["result"], registry=REGISTRY
)
RECONCILE_ERRORS = Counter(
    "chaosoperator_reconcile_errors_total", "Reconcile failures by phase", ["phase"], registry=REGISTRY
)
RUNNER_PODS_CREATED = Counter(
    "chaosoperator_runner_pods_created_total", "Runner pods created", registry=REGISTRY
)
EVENTS_EMITTED = Counter(
    "chaosoperator_events_emitted_total", "Kubernetes events emitted", ["reason", "type"], registry=REGISTRY
)
WORKQUEUE_RETRIES = Counter(
    "chaosoperator_workqueue_retries_total", "Keys re-added with backoff", registry=REGISTRY
)
# Gauges
WORKQUEUE_DEPTH = Gauge(
    "chaosoperator_workqueue_depth", "Keys waiting in the work queue", registry=REGISTRY
)
WORKERS_BUSY = Gauge(
    "chaosoperator_workers_busy", "Workers currently reconciling", registry=REGISTRY
)
# Histograms
RECONCILE_DURATION = Histogram(
    "chaosoperator_reconcile_duration_seconds",
    "Reconcile pass latency seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 180, 300),
    registry=REGISTRY,
)


@contextlib.contextmanager
def time_reconcile() -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        RECONCILE_DURATION.observe(time.perf_counter() - start)


def record_result(result: str, phase: Optional[str] = None):
    RECONCILE_TOTAL.labels(result=result).inc()
    if phase:
        RECONCILE_ERRORS.labels(phase=phase).inc()


def render_latest() -> bytes:
    return generate_latest(REGISTRY)


_server_lock = threading.Lock()
_server_started = False


def start_metrics_server(port: int, addr: str = PROM_ADDR):
    """Expose REGISTRY on addr:port from a background thread. Idempotent."""
    global _server_started
    with _server_lock:
        if _server_started:
            return
        start_http_server(port, addr, registry=REGISTRY)
        _server_started = True
        LOG.info("Prometheus metrics exposed on %s:%d", addr, port)


__all__ = [
    "REGISTRY",
    "RECONCILE_TOTAL",
    "RECONCILE_ERRORS",
    "RUNNER_PODS_CREATED",
    "EVENTS_EMITTED",
    "WORKQUEUE_RETRIES",
    "WORKQUEUE_DEPTH",
    "WORKERS_BUSY",
    "RECONCILE_DURATION",
    "time_reconcile",
    "record_result",
    "render_latest",
    "start_metrics_server",
]
