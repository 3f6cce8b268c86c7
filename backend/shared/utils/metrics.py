"""
Lightweight metrics collection for matchsync.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Provider ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ms_provider_requests_total",
    "Total provider HTTP attempts",
    ["provider", "endpoint", "status"],
)
PROVIDER_RETRIES = Counter(
    "ms_provider_retries_total",
    "Provider attempts retried after a transient failure",
    ["provider", "endpoint", "reason"],
)
PROVIDER_LATENCY = Histogram(
    "ms_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider", "endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
RATE_LIMIT_WAIT = Histogram(
    "ms_rate_limit_wait_seconds",
    "Time spent waiting for a rate-limit slot",
    ["key"],
    buckets=(0.0, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)
CIRCUIT_STATE = Gauge(
    "ms_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["name"],
)
CIRCUIT_TRANSITIONS = Counter(
    "ms_circuit_transitions_total",
    "Circuit breaker state transitions",
    ["name", "transition"],
)

# ── Reconciliation ──────────────────────────────────────────────────────
RECONCILE_OUTCOMES = Counter(
    "ms_reconcile_outcomes_total",
    "Reconcile calls by outcome",
    ["outcome"],
)
WATCHDOG_OUTCOMES = Counter(
    "ms_watchdog_outcomes_total",
    "Watchdog candidates by kind and outcome",
    ["kind", "outcome"],
)
FINALIZER_DATASETS = Counter(
    "ms_finalizer_datasets_total",
    "Post-match dataset outcomes",
    ["dataset", "outcome"],
)
DIARY_INSERTS = Counter(
    "ms_diary_inserts_total",
    "Matches created from the provider diary",
)
DATA_UPDATE_OUTCOMES = Counter(
    "ms_data_update_outcomes_total",
    "Changed matches from /data/update by outcome",
    ["outcome"],
)
LINEUP_OUTCOMES = Counter(
    "ms_lineup_outcomes_total",
    "Pre-match lineup fetches by outcome",
    ["outcome"],
)

# ── Jobs ────────────────────────────────────────────────────────────────
JOB_RUNS = Counter(
    "ms_job_runs_total",
    "Periodic job runs",
    ["job", "result"],
)
JOB_DURATION = Histogram(
    "ms_job_duration_seconds",
    "Duration of one periodic job run",
    ["job"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Iterator[None]:
    """Observe the block's wall time on `histogram`, whether it returns or raises."""
    started = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - started)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
