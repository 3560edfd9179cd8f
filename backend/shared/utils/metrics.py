"""
Lightweight metrics collection for the verification services.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
ROWS_PROCESSED = Counter(
    "sv_rows_processed_total",
    "Submissions that reached a terminal state",
    ["outcome"],
)
JOBS_FINALIZED = Counter(
    "sv_jobs_finalized_total",
    "Job runs that wrote a terminal status",
    ["status"],
)
FETCH_REQUESTS = Counter(
    "sv_fetch_requests_total",
    "Outbound page fetches",
    ["source", "status"],
)
RATE_LIMIT_WAITS = Counter(
    "sv_rate_limit_waits_total",
    "Fetches that had to wait for a per-domain token",
    ["domain"],
)
NOTIFICATIONS = Counter(
    "sv_notifications_total",
    "Completion notification attempts",
    ["result"],
)

# ── Histograms ──────────────────────────────────────────────────────────
ROW_LATENCY = Histogram(
    "sv_row_latency_seconds",
    "Time from dispatch to terminal outcome for one submission",
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 8.0, 12.0, 20.0),
)
FETCH_LATENCY = Histogram(
    "sv_fetch_latency_seconds",
    "Outbound fetch latency in seconds",
    ["source"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
ACTIVE_JOB_RUNS = Gauge(
    "sv_active_job_runs",
    "Job runs currently executing in this process",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if labels:
            histogram.labels(**labels).observe(elapsed)
        else:
            histogram.observe(elapsed)


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
