"""cacheflow — Prometheus Metrics Utilities."""

from __future__ import annotations

import time

import psutil
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)


# ────────── Base collectors ──────────
MET_ERRORS_TOTAL = Counter("cacheflow_errors_total", "Total errors", ["type", "component"])
MET_REQUESTS_TOTAL = Counter(
    "cacheflow_requests_total", "Cache dispatcher calls", ["outcome", "location"]
)
LAT_PRODUCER = Histogram("cacheflow_producer_latency_seconds", "Producer (uncached) latency")
LAT_STORE = Histogram("cacheflow_store_latency_seconds", "Entry store operation latency", ["backend"])

# ────────── Sweeper ──────────
MET_SWEEP_REMOVED = Counter("cacheflow_sweep_removed_total", "Expired entries removed by the sweeper")
MET_SWEEP_ERRORS = Counter("cacheflow_sweep_errors_total", "Sweeper ticks aborted by a backend error")

# ────────── Size gauges ──────────
LOCAL_BYTES = Gauge("cacheflow_local_bytes", "Estimated bytes held by the local backend")
REMOTE_BYTES = Gauge("cacheflow_remote_bytes", "Memory reported by the remote backend")

# ────────── System gauges ──────────
SYSTEM_CPU = Gauge("cacheflow_system_cpu_percent", "CPU usage %")
SYSTEM_MEM = Gauge("cacheflow_system_mem_percent", "Memory usage %")
PROCESS_UPTIME = Gauge("cacheflow_process_uptime_seconds", "Process uptime")

_START = time.monotonic()
PROCESS_UPTIME.set(0.0)


# ────────── Helpers ──────────
def update_system_metrics() -> None:
    """Push basic host metrics (requires *psutil*)."""
    SYSTEM_CPU.set(psutil.cpu_percent())
    SYSTEM_MEM.set(psutil.virtual_memory().percent)
    PROCESS_UPTIME.set(time.monotonic() - _START)


def get_prometheus_metrics() -> str:
    """Return metrics text for `/metrics` endpoint."""
    return generate_latest().decode()


def get_metrics_content_type() -> str:
    """Return content-type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
