"""
Prometheus metrics for the token supply registry.

Exposes RPC, probe and resolution metrics for monitoring and observability.
"""

import time

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)

# Create a custom registry to avoid conflicts
REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "supply_registry",
    "Token supply registry application info",
    registry=REGISTRY,
)
APP_INFO.info({
    "version": "1.0.0",
    "name": "supply-registry",
})

# RPC metrics
RPC_REQUESTS_TOTAL = Counter(
    "supply_registry_rpc_requests_total",
    "Total number of RPC requests",
    ["endpoint", "method", "status"],
    registry=REGISTRY,
)

RPC_REQUEST_DURATION_SECONDS = Histogram(
    "supply_registry_rpc_request_duration_seconds",
    "RPC request duration in seconds",
    ["endpoint", "method"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

RPC_ERRORS_TOTAL = Counter(
    "supply_registry_rpc_errors_total",
    "Total number of RPC errors",
    ["endpoint", "error_type"],
    registry=REGISTRY,
)

PROBES_TOTAL = Counter(
    "supply_registry_probes_total",
    "Endpoint liveness probes by result",
    ["endpoint", "result"],
    registry=REGISTRY,
)

# Resolution metrics
RESOLUTIONS_TOTAL = Counter(
    "supply_registry_resolutions_total",
    "Metadata resolutions by chain, outcome and path",
    ["chain", "outcome", "path"],
    registry=REGISTRY,
)

RESOLUTION_DURATION_SECONDS = Histogram(
    "supply_registry_resolution_duration_seconds",
    "Metadata resolution duration in seconds",
    ["chain"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

REGISTERED_TOKENS = Gauge(
    "supply_registry_registered_tokens",
    "Number of registered token records",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Get all metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the Prometheus content type."""
    return CONTENT_TYPE_LATEST


def record_rpc_call(
    endpoint: str,
    method: str,
    status: str,
    duration: float,
    error: BaseException | None = None,
):
    RPC_REQUESTS_TOTAL.labels(endpoint=endpoint, method=method, status=status).inc()
    RPC_REQUEST_DURATION_SECONDS.labels(endpoint=endpoint, method=method).observe(duration)
    if error is not None:
        RPC_ERRORS_TOTAL.labels(endpoint=endpoint, error_type=type(error).__name__).inc()


def record_probe(endpoint: str, result: str):
    PROBES_TOTAL.labels(endpoint=endpoint, result=result).inc()


def record_resolution(chain: str, outcome: str, path: str):
    RESOLUTIONS_TOTAL.labels(chain=chain, outcome=outcome, path=path).inc()


def update_token_count(count: int):
    REGISTERED_TOKENS.set(count)


class ResolutionTimer:
    """Context manager for timing metadata resolutions."""

    def __init__(self, chain: str):
        self._chain = chain
        self._start_time = None

    def __enter__(self):
        self._start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self._start_time
        RESOLUTION_DURATION_SECONDS.labels(chain=self._chain).observe(duration)
        return False  # Don't suppress exceptions
