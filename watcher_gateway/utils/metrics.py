"""Prometheus metrics registration for the federation gateway.

All metric objects are defined at import time on the default registry and
exposed through ``/metrics``. Per-operation resolver metrics live in
``watcher_gateway.core.instrumentation.metrics`` because they are owned by an
injected sink rather than by this module.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

gateway_backend_requests_total = Counter(
    "gateway_backend_requests_total",
    "Operations forwarded to watcher backends",
    ["prefix", "status"],
)
gateway_backend_request_duration_seconds = Histogram(
    "gateway_backend_request_duration_seconds",
    "Round-trip duration of operations forwarded to watcher backends",
    ["prefix"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)
gateway_active_subscriptions = Gauge(
    "gateway_active_subscriptions",
    "Backend subscriptions currently held open on behalf of clients",
    ["prefix"],
)
gateway_startup_failures_total = Counter(
    "gateway_startup_failures_total",
    "Gateway schema construction failures",
    ["reason"],
)
gateway_root_fields = Gauge(
    "gateway_root_fields",
    "Root fields contributed by each backend to the federated schema",
    ["prefix"],
)
