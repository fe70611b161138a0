"""Resolver instrumentation shared by every watcher backend."""

from watcher_gateway.core.instrumentation.metrics import (
    InMemoryMetricsSink,
    MetricsSink,
    PrometheusMetricsSink,
)
from watcher_gateway.core.instrumentation.wrapper import (
    AUDIT_LOGGER_NAME,
    InstrumentedResolverWrapper,
    with_instrumentation,
)

__all__ = [
    "AUDIT_LOGGER_NAME",
    "InMemoryMetricsSink",
    "InstrumentedResolverWrapper",
    "MetricsSink",
    "PrometheusMetricsSink",
    "with_instrumentation",
]
