"""Metrics sinks for instrumented resolvers.

The wrapper never touches global metric objects directly; it is handed a
sink. ``PrometheusMetricsSink`` registers its collectors on the registry it
is given, ``InMemoryMetricsSink`` records the same events for tests.
"""

from __future__ import annotations

import time
from collections import Counter as TallyCounter
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

StopTimer = Callable[[], float]


class MetricsSink(Protocol):
    def inc_total(self) -> None: ...

    def inc_operation(self, op_name: str) -> None: ...

    def start_timer(self, op_name: str) -> StopTimer: ...


class PrometheusMetricsSink:
    """Per-backend resolver metrics on a prometheus registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        registry = registry if registry is not None else REGISTRY
        self.total_query_count = Counter(
            "gql_total_query_count",
            "Total number of GQL queries",
            registry=registry,
        )
        self.query_count = Counter(
            "gql_query_count",
            "Number of GQL queries made per operation",
            ["name"],
            registry=registry,
        )
        self.query_duration = Histogram(
            "gql_query_duration_seconds",
            "Duration of GQL queries",
            ["name"],
            registry=registry,
        )

    def inc_total(self) -> None:
        self.total_query_count.inc()

    def inc_operation(self, op_name: str) -> None:
        self.query_count.labels(name=op_name).inc()

    def start_timer(self, op_name: str) -> StopTimer:
        histogram = self.query_duration.labels(name=op_name)
        start = time.perf_counter()

        def stop() -> float:
            elapsed = time.perf_counter() - start
            histogram.observe(elapsed)
            return elapsed

        return stop


class InMemoryMetricsSink:
    """Records counter increments and timer stops."""

    def __init__(self) -> None:
        self.total = 0
        self.operations: TallyCounter = TallyCounter()
        self.timers_started: List[str] = []
        self.timers_stopped: List[Tuple[str, float]] = []

    def inc_total(self) -> None:
        self.total += 1

    def inc_operation(self, op_name: str) -> None:
        self.operations[op_name] += 1

    def start_timer(self, op_name: str) -> StopTimer:
        self.timers_started.append(op_name)
        start = time.perf_counter()

        def stop() -> float:
            elapsed = time.perf_counter() - start
            self.timers_stopped.append((op_name, elapsed))
            return elapsed

        return stop

    def stopped_count(self, op_name: str) -> int:
        return sum(1 for name, _ in self.timers_stopped if name == op_name)

    def snapshot(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "operations": dict(self.operations),
            "timers_started": len(self.timers_started),
            "timers_stopped": len(self.timers_stopped),
        }


__all__ = ["MetricsSink", "PrometheusMetricsSink", "InMemoryMetricsSink", "StopTimer"]
