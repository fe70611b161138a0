"""Tests for resolver instrumentation: counters, timers, audit logs, sync status."""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest
from prometheus_client import CollectorRegistry

from watcher_gateway.core.graphql.context import OperationContext
from watcher_gateway.core.instrumentation import (
    AUDIT_LOGGER_NAME,
    InMemoryMetricsSink,
    InstrumentedResolverWrapper,
    PrometheusMetricsSink,
    with_instrumentation,
)

from support import SYNC_STATUS


class StatusSource:
    def __init__(self, status=SYNC_STATUS, error=None, delay=0.0):
        self.status = status
        self.error = error
        self.delay = delay
        self.calls = 0

    async def get_sync_status(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.status


def _context():
    return OperationContext(
        query="{ isActive }",
        variables={"point": 1},
        operation_name=None,
        url_path="/graphql",
        api_key="key-1",
        origin="https://app.example",
    )


def _audit_records(caplog):
    return [r for r in caplog.records if r.name == AUDIT_LOGGER_NAME]


class TestWithInstrumentation:
    @pytest.mark.asyncio
    async def test_success_counts_times_and_logs(self, caplog):
        metrics = InMemoryMetricsSink()

        async def body():
            return {"value": True}

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            result = await with_instrumentation(
                "isActive", body, StatusSource(), _context(), metrics=metrics
            )

        assert result == {"value": True}
        assert metrics.total == 1
        assert metrics.operations["isActive"] == 1
        assert metrics.stopped_count("isActive") == 1

        [record] = _audit_records(caplog)
        assert record.levelno == logging.INFO
        assert record.op_name == "isActive"
        assert record.latest_indexed_block_number == 120
        assert record.query == "{ isActive }"
        assert record.variables == {"point": 1}
        assert record.url_path == "/graphql"
        assert record.api_key == "key-1"
        assert record.origin == "https://app.example"

    @pytest.mark.asyncio
    async def test_failure_stops_timer_once_and_rethrows(self, caplog):
        metrics = InMemoryMetricsSink()

        async def body():
            raise ValueError("Block hash 0x1 number None not processed yet")

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            with pytest.raises(ValueError, match="not processed yet"):
                await with_instrumentation("events", body, StatusSource(), _context(), metrics=metrics)

        assert metrics.total == 1
        assert metrics.operations["events"] == 1
        assert metrics.timers_started == ["events"]
        assert metrics.stopped_count("events") == 1

        [record] = _audit_records(caplog)
        assert record.levelno == logging.ERROR
        assert record.op_name == "events"
        assert "not processed yet" in record.error
        assert record.exc_info is not None

    @pytest.mark.asyncio
    async def test_body_and_status_run_concurrently(self):
        metrics = InMemoryMetricsSink()
        source = StatusSource(delay=0.2)

        async def body():
            await asyncio.sleep(0.2)
            return 1

        loop = asyncio.get_running_loop()
        start = loop.time()
        await with_instrumentation("getState", body, source, metrics=metrics)

        assert loop.time() - start < 0.35
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_status_failure_is_best_effort_by_default(self, caplog):
        metrics = InMemoryMetricsSink()

        async def body():
            return "ok"

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            result = await with_instrumentation(
                "getState", body, StatusSource(error=RuntimeError("db down")), metrics=metrics
            )

        assert result == "ok"
        assert metrics.stopped_count("getState") == 1
        warning, info = _audit_records(caplog)
        assert warning.levelno == logging.WARNING
        assert warning.getMessage() == "sync status unavailable"
        assert warning.error == "db down"
        assert info.levelno == logging.INFO
        assert info.latest_indexed_block_number is None

    @pytest.mark.asyncio
    async def test_status_failure_fails_operation_when_strict(self, caplog):
        metrics = InMemoryMetricsSink()

        async def body():
            return "ok"

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            with pytest.raises(RuntimeError, match="db down"):
                await with_instrumentation(
                    "getState",
                    body,
                    StatusSource(error=RuntimeError("db down")),
                    metrics=metrics,
                    strict_sync_status=True,
                )

        assert metrics.stopped_count("getState") == 1
        [record] = _audit_records(caplog)
        assert record.levelno == logging.ERROR

    @pytest.mark.asyncio
    async def test_missing_status_logged_as_none(self, caplog):
        async def body():
            return []

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            await with_instrumentation("events", body, StatusSource(status=None), metrics=InMemoryMetricsSink())

        [record] = _audit_records(caplog)
        assert record.latest_indexed_block_number is None

    @pytest.mark.asyncio
    async def test_without_context_logs_operation_only(self, caplog):
        async def body():
            return []

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            await with_instrumentation("events", body, StatusSource(), metrics=InMemoryMetricsSink())

        [record] = _audit_records(caplog)
        assert record.op_name == "events"
        assert not hasattr(record, "api_key")


class TestInstrumentedResolverWrapper:
    @pytest.mark.asyncio
    async def test_wrap_uses_bound_settings(self):
        metrics = InMemoryMetricsSink()
        wrapper = InstrumentedResolverWrapper(StatusSource(error=RuntimeError("x")), metrics, strict_sync_status=True)

        async def body():
            return 1

        with pytest.raises(RuntimeError):
            await wrapper.wrap("getSyncStatus", body)
        assert metrics.stopped_count("getSyncStatus") == 1

    @pytest.mark.asyncio
    async def test_instrument_decorator_defaults_to_field_name(self):
        metrics = InMemoryMetricsSink()
        wrapper = InstrumentedResolverWrapper(StatusSource(), metrics)

        @wrapper.instrument()
        async def resolve(_source, info, point):
            return point * 2

        info = SimpleNamespace(field_name="isActive", context=_context())
        assert await resolve(None, info, point=21) == 42
        assert metrics.operations == {"isActive": 1}

    @pytest.mark.asyncio
    async def test_instrument_decorator_explicit_name(self):
        metrics = InMemoryMetricsSink()
        wrapper = InstrumentedResolverWrapper(StatusSource(), metrics)

        @wrapper.instrument("getCensuringCount")
        async def resolve(_source, _info):
            return 0

        await resolve(None, SimpleNamespace(field_name="other", context=None))
        assert metrics.operations == {"getCensuringCount": 1}


class TestPrometheusMetricsSink:
    @pytest.mark.asyncio
    async def test_records_to_registry(self):
        registry = CollectorRegistry()
        metrics = PrometheusMetricsSink(registry=registry)

        async def body():
            return 1

        await with_instrumentation("isActive", body, StatusSource(), metrics=metrics)
        await with_instrumentation("isActive", body, StatusSource(), metrics=metrics)

        assert registry.get_sample_value("gql_total_query_count_total") == 2
        assert registry.get_sample_value("gql_query_count_total", {"name": "isActive"}) == 2
        assert registry.get_sample_value("gql_query_duration_seconds_count", {"name": "isActive"}) == 2

    def test_private_registries_are_independent(self):
        first, second = CollectorRegistry(), CollectorRegistry()
        PrometheusMetricsSink(registry=first).inc_total()

        PrometheusMetricsSink(registry=second)

        assert first.get_sample_value("gql_total_query_count_total") == 1
        assert second.get_sample_value("gql_total_query_count_total") == 0


class TestResolverInstrumentation:
    """Queries served by a watcher go through the wrapper."""

    @pytest.mark.asyncio
    async def test_value_query_counted(self, azimuth_watcher, azimuth_metrics):
        result = await azimuth_watcher.service.execute(
            '{ isActive(blockHash: "0xb", contractAddress: "0x1", _point: 1) { value } }'
        )

        assert result.data == {"isActive": {"value": True}}
        assert azimuth_metrics.operations["isActive"] == 1
        assert azimuth_metrics.stopped_count("isActive") == 1

    @pytest.mark.asyncio
    async def test_failed_query_still_stops_timer(self, azimuth_watcher, azimuth_metrics):
        result = await azimuth_watcher.service.execute(
            '{ events(blockHash: "0xunknown", contractAddress: "0x1") { eventIndex } }'
        )

        assert result.errors[0].message == "Block hash 0xunknown number None not processed yet"
        assert azimuth_metrics.stopped_count("events") == 1

    @pytest.mark.asyncio
    async def test_mutation_instrumented(self, azimuth_watcher, azimuth_metrics, caplog):
        caplog.set_level(logging.INFO, logger=AUDIT_LOGGER_NAME)

        result = await azimuth_watcher.service.execute(
            'mutation { watchContract(address: "0x1", kind: "Azimuth", checkpoint: false) }'
        )

        assert result.data == {"watchContract": True}
        assert azimuth_metrics.total == 1
        assert azimuth_metrics.operations["watchContract"] == 1
        assert azimuth_metrics.stopped_count("watchContract") == 1
        [record] = [r for r in caplog.records if r.name == AUDIT_LOGGER_NAME]
        assert record.op_name == "watchContract"
        assert record.latest_indexed_block_number == SYNC_STATUS.latest_indexed_block_number
