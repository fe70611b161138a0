"""Shared fixtures: in-process watchers and a gateway composed over them."""

from __future__ import annotations

from typing import Dict, Optional

import pytest

from support import (
    AZIMUTH_SDL,
    CENSURES_SDL,
    PENDING_BLOCK,
    AzimuthIndexer,
    CensuresIndexer,
    OpenGate,
    azimuth_event,
)
from watcher_gateway.backend import Watcher, build_watcher
from watcher_gateway.core.config import Settings, reset_settings
from watcher_gateway.core.federation.executor import SchemaExecutor
from watcher_gateway.core.federation.gateway import FederationGateway
from watcher_gateway.core.federation.registry import BackendDescriptor, build_backend_registry
from watcher_gateway.core.instrumentation.metrics import InMemoryMetricsSink


@pytest.fixture(autouse=True)
def settings_isolation():
    """Drop cached settings between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def azimuth_indexer() -> AzimuthIndexer:
    indexer = AzimuthIndexer()
    indexer.add_event(azimuth_event(1))
    indexer.add_block(PENDING_BLOCK)
    return indexer


@pytest.fixture
def azimuth_metrics() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


@pytest.fixture
def azimuth_watcher(azimuth_indexer, azimuth_metrics) -> Watcher:
    return build_watcher(
        "azimuth",
        AZIMUTH_SDL,
        azimuth_indexer,
        ["isActive"],
        metrics=azimuth_metrics,
        strict_sync_status=False,
    )


@pytest.fixture
def censures_watcher() -> Watcher:
    return build_watcher(
        "censures",
        CENSURES_SDL,
        CensuresIndexer(),
        ["getCensuringCount"],
        metrics=InMemoryMetricsSink(),
        strict_sync_status=False,
    )


@pytest.fixture
def watchers(azimuth_watcher, censures_watcher) -> Dict[str, Watcher]:
    return {"azimuth": azimuth_watcher, "censures": censures_watcher}


@pytest.fixture
def registry():
    return build_backend_registry(
        [
            {"endpoint": "http://azimuth.test:3001/graphql", "prefix": "azimuth"},
            {"endpoint": "http://censures.test:3002/graphql", "namespacePrefix": "censures"},
        ]
    )


@pytest.fixture
def open_gate() -> OpenGate:
    return OpenGate()


@pytest.fixture
def build_gateway(watchers, registry):
    """Return an async builder composing a gateway over the in-process watchers."""

    async def build(backends=None, settings: Optional[Settings] = None) -> FederationGateway:
        backends = backends if backends is not None else registry

        def executor_factory(descriptor: BackendDescriptor, _settings: Settings) -> SchemaExecutor:
            return SchemaExecutor(watchers[descriptor.prefix].service, endpoint=descriptor.endpoint)

        return await FederationGateway.build(
            backends,
            settings or Settings(),
            executor_factory=executor_factory,
            gate=OpenGate(),
        )

    return build
