"""Assembly of a single watcher backend.

:func:`build_watcher` wires an indexer into the shared resolver set, the
instrumentation wrapper and an executable schema; :func:`create_backend_app`
serves that schema over the same GraphQL transport as the gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from fastapi import FastAPI
from graphql import GraphQLSchema
from prometheus_client import CollectorRegistry, make_asgi_app

from watcher_gateway.api.graphql import create_graphql_router
from watcher_gateway.backend.event_watcher import EventWatcher
from watcher_gateway.backend.resolvers import add_value_queries, create_resolvers
from watcher_gateway.backend.schema import build_backend_schema
from watcher_gateway.core.config import get_settings
from watcher_gateway.core.graphql.service import GraphQLService
from watcher_gateway.core.instrumentation.metrics import MetricsSink, PrometheusMetricsSink
from watcher_gateway.core.instrumentation.wrapper import InstrumentedResolverWrapper

logger = logging.getLogger(__name__)


@dataclass
class Watcher:
    """A watcher's schema and the runtime pieces behind it."""
    name: str
    schema: GraphQLSchema
    service: GraphQLService
    indexer: Any
    event_watcher: EventWatcher
    wrapper: InstrumentedResolverWrapper
    # Served at /metrics by create_backend_app
    metrics_registry: Optional[CollectorRegistry] = None


def build_watcher(
    name: str,
    sdl: str,
    indexer: Any,
    value_queries: Iterable[str] = (),
    *,
    metrics: Optional[MetricsSink] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
    event_watcher: Optional[EventWatcher] = None,
    strict_sync_status: Optional[bool] = None,
) -> Watcher:
    """Build an executable watcher.

    Args:
        name: Watcher name, used in logs
        sdl: Watcher-specific SDL added to the shared base types
        indexer: The watcher's indexer
        value_queries: Contract value queries served by the indexer
        metrics: Resolver metrics sink; a prometheus sink by default
        metrics_registry: Registry for the default sink; a private registry by default,
            kept on the watcher and served by ``create_backend_app``
        event_watcher: Event fan-out for ``onEvent``
        strict_sync_status: Fail operations when the sync status fetch fails;
            defaults to the STRICT_SYNC_STATUS setting
    """
    if strict_sync_status is None:
        strict_sync_status = get_settings().STRICT_SYNC_STATUS
    event_watcher = event_watcher or EventWatcher()
    if metrics is None:
        metrics_registry = metrics_registry if metrics_registry is not None else CollectorRegistry()
        metrics = PrometheusMetricsSink(registry=metrics_registry)
    wrapper = InstrumentedResolverWrapper(
        indexer,
        metrics,
        strict_sync_status=strict_sync_status,
    )
    resolvers = create_resolvers(indexer, event_watcher, wrapper)
    add_value_queries(resolvers, indexer, wrapper, value_queries)
    schema = build_backend_schema(sdl, resolvers)
    logger.info(f"Watcher {name} schema built with {len(schema.query_type.fields)} queries")
    return Watcher(
        name=name,
        schema=schema,
        service=GraphQLService(schema),
        indexer=indexer,
        event_watcher=event_watcher,
        wrapper=wrapper,
        metrics_registry=metrics_registry,
    )


def create_backend_app(
    watcher: Watcher,
    *,
    graphiql_title: Optional[str] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    app = FastAPI(title=f"{watcher.name} watcher", version="1.0.0")
    app.state.watcher = watcher
    app.include_router(
        create_graphql_router(
            lambda conn: conn.app.state.watcher.service,
            graphiql_title=graphiql_title or watcher.name,
        )
    )
    registry = metrics_registry if metrics_registry is not None else watcher.metrics_registry
    if registry is not None:
        app.mount("/metrics", make_asgi_app(registry=registry))

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "watcher": watcher.name,
            "subscribers": watcher.event_watcher.subscriber_count,
        }

    return app
