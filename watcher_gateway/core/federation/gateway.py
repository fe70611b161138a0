"""Federation gateway over watcher backends.

Startup pipeline: reachability gate, concurrent introspection, root field
namespacing, stitching, request routing. Any failure along the way aborts
the build; the gateway never serves a partial schema.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from graphql import ExecutionResult, GraphQLSchema, print_schema

from watcher_gateway.core.config import Settings, get_settings
from watcher_gateway.core.errors import ErrorCode, GatewayError
from watcher_gateway.core.federation.executor import Executor, HTTPExecutor
from watcher_gateway.core.federation.introspection import SchemaIntrospector
from watcher_gateway.core.federation.namespacing import FieldNamespacer, SubSchema
from watcher_gateway.core.federation.reachability import ReachabilityGate
from watcher_gateway.core.federation.registry import BackendDescriptor
from watcher_gateway.core.federation.router import RequestRouter
from watcher_gateway.core.federation.stitching import FederatedSchema, SchemaStitcher
from watcher_gateway.core.graphql.service import SubscriptionResult
from watcher_gateway.utils.metrics import gateway_startup_failures_total

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[BackendDescriptor, Settings], Executor]


def http_executor_factory(descriptor: BackendDescriptor, settings: Settings) -> Executor:
    return HTTPExecutor(
        descriptor.endpoint,
        timeout_seconds=settings.BACKEND_REQUEST_TIMEOUT_SECONDS,
        heartbeat_seconds=settings.SUBSCRIPTION_HEARTBEAT_SECONDS,
    )


class FederationGateway:
    """Gateway for one fixed set of watcher backends."""

    def __init__(self, federated: FederatedSchema, router: RequestRouter):
        self.federated = federated
        self.router = router

    @classmethod
    async def build(
        cls,
        registry: Sequence[BackendDescriptor],
        settings: Optional[Settings] = None,
        executor_factory: ExecutorFactory = http_executor_factory,
        gate: Optional[ReachabilityGate] = None,
    ) -> "FederationGateway":
        """Compose the federated schema.

        Args:
            registry: Backends in registry order
            settings: Timeouts; defaults to the process settings
            executor_factory: Builds the executor bound to each backend
            gate: Reachability gate; defaults to a TCP gate with the configured timeout

        Raises:
            StartupUnreachableError: a backend refused its TCP probe
            IntrospectionError: a backend schema could not be fetched
            SchemaConflictError: namespaced schemas could not be merged
        """
        settings = settings or get_settings()
        gate = gate or ReachabilityGate(timeout=settings.REACHABILITY_TIMEOUT_SECONDS)
        executors: Tuple[Executor, ...] = ()
        try:
            await gate.check(registry)

            executors = tuple(executor_factory(d, settings) for d in registry)
            introspector = SchemaIntrospector(timeout=settings.INTROSPECTION_TIMEOUT_SECONDS)
            backends = await introspector.introspect_all(list(zip(registry, executors)))

            subschemas = [FieldNamespacer(b.descriptor.prefix).namespace(b) for b in backends]
            federated = SchemaStitcher().stitch(subschemas)
            router = RequestRouter(federated)
        except Exception as e:
            code = e.code if isinstance(e, GatewayError) else ErrorCode.INTERNAL_ERROR
            gateway_startup_failures_total.labels(reason=code.value).inc()
            logger.error(
                "Gateway startup failed",
                extra={"error": str(e), "error_code": code.value},
                exc_info=not isinstance(e, GatewayError),
            )
            for executor in executors:
                await executor.aclose()
            raise

        gateway = cls(federated, router)
        logger.info(
            "Gateway ready",
            extra={"endpoint": [s.endpoint for s in subschemas], "field": len(federated.routes)},
        )
        return gateway

    @property
    def schema(self) -> GraphQLSchema:
        return self.federated.schema

    @property
    def subschemas(self) -> Tuple[SubSchema, ...]:
        return self.federated.subschemas

    async def execute(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> ExecutionResult:
        return await self.router.execute(query, variables, operation_name, context)

    async def subscribe(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> SubscriptionResult:
        return await self.router.subscribe(query, variables, operation_name, context)

    def compose_sdl(self) -> str:
        return print_schema(self.schema)

    def describe(self) -> Dict[str, Any]:
        """Summary of the composed gateway for health reporting."""
        return {
            "backends": [
                {
                    "prefix": s.prefix,
                    "endpoint": s.endpoint,
                    "root_fields": len(s.field_transform),
                }
                for s in self.subschemas
            ],
            "root_fields": len(self.federated.routes),
        }

    async def aclose(self) -> None:
        for subschema in self.subschemas:
            await subschema.executor.aclose()
