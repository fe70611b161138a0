"""Schema introspection of watcher backends."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from graphql import GraphQLError, GraphQLSchema, build_client_schema, get_introspection_query

from watcher_gateway.core.errors import BackendExecutionError, IntrospectionError
from watcher_gateway.core.federation.executor import Executor
from watcher_gateway.core.federation.registry import BackendDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntrospectedBackend:
    """A backend's remote schema plus the executor bound to it."""
    descriptor: BackendDescriptor
    schema: GraphQLSchema
    executor: Executor


class SchemaIntrospector:
    """Fetch backend schemas with the standard introspection query."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self.query = get_introspection_query(descriptions=True)

    async def introspect(self, descriptor: BackendDescriptor, executor: Executor) -> IntrospectedBackend:
        endpoint = descriptor.endpoint
        try:
            result = await asyncio.wait_for(executor.execute(self.query), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise IntrospectionError(endpoint, f"timed out after {self.timeout}s") from e
        except BackendExecutionError as e:
            raise IntrospectionError(endpoint, e.message) from e

        if result.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in result["errors"])
            raise IntrospectionError(endpoint, messages)

        data = result.get("data")
        if not isinstance(data, dict) or "__schema" not in data:
            raise IntrospectionError(endpoint, "response has no __schema")

        try:
            schema = build_client_schema(data)
        except (TypeError, KeyError, GraphQLError) as e:
            raise IntrospectionError(endpoint, f"invalid introspection result: {e}") from e

        logger.info(
            "Watcher schema introspected",
            extra={"endpoint": endpoint, "prefix": descriptor.prefix},
        )
        return IntrospectedBackend(descriptor=descriptor, schema=schema, executor=executor)

    async def introspect_all(
        self, backends: Sequence[Tuple[BackendDescriptor, Executor]]
    ) -> List[IntrospectedBackend]:
        """Introspect all backends concurrently; any failure aborts the whole set."""
        results = await asyncio.gather(
            *(self.introspect(descriptor, executor) for descriptor, executor in backends),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.error("Watcher introspection failed", extra={"error": str(failure)})
        if failures:
            raise failures[0]
        return list(results)  # type: ignore[arg-type]
