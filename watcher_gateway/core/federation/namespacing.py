"""Root field namespacing.

Every root Query, Mutation and Subscription field of a backend is renamed to
``prefix + capitalize(name)``: ``isActive`` under prefix ``azimuth`` becomes
``azimuthIsActive``. Nested types and fields are never renamed. The rename
is kept as an explicit table so the router can always recover the
backend-local name.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Tuple

from graphql import GraphQLSchema, OperationType

from watcher_gateway.core.errors import SchemaConflictError
from watcher_gateway.core.federation.executor import Executor
from watcher_gateway.core.federation.introspection import IntrospectedBackend
from watcher_gateway.core.federation.registry import BackendDescriptor

ROOT_OPERATIONS: Tuple[OperationType, ...] = (
    OperationType.QUERY,
    OperationType.MUTATION,
    OperationType.SUBSCRIPTION,
)


def namespaced_name(prefix: str, name: str) -> str:
    return f"{prefix}{name[:1].upper()}{name[1:]}"


@dataclass(frozen=True)
class RootFieldRenamer:
    """Bidirectional rename table for one backend's root fields."""
    prefix: str
    # operation -> {namespaced name: original name}
    renamed: Mapping[OperationType, Mapping[str, str]]

    def original_name(self, operation: OperationType, name: str) -> str:
        return self.renamed[operation][name]

    def fields(self) -> Iterator[Tuple[OperationType, str, str]]:
        """Yield ``(operation, namespaced, original)`` triples."""
        for operation in ROOT_OPERATIONS:
            for new_name, original in self.renamed.get(operation, {}).items():
                yield operation, new_name, original

    def __len__(self) -> int:
        return sum(len(names) for names in self.renamed.values())


@dataclass(frozen=True)
class SubSchema:
    """A backend's schema, its executor and its root field rename table."""
    descriptor: BackendDescriptor
    schema: GraphQLSchema
    executor: Executor
    field_transform: RootFieldRenamer

    @property
    def endpoint(self) -> str:
        return self.descriptor.endpoint

    @property
    def prefix(self) -> str:
        return self.descriptor.prefix


class FieldNamespacer:
    """Pure transform from a backend schema to its root field rename table."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    def rename(self, name: str) -> str:
        return namespaced_name(self.prefix, name)

    def transform(self, schema: GraphQLSchema, endpoint: str = "") -> RootFieldRenamer:
        renamed: Dict[OperationType, Mapping[str, str]] = {}
        for operation in ROOT_OPERATIONS:
            root = schema.get_root_type(operation)
            if root is None:
                continue
            table: Dict[str, str] = {}
            for original in root.fields:
                new_name = self.rename(original)
                if new_name in table:
                    # e.g. "foo" and "Foo" both map to "<prefix>Foo"
                    raise SchemaConflictError(
                        new_name, [endpoint or self.prefix], reason="root fields collide after capitalization"
                    )
                table[new_name] = original
            renamed[operation] = MappingProxyType(table)
        return RootFieldRenamer(prefix=self.prefix, renamed=MappingProxyType(renamed))

    def namespace(self, backend: IntrospectedBackend) -> SubSchema:
        return SubSchema(
            descriptor=backend.descriptor,
            schema=backend.schema,
            executor=backend.executor,
            field_transform=self.transform(backend.schema, backend.descriptor.endpoint),
        )
