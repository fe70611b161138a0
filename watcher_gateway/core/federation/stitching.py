"""Schema stitching.

Merges the namespaced backend schemas into one federated schema. Root
fields are renamed per backend and must be unique across backends.
Same-named non-root types (``ResultEvent``, ``SyncStatus``, ``BigInt``...)
are merged structurally; merges that cannot be expressed without guessing
raise :class:`SchemaConflictError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar

from graphql import (
    DocumentNode,
    EnumTypeDefinitionNode,
    FieldDefinitionNode,
    GraphQLError,
    GraphQLSchema,
    InputObjectTypeDefinitionNode,
    InputValueDefinitionNode,
    InterfaceTypeDefinitionNode,
    NameNode,
    Node,
    ObjectTypeDefinitionNode,
    OperationType,
    ScalarTypeDefinitionNode,
    TypeDefinitionNode,
    UnionTypeDefinitionNode,
    build_ast_schema,
    is_introspection_type,
    is_specified_scalar_type,
    parse,
    print_ast,
    print_type,
    validate_schema,
)

from watcher_gateway.core.errors import GatewayError, SchemaConflictError
from watcher_gateway.core.federation.namespacing import ROOT_OPERATIONS, SubSchema
from watcher_gateway.utils.metrics import gateway_root_fields

logger = logging.getLogger(__name__)

ROOT_TYPE_NAMES: Mapping[OperationType, str] = MappingProxyType(
    {
        OperationType.QUERY: "Query",
        OperationType.MUTATION: "Mutation",
        OperationType.SUBSCRIPTION: "Subscription",
    }
)

N = TypeVar("N", bound=Node)


@dataclass(frozen=True)
class RootFieldRoute:
    """Where a federated root field is executed."""
    operation: OperationType
    name: str
    original_name: str
    subschema: SubSchema


@dataclass(frozen=True)
class FederatedSchema:
    """The merged schema and its routing table.

    Built once at startup and shared read-only by all requests.
    """
    schema: GraphQLSchema
    subschemas: Tuple[SubSchema, ...]
    routes: Mapping[Tuple[OperationType, str], RootFieldRoute]

    def route(self, operation: OperationType, name: str) -> RootFieldRoute:
        return self.routes[(operation, name)]

    def root_field_names(self, operation: Optional[OperationType] = None) -> List[str]:
        return [name for (op, name) in self.routes if operation is None or op == operation]


def _parse_type(type_) -> TypeDefinitionNode:
    return parse(print_type(type_)).definitions[0]  # type: ignore[return-value]


def _field_signature(node: FieldDefinitionNode) -> str:
    args = ", ".join(f"{a.name.value}: {print_ast(a.type)}" for a in node.arguments or ())
    return f"({args}): {print_ast(node.type)}"


def _input_signature(node: InputValueDefinitionNode) -> str:
    return print_ast(node.type)


def _union_by_name(
    existing: Sequence[N],
    incoming: Sequence[N],
    name_of: Callable[[N], str],
    signature: Optional[Callable[[N], str]] = None,
    on_mismatch: Optional[Callable[[str], None]] = None,
) -> Tuple[N, ...]:
    merged: Dict[str, N] = {name_of(item): item for item in existing or ()}
    for item in incoming or ():
        key = name_of(item)
        current = merged.get(key)
        if current is None:
            merged[key] = item
        elif signature and signature(current) != signature(item) and on_mismatch:
            on_mismatch(key)
    return tuple(merged.values())


def _name(node) -> str:
    return node.name.value


def merge_type_definitions(
    existing: TypeDefinitionNode, incoming: TypeDefinitionNode, endpoints: Sequence[str]
) -> TypeDefinitionNode:
    """Merge two definitions of the same named type.

    Raises:
        SchemaConflictError: when the kinds differ or a shared field has a
            different signature.
    """
    type_name = _name(existing)
    if existing.kind != incoming.kind:
        raise SchemaConflictError(
            type_name, endpoints, reason=f"defined as {existing.kind} and {incoming.kind}"
        )

    def mismatch(field_name: str) -> None:
        raise SchemaConflictError(
            f"{type_name}.{field_name}", endpoints, reason="field signatures differ"
        )

    if isinstance(existing, (ObjectTypeDefinitionNode, InterfaceTypeDefinitionNode)):
        return existing.__class__(
            name=existing.name,
            description=existing.description,
            directives=existing.directives,
            interfaces=_union_by_name(existing.interfaces, incoming.interfaces, _name),
            fields=_union_by_name(
                existing.fields, incoming.fields, _name, _field_signature, mismatch
            ),
        )
    if isinstance(existing, InputObjectTypeDefinitionNode):
        return InputObjectTypeDefinitionNode(
            name=existing.name,
            description=existing.description,
            directives=existing.directives,
            fields=_union_by_name(
                existing.fields, incoming.fields, _name, _input_signature, mismatch
            ),
        )
    if isinstance(existing, EnumTypeDefinitionNode):
        return EnumTypeDefinitionNode(
            name=existing.name,
            description=existing.description,
            directives=existing.directives,
            values=_union_by_name(existing.values, incoming.values, _name),
        )
    if isinstance(existing, UnionTypeDefinitionNode):
        return UnionTypeDefinitionNode(
            name=existing.name,
            description=existing.description,
            directives=existing.directives,
            types=_union_by_name(existing.types, incoming.types, _name),
        )
    if isinstance(existing, ScalarTypeDefinitionNode):
        return existing
    raise SchemaConflictError(type_name, endpoints, reason=f"cannot merge {existing.kind}")


class SchemaStitcher:
    """Merge namespaced sub-schemas into one :class:`FederatedSchema`."""

    def _type_definitions(self, subschema: SubSchema) -> Iterator[TypeDefinitionNode]:
        schema = subschema.schema
        root_names = {
            root.name
            for root in (schema.query_type, schema.mutation_type, schema.subscription_type)
            if root is not None
        }
        for name, type_ in schema.type_map.items():
            if name in root_names or is_introspection_type(type_) or is_specified_scalar_type(type_):
                continue
            yield _parse_type(type_)

    def _root_fields(
        self, subschema: SubSchema, operation: OperationType
    ) -> List[Tuple[str, FieldDefinitionNode]]:
        root = subschema.schema.get_root_type(operation)
        if root is None:
            return []
        table = subschema.field_transform.renamed.get(operation, {})
        new_names = {original: new for new, original in table.items()}
        node: ObjectTypeDefinitionNode = _parse_type(root)  # type: ignore[assignment]
        fields = []
        for field in node.fields:
            new_name = new_names[field.name.value]
            fields.append(
                (
                    new_name,
                    FieldDefinitionNode(
                        name=NameNode(value=new_name),
                        description=field.description,
                        arguments=field.arguments,
                        type=field.type,
                        directives=field.directives,
                    ),
                )
            )
        return fields

    def stitch(self, subschemas: Sequence[SubSchema]) -> FederatedSchema:
        routes: Dict[Tuple[OperationType, str], RootFieldRoute] = {}
        root_fields: Dict[OperationType, List[FieldDefinitionNode]] = {op: [] for op in ROOT_OPERATIONS}
        types: Dict[str, TypeDefinitionNode] = {}
        owners: Dict[str, List[str]] = {}
        reserved = set(ROOT_TYPE_NAMES.values())

        for subschema in subschemas:
            for operation in ROOT_OPERATIONS:
                for new_name, node in self._root_fields(subschema, operation):
                    key = (operation, new_name)
                    if key in routes:
                        raise SchemaConflictError(
                            new_name, [routes[key].subschema.endpoint, subschema.endpoint]
                        )
                    routes[key] = RootFieldRoute(
                        operation=operation,
                        name=new_name,
                        original_name=subschema.field_transform.original_name(operation, new_name),
                        subschema=subschema,
                    )
                    root_fields[operation].append(node)

            for node in self._type_definitions(subschema):
                type_name = _name(node)
                if type_name in reserved:
                    raise SchemaConflictError(
                        type_name, [subschema.endpoint], reason="name is reserved for a federated root type"
                    )
                if type_name not in types:
                    types[type_name] = node
                    owners[type_name] = [subschema.endpoint]
                    continue
                owners[type_name].append(subschema.endpoint)
                types[type_name] = merge_type_definitions(types[type_name], node, owners[type_name])

        if not root_fields[OperationType.QUERY]:
            raise GatewayError("Federated schema has no query fields")

        definitions: List[Node] = list(types.values())
        for operation in ROOT_OPERATIONS:
            if root_fields[operation]:
                definitions.append(
                    ObjectTypeDefinitionNode(
                        name=NameNode(value=ROOT_TYPE_NAMES[operation]),
                        interfaces=(),
                        directives=(),
                        fields=tuple(root_fields[operation]),
                    )
                )

        endpoints = [s.endpoint for s in subschemas]
        try:
            schema = build_ast_schema(DocumentNode(definitions=tuple(definitions)))
        except (TypeError, GraphQLError) as e:
            raise SchemaConflictError("schema", endpoints, reason=str(e)) from e
        errors = validate_schema(schema)
        if errors:
            raise SchemaConflictError(
                "schema", endpoints, reason="; ".join(err.message for err in errors)
            )

        for subschema in subschemas:
            gateway_root_fields.labels(prefix=subschema.prefix).set(len(subschema.field_transform))
        logger.info(
            "Federated schema stitched",
            extra={"endpoint": endpoints, "field": len(routes)},
        )
        return FederatedSchema(
            schema=schema,
            subschemas=tuple(subschemas),
            routes=MappingProxyType(routes),
        )
