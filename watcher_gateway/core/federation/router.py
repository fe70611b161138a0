"""Request routing for the federated schema.

Each merged root field is bound to a resolver that rebuilds a minimal
document for the owning backend (original field name, client alias as the
response key, the client's arguments and selection pruned to what that
backend's schema defines, only the fragments and variables the field uses)
and forwards it to that backend's executor.
Fields of one client operation that belong to different backends are
dispatched independently by the executor and merged positionally into the
response.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from itertools import chain
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Tuple

from graphql import (
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    GraphQLResolveInfo,
    GraphQLSchema,
    NameNode,
    Node,
    OperationDefinitionNode,
    OperationType,
    REMOVE,
    SelectionSetNode,
    TypeInfo,
    TypeInfoVisitor,
    Visitor,
    default_field_resolver,
    print_ast,
    visit,
)

from watcher_gateway.core.errors import BackendExecutionError
from watcher_gateway.core.federation.stitching import FederatedSchema, RootFieldRoute
from watcher_gateway.core.graphql.context import OperationContext
from watcher_gateway.core.graphql.service import GraphQLService
from watcher_gateway.utils.metrics import (
    gateway_active_subscriptions,
    gateway_backend_request_duration_seconds,
    gateway_backend_requests_total,
)

logger = logging.getLogger(__name__)

TYPENAME = "__typename"


@dataclass(frozen=True)
class DelegatedRequest:
    """The operation forwarded to a backend for one root field."""
    document: str
    variables: Dict[str, Any]
    operation_name: Optional[str]
    response_key: str


class _AddTypename(Visitor):
    def leave_selection_set(self, node: SelectionSetNode, _key, parent, *_args):
        if isinstance(parent, OperationDefinitionNode):
            return None
        for selection in node.selections:
            if isinstance(selection, FieldNode) and selection.alias is None and selection.name.value == TYPENAME:
                return None
        typename = FieldNode(name=NameNode(value=TYPENAME), arguments=(), directives=())
        return SelectionSetNode(selections=(*node.selections, typename))


class _CollectReferences(Visitor):
    def __init__(self) -> None:
        super().__init__()
        self.fragments: Set[str] = set()
        self.variables: Set[str] = set()

    def enter_fragment_spread(self, node, *_args):
        self.fragments.add(node.name.value)

    def enter_variable(self, node, *_args):
        self.variables.add(node.name.value)


class _PruneForSchema(Visitor):
    """Drop selections the owning backend's schema does not define.

    Merged types (``Event``, shared object types) can carry members and
    fields from other backends that are valid for the client but unknown
    to the backend the field is delegated to.
    """

    def __init__(
        self,
        schema: GraphQLSchema,
        type_info: TypeInfo,
        fragments: Mapping[str, FragmentDefinitionNode],
    ) -> None:
        super().__init__()
        self.schema = schema
        self.type_info = type_info
        self.fragments = fragments

    def _unknown(self, type_condition) -> bool:
        return type_condition is not None and self.schema.get_type(type_condition.name.value) is None

    def enter_field(self, _node, *_args):
        if self.type_info.get_field_def() is None:
            return REMOVE
        return None

    def enter_inline_fragment(self, node, *_args):
        return REMOVE if self._unknown(node.type_condition) else None

    def enter_fragment_spread(self, node, *_args):
        fragment = self.fragments.get(node.name.value)
        if fragment is None or self._unknown(fragment.type_condition):
            return REMOVE
        return None

    def enter_fragment_definition(self, node, *_args):
        return REMOVE if self._unknown(node.type_condition) else None


def proxy_field_resolver(source: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
    """Resolve nested fields from backend data, which is keyed by response key."""
    if isinstance(source, dict):
        return source.get(info.path.key)
    return default_field_resolver(source, info, **args)


def _merged_selection_set(field_nodes: List[FieldNode]) -> Optional[SelectionSetNode]:
    sets = [node.selection_set for node in field_nodes if node.selection_set]
    if not sets:
        return None
    return SelectionSetNode(selections=tuple(chain.from_iterable(s.selections for s in sets)))


def _raw_variables(info: GraphQLResolveInfo) -> Dict[str, Any]:
    context = info.context
    if isinstance(context, OperationContext):
        return dict(context.variables)
    return dict(info.variable_values or {})


def _references(
    node: Node, fragments: Mapping[str, FragmentDefinitionNode]
) -> Tuple[Set[str], Set[str]]:
    """Fragment and variable names used by ``node``, following nested spreads."""
    used: Set[str] = set()
    variables: Set[str] = set()
    pending = [node]
    while pending:
        collector = _CollectReferences()
        visit(pending.pop(), collector)
        variables |= collector.variables
        for name in collector.fragments - used:
            if name in fragments:
                used.add(name)
                pending.append(fragments[name])
    return used, variables


def build_delegated_request(route: RootFieldRoute, info: GraphQLResolveInfo) -> DelegatedRequest:
    """Rebuild the client operation for a single root field of one backend."""
    response_key = str(info.path.key)
    first = info.field_nodes[0]
    field = FieldNode(
        alias=NameNode(value=response_key),
        name=NameNode(value=route.original_name),
        arguments=first.arguments,
        directives=(),
        selection_set=_merged_selection_set(info.field_nodes),
    )
    operation = info.operation
    candidates, _ = _references(field, info.fragments)
    document = DocumentNode(
        definitions=(
            OperationDefinitionNode(
                operation=operation.operation,
                name=operation.name,
                variable_definitions=operation.variable_definitions or (),
                directives=(),
                selection_set=SelectionSetNode(selections=(field,)),
            ),
            *(fragment for name, fragment in info.fragments.items() if name in candidates),
        )
    )

    schema = route.subschema.schema
    type_info = TypeInfo(schema)
    document = visit(document, TypeInfoVisitor(type_info, _PruneForSchema(schema, type_info, info.fragments)))

    pruned_operation, *pruned_fragments = document.definitions
    remaining = {fragment.name.value: fragment for fragment in pruned_fragments}
    used, variables = _references(pruned_operation.selection_set, remaining)
    operation_node = OperationDefinitionNode(
        operation=pruned_operation.operation,
        name=pruned_operation.name,
        variable_definitions=tuple(
            definition
            for definition in pruned_operation.variable_definitions
            if definition.variable.name.value in variables
        ),
        directives=(),
        selection_set=pruned_operation.selection_set,
    )
    definitions = [visit(operation_node, _AddTypename())]
    definitions.extend(visit(remaining[name], _AddTypename()) for name in remaining if name in used)

    raw = _raw_variables(info)
    return DelegatedRequest(
        document=print_ast(DocumentNode(definitions=tuple(definitions))),
        variables={name: raw[name] for name in variables if name in raw},
        operation_name=operation.name.value if operation.name else None,
        response_key=response_key,
    )


def _unwrap(result: Dict[str, Any], route: RootFieldRoute, response_key: str) -> Any:
    errors = result.get("errors")
    if errors:
        raise BackendExecutionError.from_graphql_errors(errors, endpoint=route.subschema.endpoint)
    data = result.get("data") or {}
    return data.get(response_key)


class RequestRouter:
    """Bind every federated root field to its owning backend's executor."""

    def __init__(self, federated: FederatedSchema):
        self.federated = federated
        self._bind()
        self.service = GraphQLService(federated.schema, field_resolver=proxy_field_resolver)

    @property
    def schema(self) -> GraphQLSchema:
        return self.federated.schema

    def _bind(self) -> None:
        schema = self.federated.schema
        for (operation, name), route in self.federated.routes.items():
            root = schema.get_root_type(operation)
            field = root.fields[name]
            if operation == OperationType.SUBSCRIPTION:
                field.subscribe = self._subscriber(route)
                field.resolve = self._event_resolver(route)
            else:
                field.resolve = self._resolver(route)

    def _resolver(self, route: RootFieldRoute):
        async def resolve(_source: Any, info: GraphQLResolveInfo, **_args: Any) -> Any:
            request = build_delegated_request(route, info)
            return await self.forward(route, request)

        return resolve

    def _subscriber(self, route: RootFieldRoute):
        def subscribe(_source: Any, info: GraphQLResolveInfo, **_args: Any) -> AsyncIterator[Dict[str, Any]]:
            request = build_delegated_request(route, info)
            return self.open_stream(route, request)

        return subscribe

    def _event_resolver(self, route: RootFieldRoute):
        def resolve(event: Dict[str, Any], info: GraphQLResolveInfo, **_args: Any) -> Any:
            return _unwrap(event, route, str(info.path.key))

        return resolve

    async def forward(self, route: RootFieldRoute, request: DelegatedRequest) -> Any:
        """Execute one delegated request and return the data under its response key."""
        subschema = route.subschema
        start = time.time()
        status = "error"
        try:
            result = await subschema.executor.execute(
                request.document, request.variables, request.operation_name
            )
            value = _unwrap(result, route, request.response_key)
            status = "success"
            return value
        except BackendExecutionError as e:
            logger.error(
                "Backend operation failed",
                extra={
                    "endpoint": subschema.endpoint,
                    "prefix": subschema.prefix,
                    "field": route.name,
                    "operation": route.operation.value,
                    "latency_ms": round((time.time() - start) * 1000, 2),
                    "error": e.message,
                    "error_code": e.code.value,
                },
            )
            raise
        finally:
            elapsed = time.time() - start
            gateway_backend_requests_total.labels(prefix=subschema.prefix, status=status).inc()
            gateway_backend_request_duration_seconds.labels(prefix=subschema.prefix).observe(elapsed)

    async def open_stream(
        self, route: RootFieldRoute, request: DelegatedRequest
    ) -> AsyncIterator[Dict[str, Any]]:
        """Relay one backend subscription; closing this iterator closes the backend stream."""
        subschema = route.subschema
        stream = subschema.executor.subscribe(
            request.document, request.variables, request.operation_name
        )
        gauge = gateway_active_subscriptions.labels(prefix=subschema.prefix)
        gauge.inc()
        logger.info(
            "Backend subscription opened",
            extra={"endpoint": subschema.endpoint, "field": route.name},
        )
        try:
            async for payload in stream:
                yield payload
        finally:
            gauge.dec()
            await stream.aclose()
            logger.info(
                "Backend subscription closed",
                extra={"endpoint": subschema.endpoint, "field": route.name},
            )

    async def execute(self, query, variables=None, operation_name=None, context=None):
        return await self.service.execute(query, variables, operation_name, context)

    async def subscribe(self, query, variables=None, operation_name=None, context=None):
        return await self.service.subscribe(query, variables, operation_name, context)
