"""Execution of GraphQL operations against an executable graphql-core schema.

The same service type serves the federated gateway schema and a single
watcher's own schema, so both share one HTTP/WebSocket transport.
"""

from __future__ import annotations

import logging
from inspect import isawaitable
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from graphql import (
    DocumentNode,
    ExecutionResult,
    GraphQLError,
    GraphQLFieldResolver,
    GraphQLSchema,
    OperationType,
    execute,
    get_operation_ast,
    parse,
    subscribe,
    validate,
)

from watcher_gateway.core.errors import GatewayError
from watcher_gateway.core.graphql.context import OperationContext

logger = logging.getLogger(__name__)

SubscriptionResult = Union[AsyncIterator[ExecutionResult], ExecutionResult]


class GraphQLService:
    """Parse, validate and run operations on one schema."""

    def __init__(
        self,
        schema: GraphQLSchema,
        field_resolver: Optional[GraphQLFieldResolver] = None,
    ):
        self.schema = schema
        self.field_resolver = field_resolver

    def _prepare(
        self, query: str, operation_name: Optional[str]
    ) -> Union[DocumentNode, ExecutionResult]:
        try:
            document = parse(query)
        except GraphQLError as error:
            return ExecutionResult(data=None, errors=[error])

        errors = validate(self.schema, document)
        if errors:
            return ExecutionResult(data=None, errors=errors)

        if get_operation_ast(document, operation_name) is None:
            return ExecutionResult(
                data=None,
                errors=[GraphQLError(f"Unknown operation named '{operation_name}'.")]
                if operation_name
                else [GraphQLError("Must provide operation name if query contains multiple operations.")],
            )
        return document

    @staticmethod
    def operation_type(query: str, operation_name: Optional[str] = None) -> Optional[OperationType]:
        """Return the type of the selected operation, or None if it cannot be determined."""
        try:
            document = parse(query)
        except GraphQLError:
            return None
        operation = get_operation_ast(document, operation_name)
        return operation.operation if operation else None

    @staticmethod
    def _context(
        context: Optional[Any],
        query: str,
        variables: Optional[Mapping[str, Any]],
        operation_name: Optional[str],
    ) -> Any:
        if context is not None:
            return context
        return OperationContext(query=query, variables=dict(variables or {}), operation_name=operation_name)

    async def execute(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> ExecutionResult:
        prepared = self._prepare(query, operation_name)
        if isinstance(prepared, ExecutionResult):
            return prepared

        operation = get_operation_ast(prepared, operation_name)
        if operation is not None and operation.operation == OperationType.SUBSCRIPTION:
            return ExecutionResult(
                data=None,
                errors=[GraphQLError("Subscriptions must be sent over the WebSocket transport.")],
            )

        result = execute(
            self.schema,
            prepared,
            context_value=self._context(context, query, variables, operation_name),
            variable_values=dict(variables or {}),
            operation_name=operation_name,
            field_resolver=self.field_resolver,
        )
        if isawaitable(result):
            result = await result
        return result

    async def subscribe(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> SubscriptionResult:
        """Open a subscription.

        Returns an async iterator of results, or a single ExecutionResult
        carrying errors when the subscription could not be created. Closing
        the iterator (``aclose``) closes the underlying source stream.
        """
        prepared = self._prepare(query, operation_name)
        if isinstance(prepared, ExecutionResult):
            return prepared

        return await subscribe(
            self.schema,
            prepared,
            context_value=self._context(context, query, variables, operation_name),
            variable_values=dict(variables or {}),
            operation_name=operation_name,
            field_resolver=self.field_resolver,
        )


def format_error(error: GraphQLError) -> Dict[str, Any]:
    """Format an error for the wire, adding ``extensions.code`` for gateway errors."""
    formatted = dict(error.formatted)
    original = error.original_error
    if isinstance(original, GatewayError):
        extensions = dict(formatted.get("extensions") or {})
        extensions.setdefault("code", original.code.value)
        formatted["extensions"] = extensions
    return formatted


def format_result(result: ExecutionResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"data": result.data}
    if result.errors:
        payload["errors"] = [format_error(err) for err in result.errors]
    return payload
