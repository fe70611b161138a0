"""GraphQL execution shared by the gateway and the watcher backends."""

from watcher_gateway.core.graphql.context import OperationContext
from watcher_gateway.core.graphql.service import GraphQLService, format_error, format_result

__all__ = [
    "OperationContext",
    "GraphQLService",
    "format_error",
    "format_result",
]
