"""HTTP and WebSocket surface."""

from watcher_gateway.api.graphql import GRAPHQL_TRANSPORT_WS, create_graphql_router

__all__ = ["GRAPHQL_TRANSPORT_WS", "create_graphql_router"]
