"""Federation of watcher backends.

Provides:
- Backend registry and reachability gate
- Schema introspection and root field namespacing
- Schema stitching and request routing
- The gateway that ties the startup pipeline together
"""

from watcher_gateway.core.federation.registry import (
    BackendDescriptor,
    BackendRegistry,
    build_backend_registry,
    load_backend_registry,
)
from watcher_gateway.core.federation.executor import (
    Executor,
    HTTPExecutor,
    SchemaExecutor,
)
from watcher_gateway.core.federation.reachability import ReachabilityGate
from watcher_gateway.core.federation.introspection import SchemaIntrospector
from watcher_gateway.core.federation.namespacing import FieldNamespacer, SubSchema
from watcher_gateway.core.federation.stitching import FederatedSchema, SchemaStitcher
from watcher_gateway.core.federation.router import RequestRouter
from watcher_gateway.core.federation.gateway import FederationGateway

__all__ = [
    # Registry
    "BackendDescriptor",
    "BackendRegistry",
    "build_backend_registry",
    "load_backend_registry",
    # Executors
    "Executor",
    "HTTPExecutor",
    "SchemaExecutor",
    # Startup pipeline
    "ReachabilityGate",
    "SchemaIntrospector",
    "FieldNamespacer",
    "SubSchema",
    "FederatedSchema",
    "SchemaStitcher",
    # Serving
    "RequestRouter",
    "FederationGateway",
]
