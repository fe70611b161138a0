"""Watcher backend resolver layer.

Provides:
- Indexer capability and in-memory indexer
- Shared resolver set with instrumentation
- ``onEvent`` fan-out
- Schema building and the backend application
"""

from watcher_gateway.backend.indexer import (
    BlockProgress,
    EventRecord,
    Indexer,
    InMemoryIndexer,
    ResultState,
    SyncStatusSnapshot,
)
from watcher_gateway.backend.event_watcher import EventStream, EventWatcher
from watcher_gateway.backend.schema import BASE_SDL, build_backend_schema
from watcher_gateway.backend.resolvers import add_value_queries, create_resolvers
from watcher_gateway.backend.app import Watcher, build_watcher, create_backend_app

__all__ = [
    "BASE_SDL",
    "BlockProgress",
    "EventRecord",
    "EventStream",
    "EventWatcher",
    "Indexer",
    "InMemoryIndexer",
    "ResultState",
    "SyncStatusSnapshot",
    "Watcher",
    "add_value_queries",
    "build_backend_schema",
    "build_watcher",
    "create_backend_app",
    "create_resolvers",
]
