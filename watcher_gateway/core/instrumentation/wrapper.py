"""Uniform instrumentation around watcher resolver bodies.

Every query resolver of a watcher runs through :func:`with_instrumentation`:

1. the total and per-operation counters are incremented,
2. the per-operation duration timer is started,
3. the resolver body and the indexer's sync status fetch run concurrently,
4. an audit line is logged on ``watcher_gateway.gql`` (info on success,
   error on failure) with the caller metadata and the latest indexed block,
5. the timer is stopped exactly once, whatever the outcome.

The sync status fetch only enriches the audit line. By default its failure
is logged as a warning and the primary result is still returned; with
``strict_sync_status`` it fails the operation.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, TypeVar

from watcher_gateway.core.instrumentation.metrics import MetricsSink

AUDIT_LOGGER_NAME = "watcher_gateway.gql"

T = TypeVar("T")
Body = Callable[[], Awaitable[T]]


class SyncStatusSource(Protocol):
    async def get_sync_status(self) -> Any: ...


def _caller_fields(context: Any) -> Dict[str, Any]:
    log_fields = getattr(context, "log_fields", None)
    return log_fields() if callable(log_fields) else {}


def _latest_indexed(status: Any) -> Optional[int]:
    if status is None:
        return None
    if isinstance(status, dict):
        return status.get("latest_indexed_block_number", status.get("latestIndexedBlockNumber"))
    return getattr(status, "latest_indexed_block_number", None)


async def with_instrumentation(
    op_name: str,
    body: Body[T],
    indexer: SyncStatusSource,
    context: Any = None,
    *,
    metrics: MetricsSink,
    logger: Optional[logging.Logger] = None,
    strict_sync_status: bool = False,
) -> T:
    logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)
    metrics.inc_total()
    metrics.inc_operation(op_name)
    stop_timer = metrics.start_timer(op_name)
    fields: Dict[str, Any] = {"op_name": op_name, **_caller_fields(context)}
    try:
        result, status = await asyncio.gather(
            body(), indexer.get_sync_status(), return_exceptions=True
        )

        if isinstance(result, BaseException):
            logger.error(
                "GQL operation failed",
                extra={**fields, "error": str(result)},
                exc_info=(type(result), result, result.__traceback__),
            )
            raise result

        if isinstance(status, BaseException):
            if strict_sync_status:
                logger.error(
                    "GQL operation failed: sync status unavailable",
                    extra={**fields, "error": str(status)},
                )
                raise status
            logger.warning("sync status unavailable", extra={**fields, "error": str(status)})
            status = None

        logger.info(
            "GQL operation",
            extra={**fields, "latest_indexed_block_number": _latest_indexed(status)},
        )
        return result
    finally:
        stop_timer()


class InstrumentedResolverWrapper:
    """Binds one watcher's indexer, metrics sink and logger to :func:`with_instrumentation`."""

    def __init__(
        self,
        indexer: SyncStatusSource,
        metrics: MetricsSink,
        logger: Optional[logging.Logger] = None,
        strict_sync_status: bool = False,
    ):
        self.indexer = indexer
        self.metrics = metrics
        self.logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)
        self.strict_sync_status = strict_sync_status

    async def wrap(self, op_name: str, body: Body[T], context: Any = None) -> T:
        return await with_instrumentation(
            op_name,
            body,
            self.indexer,
            context,
            metrics=self.metrics,
            logger=self.logger,
            strict_sync_status=self.strict_sync_status,
        )

    def instrument(self, op_name: Optional[str] = None):
        """Decorate an ``async (source, info, **args)`` resolver.

        The operation name defaults to the resolver's field name.
        """

        def decorator(resolver):
            @functools.wraps(resolver)
            async def wrapped(source, info, **args):
                return await self.wrap(
                    op_name or info.field_name,
                    lambda: resolver(source, info, **args),
                    info.context,
                )

            return wrapped

        return decorator
