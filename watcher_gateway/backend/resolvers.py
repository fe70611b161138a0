"""Generic resolver set shared by every watcher.

Query and mutation resolvers run inside the instrumentation wrapper; the
``onEvent`` subscription does not.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Optional

from graphql import GraphQLResolveInfo

from watcher_gateway.backend.event_watcher import EventWatcher
from watcher_gateway.backend.indexer import Indexer
from watcher_gateway.backend.schema import ResolverMap
from watcher_gateway.core.errors import RangeOrStateError
from watcher_gateway.core.instrumentation.wrapper import InstrumentedResolverWrapper

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def create_resolvers(
    indexer: Indexer,
    event_watcher: EventWatcher,
    wrapper: InstrumentedResolverWrapper,
) -> ResolverMap:
    async def events(
        _source: Any,
        info: GraphQLResolveInfo,
        blockHash: str,
        contractAddress: str,
        name: Optional[str] = None,
    ):
        logger.debug(f"events {blockHash} {contractAddress} {name}")

        async def body():
            block = await indexer.get_block_progress(blockHash)
            if block is None or not block.is_complete:
                number = block.block_number if block else None
                raise RangeOrStateError(f"Block hash {blockHash} number {number} not processed yet")

            found = await indexer.get_events_by_filter(blockHash, contractAddress, name)
            return [indexer.get_result_event(event) for event in found]

        return await wrapper.wrap("events", body, info.context)

    async def events_in_range(
        _source: Any,
        info: GraphQLResolveInfo,
        fromBlockNumber: int,
        toBlockNumber: int,
        name: Optional[str] = None,
    ):
        logger.debug(f"eventsInRange {fromBlockNumber} {toBlockNumber}")

        async def body():
            sync_status = await indexer.get_sync_status()
            if sync_status is None:
                raise RangeOrStateError("No blocks processed yet")

            if (
                fromBlockNumber < sync_status.initial_indexed_block_number
                or toBlockNumber > sync_status.latest_processed_block_number
            ):
                raise RangeOrStateError(
                    f"Block range should be between {sync_status.initial_indexed_block_number} "
                    f"and {sync_status.latest_processed_block_number}"
                )

            found = await indexer.get_events_in_range(fromBlockNumber, toBlockNumber, name)
            return [indexer.get_result_event(event) for event in found]

        return await wrapper.wrap("eventsInRange", body, info.context)

    async def get_state_by_cid(_source: Any, info: GraphQLResolveInfo, cid: str):
        logger.debug(f"getStateByCID {cid}")

        async def body():
            state = await indexer.get_state_by_cid(cid)
            return state.to_result() if state and state.block.is_complete else None

        return await wrapper.wrap("getStateByCID", body, info.context)

    async def get_state(
        _source: Any,
        info: GraphQLResolveInfo,
        blockHash: str,
        contractAddress: str,
        kind: Optional[str] = None,
    ):
        logger.debug(f"getState {blockHash} {contractAddress} {kind}")

        async def body():
            state = await indexer.get_prev_state(blockHash, contractAddress, kind)
            return state.to_result() if state and state.block.is_complete else None

        return await wrapper.wrap("getState", body, info.context)

    async def get_sync_status(_source: Any, info: GraphQLResolveInfo):
        async def body():
            status = await indexer.get_sync_status()
            return status.to_result() if status else None

        return await wrapper.wrap("getSyncStatus", body, info.context)

    async def watch_contract(
        _source: Any,
        info: GraphQLResolveInfo,
        address: str,
        kind: str,
        checkpoint: bool,
        startingBlock: Optional[int] = None,
    ) -> bool:
        starting_block = 1 if startingBlock is None else startingBlock
        logger.debug(f"watchContract {address} {kind} {checkpoint} {starting_block}")

        async def body():
            await indexer.watch_contract(address, kind, checkpoint, starting_block)
            return True

        return await wrapper.wrap("watchContract", body, info.context)

    def on_event_subscribe(_source: Any, _info: GraphQLResolveInfo):
        return event_watcher.get_event_iterator()

    def on_event_resolve(event: Dict[str, Any], _info: GraphQLResolveInfo):
        return event

    return {
        "Query": {
            "events": events,
            "eventsInRange": events_in_range,
            "getStateByCID": get_state_by_cid,
            "getState": get_state,
            "getSyncStatus": get_sync_status,
        },
        "Mutation": {
            "watchContract": watch_contract,
        },
        "Subscription": {
            "onEvent": {"subscribe": on_event_subscribe, "resolve": on_event_resolve},
        },
    }


def add_value_queries(
    resolvers: ResolverMap,
    indexer: Any,
    wrapper: InstrumentedResolverWrapper,
    names: Iterable[str],
) -> ResolverMap:
    """Register contract value queries such as ``isActive`` or ``getCensuringCount``.

    Each query calls the indexer method with the snake_case name of the
    query, passing its arguments as snake_case keywords.
    """
    query = resolvers.setdefault("Query", {})
    for op_name in names:
        method = getattr(indexer, snake_case(op_name), None)
        if method is None:
            raise ValueError(f"Indexer has no method for value query {op_name}")
        query[op_name] = _value_resolver(op_name, method, wrapper)
    return resolvers


def _value_resolver(op_name: str, method, wrapper: InstrumentedResolverWrapper):
    @wrapper.instrument(op_name)
    async def resolve(_source: Any, _info: GraphQLResolveInfo, **args: Any):
        logger.debug(f"{op_name} {args}")
        return await method(**{snake_case(key): value for key, value in args.items()})

    return resolve
