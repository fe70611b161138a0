"""Indexer capability consumed by the watcher resolver layer.

A watcher's indexer owns its storage and chain access; the resolver layer
only needs the read and registration operations declared by
:class:`Indexer`. :class:`InMemoryIndexer` keeps everything in process and
backs embedded watchers and tests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatusSnapshot:
    """How much of the chain a watcher has indexed."""
    initial_indexed_block_number: int
    latest_indexed_block_number: int
    latest_processed_block_number: int
    initial_indexed_block_hash: str = ""
    latest_indexed_block_hash: str = ""
    latest_processed_block_hash: str = ""
    latest_canonical_block_hash: str = ""
    latest_canonical_block_number: int = 0

    def to_result(self) -> Dict[str, Any]:
        return {
            "initialIndexedBlockHash": self.initial_indexed_block_hash,
            "initialIndexedBlockNumber": self.initial_indexed_block_number,
            "latestIndexedBlockHash": self.latest_indexed_block_hash,
            "latestIndexedBlockNumber": self.latest_indexed_block_number,
            "latestProcessedBlockHash": self.latest_processed_block_hash,
            "latestProcessedBlockNumber": self.latest_processed_block_number,
            "latestCanonicalBlockHash": self.latest_canonical_block_hash,
            "latestCanonicalBlockNumber": self.latest_canonical_block_number,
        }


@dataclass(frozen=True)
class BlockProgress:
    block_hash: str
    block_number: int
    parent_hash: str = ""
    timestamp: int = 0
    cid: Optional[str] = None
    is_complete: bool = False

    def to_result(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "hash": self.block_hash,
            "number": self.block_number,
            "timestamp": self.timestamp,
            "parentHash": self.parent_hash,
        }


@dataclass(frozen=True)
class EventRecord:
    """A decoded contract event stored by the indexer."""
    block: BlockProgress
    contract: str
    event_name: str
    event_index: int
    tx_hash: str = ""
    tx_index: int = 0
    tx_from: str = ""
    tx_to: str = ""
    event_info: Dict[str, Any] = field(default_factory=dict)
    proof: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ResultState:
    block: BlockProgress
    contract_address: str
    cid: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_result(self) -> Dict[str, Any]:
        return {
            "block": self.block.to_result(),
            "contractAddress": self.contract_address,
            "cid": self.cid,
            "kind": self.kind,
            "data": json.dumps(self.data, default=str),
        }


class Indexer(Protocol):
    async def get_sync_status(self) -> Optional[SyncStatusSnapshot]: ...

    async def get_block_progress(self, block_hash: str) -> Optional[BlockProgress]: ...

    async def get_events_by_filter(
        self, block_hash: str, contract_address: str, name: Optional[str] = None
    ) -> List[EventRecord]: ...

    async def get_events_in_range(
        self, from_block: int, to_block: int, name: Optional[str] = None
    ) -> List[EventRecord]: ...

    async def watch_contract(
        self, address: str, kind: str, checkpoint: bool, starting_block: int = 1
    ) -> None: ...

    def get_result_event(self, event: EventRecord) -> Dict[str, Any]: ...

    async def get_state_by_cid(self, cid: str) -> Optional[ResultState]: ...

    async def get_prev_state(
        self, block_hash: str, contract_address: str, kind: Optional[str] = None
    ) -> Optional[ResultState]: ...


def result_event(event: EventRecord) -> Dict[str, Any]:
    """Shape an event record as a ``ResultEvent`` value."""
    return {
        "block": event.block.to_result(),
        "tx": {
            "hash": event.tx_hash,
            "index": event.tx_index,
            "from": event.tx_from,
            "to": event.tx_to,
        },
        "contract": event.contract,
        "eventIndex": event.event_index,
        "event": {"__typename": f"{event.event_name}Event", **event.event_info},
        "proof": event.proof,
    }


class InMemoryIndexer:
    """Process-local indexer state."""

    def __init__(self, sync_status: Optional[SyncStatusSnapshot] = None):
        self.sync_status = sync_status
        self.blocks: Dict[str, BlockProgress] = {}
        self.events: List[EventRecord] = []
        self.states: List[ResultState] = []
        self.contracts: Dict[str, Tuple[str, bool, int]] = {}

    def add_block(self, block: BlockProgress) -> None:
        self.blocks[block.block_hash] = block

    def add_event(self, event: EventRecord) -> None:
        self.add_block(event.block)
        self.events.append(event)

    def add_state(self, state: ResultState) -> None:
        self.add_block(state.block)
        self.states.append(state)

    async def get_sync_status(self) -> Optional[SyncStatusSnapshot]:
        return self.sync_status

    async def get_block_progress(self, block_hash: str) -> Optional[BlockProgress]:
        return self.blocks.get(block_hash)

    async def get_events_by_filter(
        self, block_hash: str, contract_address: str, name: Optional[str] = None
    ) -> List[EventRecord]:
        return [
            e
            for e in self.events
            if e.block.block_hash == block_hash
            and e.contract == contract_address
            and (name is None or e.event_name == name)
        ]

    async def get_events_in_range(
        self, from_block: int, to_block: int, name: Optional[str] = None
    ) -> List[EventRecord]:
        events = [
            e
            for e in self.events
            if from_block <= e.block.block_number <= to_block
            and (name is None or e.event_name == name)
        ]
        return sorted(events, key=lambda e: (e.block.block_number, e.event_index))

    async def watch_contract(
        self, address: str, kind: str, checkpoint: bool, starting_block: int = 1
    ) -> None:
        logger.info(f"Watching contract {address} of kind {kind} from block {starting_block}")
        self.contracts[address] = (kind, checkpoint, starting_block)

    def get_result_event(self, event: EventRecord) -> Dict[str, Any]:
        return result_event(event)

    async def get_state_by_cid(self, cid: str) -> Optional[ResultState]:
        for state in self.states:
            if state.cid == cid:
                return state
        return None

    async def get_prev_state(
        self, block_hash: str, contract_address: str, kind: Optional[str] = None
    ) -> Optional[ResultState]:
        block = self.blocks.get(block_hash)
        if block is None:
            return None
        candidates = [
            s
            for s in self.states
            if s.contract_address == contract_address
            and (kind is None or s.kind == kind)
            and s.block.block_number <= block.block_number
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.block.block_number)
