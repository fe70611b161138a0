"""Watcher SDL, indexers and records shared by the test suites."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Sequence

from watcher_gateway.backend import (
    BlockProgress,
    EventRecord,
    InMemoryIndexer,
    SyncStatusSnapshot,
)
from watcher_gateway.core.federation.registry import BackendDescriptor

AZIMUTH_SDL = """
type OwnershipTransferredEvent {
  previousOwner: String!
  newOwner: String!
}

type ActivatedEvent {
  point: BigInt!
}

union Event = OwnershipTransferredEvent | ActivatedEvent

type ResultBoolean {
  value: Boolean!
  proof: Proof
}

extend type Query {
  isActive(blockHash: String!, contractAddress: String!, _point: BigInt!): ResultBoolean!
}
"""

CENSURES_SDL = """
type CensuredEvent {
  source: BigInt!
  target: BigInt!
}

union Event = CensuredEvent

type ResultBigInt {
  value: BigInt!
  proof: Proof
}

extend type Query {
  getCensuringCount(blockHash: String!, contractAddress: String!, _whose: BigInt!): ResultBigInt!
}
"""

AZIMUTH_CONTRACT = "0x223c067F8CF28ae173EE5CafEa60cA44C335fecB"
CENSURES_CONTRACT = "0x325f68d32BdEe6Ed86E7235ff2480e2A433D6189"

SYNC_STATUS = SyncStatusSnapshot(
    initial_indexed_block_number=10,
    latest_indexed_block_number=120,
    latest_processed_block_number=100,
    latest_indexed_block_hash="0xblock120",
)

COMPLETE_BLOCK = BlockProgress(block_hash="0xblock50", block_number=50, is_complete=True)
PENDING_BLOCK = BlockProgress(block_hash="0xblock110", block_number=110, is_complete=False)


class AzimuthIndexer(InMemoryIndexer):
    def __init__(self, sync_status: Optional[SyncStatusSnapshot] = SYNC_STATUS):
        super().__init__(sync_status)
        self.active_points = {1}
        self.calls = []

    async def is_active(self, block_hash: str, contract_address: str, _point: int) -> Dict[str, Any]:
        self.calls.append((block_hash, contract_address, _point))
        return {
            "value": _point in self.active_points,
            "proof": {"data": json.dumps({"blockHash": block_hash})},
        }


class CensuresIndexer(InMemoryIndexer):
    def __init__(self, sync_status: Optional[SyncStatusSnapshot] = SYNC_STATUS):
        super().__init__(sync_status)
        self.counts = {2: 3}

    async def get_censuring_count(self, block_hash: str, contract_address: str, _whose: int) -> Dict[str, Any]:
        return {"value": self.counts.get(_whose, 0), "proof": None}


class OpenGate:
    """Reachability gate that admits every backend."""

    async def check(self, registry: Sequence[BackendDescriptor]):
        return []


def azimuth_event(point: int, event_index: int = 0) -> EventRecord:
    return EventRecord(
        block=COMPLETE_BLOCK,
        contract=AZIMUTH_CONTRACT,
        event_name="Activated",
        event_index=event_index,
        tx_hash="0xtx",
        event_info={"point": point},
    )

