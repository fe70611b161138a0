"""Tests for the graphql-transport-ws connection handler."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi import WebSocketDisconnect

from watcher_gateway.api.graphql import TransportWSConnection

SUBSCRIPTION = "subscription { azimuthOnEvent { contract } }"


class FakeWebSocket:
    """Feeds queued client messages; ``None`` disconnects."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.close_code = None
        self.url = SimpleNamespace(path="/graphql")
        self.headers = {}

    async def receive_text(self):
        message = await self.incoming.get()
        if message is None:
            raise WebSocketDisconnect(1000)
        return json.dumps(message)

    async def send_json(self, message):
        self.sent.append(message)

    async def close(self, code=1000, reason=None):
        self.close_code = code


class StreamService:
    """Opens subscriptions that never emit and records when they close."""

    def __init__(self):
        self.opened = 0
        self.closed = 0

    async def execute(self, query, variables=None, operation_name=None, context=None):
        raise AssertionError("queries are not expected")

    async def subscribe(self, query, variables=None, operation_name=None, context=None):
        self.opened += 1
        return self._stream()

    async def _stream(self):
        try:
            await asyncio.Event().wait()
            yield {}
        finally:
            self.closed += 1


async def _eventually(condition, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _subscribe(op_id):
    return {"id": op_id, "type": "subscribe", "payload": {"query": SUBSCRIPTION}}


class TestTransportWSConnection:
    @pytest.mark.asyncio
    async def test_reused_id_keeps_new_operation_tracked(self):
        websocket, service = FakeWebSocket(), StreamService()
        connection = TransportWSConnection(websocket, service)
        serving = asyncio.ensure_future(connection.serve())

        websocket.incoming.put_nowait({"type": "connection_init"})
        websocket.incoming.put_nowait(_subscribe("1"))
        await _eventually(lambda: service.opened == 1)

        # complete and resubscribe under the same id before the old task unwinds
        websocket.incoming.put_nowait({"id": "1", "type": "complete"})
        websocket.incoming.put_nowait(_subscribe("1"))
        await _eventually(lambda: service.opened == 2 and service.closed == 1)

        assert "1" in connection.operations

        websocket.incoming.put_nowait({"id": "1", "type": "complete"})
        await _eventually(lambda: service.closed == 2)
        assert connection.operations == {}

        websocket.incoming.put_nowait(None)
        await asyncio.wait_for(serving, 2.0)

    @pytest.mark.asyncio
    async def test_reused_id_released_on_disconnect(self):
        websocket, service = FakeWebSocket(), StreamService()
        connection = TransportWSConnection(websocket, service)
        serving = asyncio.ensure_future(connection.serve())

        websocket.incoming.put_nowait({"type": "connection_init"})
        websocket.incoming.put_nowait(_subscribe("1"))
        await _eventually(lambda: service.opened == 1)
        websocket.incoming.put_nowait({"id": "1", "type": "complete"})
        websocket.incoming.put_nowait(_subscribe("1"))
        await _eventually(lambda: service.opened == 2)

        websocket.incoming.put_nowait(None)
        await asyncio.wait_for(serving, 2.0)

        assert service.closed == 2
        assert websocket.close_code is None

    @pytest.mark.asyncio
    async def test_complete_for_unknown_id_ignored(self):
        websocket, service = FakeWebSocket(), StreamService()
        connection = TransportWSConnection(websocket, service)
        serving = asyncio.ensure_future(connection.serve())

        websocket.incoming.put_nowait({"type": "connection_init"})
        websocket.incoming.put_nowait({"id": "missing", "type": "complete"})
        websocket.incoming.put_nowait(None)
        await asyncio.wait_for(serving, 2.0)

        assert websocket.sent == [{"type": "connection_ack"}]
        assert websocket.close_code is None
