"""Tests for backend executors."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from aiohttp import WSMsgType, test_utils, web

from watcher_gateway.core.errors import BackendExecutionError, ErrorCode
from watcher_gateway.core.federation.executor import (
    GRAPHQL_TRANSPORT_WS,
    HTTPExecutor,
    SchemaExecutor,
    websocket_url,
)

ENDPOINT = "http://azimuth.test:3001/graphql"


def _executor(handler) -> HTTPExecutor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPExecutor(ENDPOINT, timeout_seconds=1.0, client=client)


class TestWebsocketUrl:
    @pytest.mark.parametrize(
        "endpoint,expected",
        [
            ("http://localhost:3001/graphql", "ws://localhost:3001/graphql"),
            ("https://watchers.example/azimuth/graphql", "wss://watchers.example/azimuth/graphql"),
        ],
    )
    def test_scheme_mapping(self, endpoint, expected):
        assert websocket_url(endpoint) == expected


class TestHTTPExecutor:
    @pytest.mark.asyncio
    async def test_posts_graphql_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"azimuthIsActive": {"value": True}}})

        executor = _executor(handler)
        result = await executor.execute("query Q { isActive }", {"point": 1}, "Q")
        await executor.aclose()

        assert result == {"data": {"azimuthIsActive": {"value": True}}}
        assert seen["url"] == ENDPOINT
        assert seen["body"] == {"query": "query Q { isActive }", "variables": {"point": 1}, "operationName": "Q"}

    @pytest.mark.asyncio
    async def test_omits_empty_variables(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {}})

        await _executor(handler).execute("{ a }")

        assert seen["body"] == {"query": "{ a }"}

    @pytest.mark.asyncio
    async def test_graphql_errors_with_4xx_returned(self):
        def handler(request):
            return httpx.Response(400, json={"errors": [{"message": "Cannot query field"}]})

        result = await _executor(handler).execute("{ nope }")

        assert result == {"errors": [{"message": "Cannot query field"}]}

    @pytest.mark.asyncio
    async def test_non_graphql_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad gateway")

        with pytest.raises(BackendExecutionError, match="HTTP 502") as exc_info:
            await _executor(handler).execute("{ a }")

        assert exc_info.value.endpoint == ENDPOINT
        assert exc_info.value.code == ErrorCode.BACKEND_EXECUTION_FAILED

    @pytest.mark.asyncio
    async def test_server_error_with_graphql_body_raises(self):
        def handler(request):
            return httpx.Response(503, json={"data": None, "errors": [{"message": "indexer down"}]})

        with pytest.raises(BackendExecutionError, match="HTTP 503") as exc_info:
            await _executor(handler).execute("{ a }")

        assert exc_info.value.errors == [{"message": "indexer down"}]
        assert exc_info.value.code == ErrorCode.BACKEND_EXECUTION_FAILED

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(BackendExecutionError, match="Timed out") as exc_info:
            await _executor(handler).execute("{ a }")

        assert exc_info.value.code == ErrorCode.BACKEND_TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendExecutionError, match="connection refused"):
            await _executor(handler).execute("{ a }")


async def _start_ws_backend(events, received, complete=True):
    """Minimal graphql-transport-ws backend emitting ``events`` for every subscribe."""

    async def graphql(request):
        ws = web.WebSocketResponse(protocols=(GRAPHQL_TRANSPORT_WS,))
        await ws.prepare(request)
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                break
            message = json.loads(msg.data)
            received.append(message)
            if message["type"] == "connection_init":
                await ws.send_json({"type": "connection_ack"})
            elif message["type"] == "subscribe":
                await ws.send_json({"type": "ping"})
                for payload in events:
                    await ws.send_json({"id": message["id"], "type": "next", "payload": payload})
                if complete:
                    await ws.send_json({"id": message["id"], "type": "complete"})
        return ws

    app = web.Application()
    app.router.add_get("/graphql", graphql)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


class TestHTTPExecutorSubscribe:
    @pytest.mark.asyncio
    async def test_streams_until_complete(self):
        received = []
        server = await _start_ws_backend([{"data": {"e": 1}}, {"data": {"e": 2}}], received)
        executor = HTTPExecutor(str(server.make_url("/graphql")))
        try:
            payloads = [p async for p in executor.subscribe("subscription { onEvent }")]
        finally:
            await executor.aclose()
            await server.close()

        assert payloads == [{"data": {"e": 1}}, {"data": {"e": 2}}]
        types = [m["type"] for m in received]
        assert types[:2] == ["connection_init", "subscribe"]
        assert "complete" not in types

    @pytest.mark.asyncio
    async def test_close_sends_complete(self):
        received = []
        server = await _start_ws_backend([{"data": {"e": 1}}], received, complete=False)
        executor = HTTPExecutor(str(server.make_url("/graphql")))
        try:
            stream = executor.subscribe("subscription { onEvent }")
            first = await stream.__anext__()
            await stream.aclose()
            for _ in range(100):
                if any(m["type"] == "complete" for m in received):
                    break
                await asyncio.sleep(0.01)
        finally:
            await executor.aclose()
            await server.close()

        assert first == {"data": {"e": 1}}
        subscribe = next(m for m in received if m["type"] == "subscribe")
        assert {"id": subscribe["id"], "type": "complete"} in received

    @pytest.mark.asyncio
    async def test_unreachable_backend(self):
        executor = HTTPExecutor("http://127.0.0.1:1/graphql")
        try:
            with pytest.raises(BackendExecutionError, match="Subscription to ws://127.0.0.1:1/graphql failed"):
                async for _ in executor.subscribe("subscription { onEvent }"):
                    pass
        finally:
            await executor.aclose()


class TestSchemaExecutor:
    @pytest.mark.asyncio
    async def test_execute_formats_result(self, azimuth_watcher):
        executor = SchemaExecutor(azimuth_watcher.service)

        result = await executor.execute('{ events(blockHash: "0xblock110", contractAddress: "0x1") { eventIndex } }')

        assert result["data"] == {"events": None}
        assert result["errors"][0]["extensions"]["code"] == ErrorCode.RANGE_OR_STATE.value

    @pytest.mark.asyncio
    async def test_subscribe_validation_error(self, azimuth_watcher):
        executor = SchemaExecutor(azimuth_watcher.service, endpoint=ENDPOINT)

        with pytest.raises(BackendExecutionError) as exc_info:
            async for _ in executor.subscribe("subscription { nope }"):
                pass

        assert exc_info.value.endpoint == ENDPOINT
        assert "nope" in exc_info.value.message
