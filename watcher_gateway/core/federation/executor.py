"""Executors: capabilities that forward an operation to one watcher backend.

``HTTPExecutor`` talks to a remote watcher (httpx for queries and mutations,
an aiohttp WebSocket speaking ``graphql-transport-ws`` for subscriptions).
``SchemaExecutor`` runs operations against an in-process schema.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Protocol
from urllib.parse import urlparse, urlunparse

import aiohttp
import httpx

from watcher_gateway.core.errors import BackendExecutionError
from watcher_gateway.core.graphql.service import GraphQLService, format_result

logger = logging.getLogger(__name__)

GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"


class Executor(Protocol):
    endpoint: str

    async def execute(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...

    def subscribe(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        ...

    async def aclose(self) -> None:
        ...


def _request_payload(
    document: str, variables: Optional[Mapping[str, Any]], operation_name: Optional[str]
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"query": document}
    if variables:
        payload["variables"] = dict(variables)
    if operation_name:
        payload["operationName"] = operation_name
    return payload


def websocket_url(endpoint: str) -> str:
    """Map an http(s) endpoint to its ws(s) counterpart."""
    parsed = urlparse(endpoint)
    scheme = "wss" if parsed.scheme == "https" else "ws"
    return urlunparse(parsed._replace(scheme=scheme))


class HTTPExecutor:
    """Forward operations to a remote watcher over HTTP and WebSocket."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 60.0,
        heartbeat_seconds: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @property
    def ws_url(self) -> str:
        return websocket_url(self.endpoint)

    async def execute(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            resp = await self._client.post(
                self.endpoint,
                json=_request_payload(document, variables, operation_name),
                headers={"accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise BackendExecutionError(
                f"Timed out after {self.timeout_seconds}s waiting for {self.endpoint}",
                endpoint=self.endpoint,
                timeout=True,
            ) from e
        except httpx.RequestError as e:
            raise BackendExecutionError(
                f"Request to {self.endpoint} failed: {e}", endpoint=self.endpoint
            ) from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 500:
            errors = body.get("errors") if isinstance(body, dict) else None
            raise BackendExecutionError(
                f"{self.endpoint} responded with HTTP {resp.status_code}",
                endpoint=self.endpoint,
                errors=errors if isinstance(errors, list) else None,
            )

        # GraphQL servers answer validation failures with 4xx and a result body
        if not isinstance(body, dict) or not ("data" in body or "errors" in body):
            raise BackendExecutionError(
                f"{self.endpoint} responded with HTTP {resp.status_code} and no GraphQL result",
                endpoint=self.endpoint,
            )
        return body

    async def subscribe(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Open one backend subscription and yield each ``next`` payload.

        Closing the iterator sends ``complete`` and closes the socket, so a
        client disconnect never leaves the backend stream open.
        """
        op_id = uuid.uuid4().hex
        session = aiohttp.ClientSession()
        try:
            async with session.ws_connect(
                self.ws_url,
                protocols=(GRAPHQL_TRANSPORT_WS,),
                heartbeat=self.heartbeat_seconds,
            ) as ws:
                await self._handshake(ws)
                await ws.send_json(
                    {
                        "id": op_id,
                        "type": "subscribe",
                        "payload": _request_payload(document, variables, operation_name),
                    }
                )
                completed = False
                try:
                    async for msg in ws:
                        if msg.type != aiohttp.WSMsgType.TEXT:
                            break
                        message = json.loads(msg.data)
                        kind = message.get("type")
                        if kind == "ping":
                            await ws.send_json({"type": "pong"})
                        elif message.get("id") != op_id:
                            continue
                        elif kind == "next":
                            yield message.get("payload") or {}
                        elif kind == "error":
                            completed = True
                            raise BackendExecutionError.from_graphql_errors(
                                message.get("payload") or [], endpoint=self.endpoint
                            )
                        elif kind == "complete":
                            completed = True
                            return
                finally:
                    if not completed and not ws.closed:
                        with suppress(ConnectionResetError):
                            await ws.send_json({"id": op_id, "type": "complete"})
        except aiohttp.ClientError as e:
            raise BackendExecutionError(
                f"Subscription to {self.ws_url} failed: {e}", endpoint=self.endpoint
            ) from e
        finally:
            await session.close()

    async def _handshake(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        await ws.send_json({"type": "connection_init", "payload": {}})
        try:
            while True:
                message = await ws.receive_json(timeout=self.timeout_seconds)
                if message.get("type") == "connection_ack":
                    return
                if message.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
                    continue
                raise BackendExecutionError(
                    f"{self.ws_url} rejected the connection: {message}", endpoint=self.endpoint
                )
        except asyncio.TimeoutError as e:
            raise BackendExecutionError(
                f"No connection_ack from {self.ws_url}", endpoint=self.endpoint, timeout=True
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()


class SchemaExecutor:
    """Executor over an in-process executable schema."""

    def __init__(self, service: GraphQLService, endpoint: str = "local://schema") -> None:
        self.service = service
        self.endpoint = endpoint

    async def execute(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await self.service.execute(document, variables, operation_name)
        return format_result(result)

    async def subscribe(
        self,
        document: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        stream = await self.service.subscribe(document, variables, operation_name)
        if not hasattr(stream, "__aiter__"):
            raise BackendExecutionError.from_graphql_errors(
                format_result(stream).get("errors", []), endpoint=self.endpoint
            )
        try:
            async for result in stream:
                yield format_result(result)
        finally:
            await stream.aclose()

    async def aclose(self) -> None:
        return None
