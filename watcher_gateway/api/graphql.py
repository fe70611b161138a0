"""GraphQL over HTTP and WebSocket.

Serves any schema service (the federated gateway or a single watcher):

- ``POST /graphql`` with a JSON body ``{query, variables, operationName}``
- ``GET /graphql?query=...`` for queries; without a query it serves GraphiQL
- ``WS /graphql`` speaking ``graphql-transport-ws`` for subscriptions
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Union

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from graphql import ExecutionResult, OperationType

from watcher_gateway.core.graphql.context import OperationContext
from watcher_gateway.core.graphql.service import GraphQLService, SubscriptionResult, format_result

logger = logging.getLogger(__name__)

GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"


class SchemaService(Protocol):
    def execute(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> Awaitable[ExecutionResult]: ...

    def subscribe(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        operation_name: Optional[str] = None,
        context: Optional[Any] = None,
    ) -> Awaitable[SubscriptionResult]: ...


ServiceGetter = Callable[[Union[Request, WebSocket]], Optional[SchemaService]]

GRAPHIQL_HTML = """<!DOCTYPE html>
<html>
  <head>
    <title>{title}</title>
    <link rel="stylesheet" href="https://unpkg.com/graphiql@3/graphiql.min.css" />
  </head>
  <body style="margin: 0">
    <div id="graphiql" style="height: 100vh"></div>
    <script crossorigin src="https://unpkg.com/react@18/umd/react.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/graphiql@3/graphiql.min.js"></script>
    <script>
      const fetcher = GraphiQL.createFetcher({{ url: window.location.href }});
      ReactDOM.createRoot(document.getElementById("graphiql")).render(
        React.createElement(GraphiQL, {{ fetcher }})
      );
    </script>
  </body>
</html>
"""


def _error_response(message: str, status_code: int, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"data": None, "errors": [{"message": message}]}, status_code=status_code, headers=headers)


def _parse_variables(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("Variables must be an object")
    return raw


def create_graphql_router(
    get_service: ServiceGetter,
    *,
    path: str = "/graphql",
    graphiql_title: str = "GraphiQL",
) -> APIRouter:
    """Build the GraphQL router for a schema service.

    Args:
        get_service: Returns the service for a request, or None while the schema is not built
        path: Mount path for HTTP and WebSocket
        graphiql_title: Title of the GraphiQL page
    """
    router = APIRouter(tags=["graphql"])

    async def run(request: Request, query: Any, variables: Any, operation_name: Any) -> JSONResponse:
        service = get_service(request)
        if service is None:
            return _error_response("Schema is not ready", 503)
        if not isinstance(query, str) or not query.strip():
            return _error_response("Must provide query string.", 400)
        try:
            parsed_variables = _parse_variables(variables)
        except ValueError:
            return _error_response("Variables are invalid JSON.", 400)

        context = OperationContext.from_request(
            query=query,
            variables=parsed_variables,
            operation_name=operation_name,
            url_path=request.url.path,
            headers=request.headers,
        )
        result = await service.execute(query, parsed_variables, operation_name, context)
        return JSONResponse(format_result(result))

    @router.post(path)
    async def graphql_post(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error_response("POST body sent invalid JSON.", 400)
        if not isinstance(body, dict):
            return _error_response("POST body must be a JSON object.", 400)
        return await run(request, body.get("query"), body.get("variables"), body.get("operationName"))

    @router.get(path)
    async def graphql_get(request: Request):
        params = request.query_params
        query = params.get("query")
        if query is None and "text/html" in request.headers.get("accept", ""):
            return HTMLResponse(GRAPHIQL_HTML.format(title=graphiql_title))
        if query and GraphQLService.operation_type(query, params.get("operationName")) == OperationType.MUTATION:
            return _error_response(
                "Can only perform a mutation operation from a POST request.",
                405,
                headers={"Allow": "POST"},
            )
        return await run(request, query, params.get("variables"), params.get("operationName"))

    @router.websocket(path)
    async def graphql_ws(websocket: WebSocket) -> None:
        if GRAPHQL_TRANSPORT_WS not in websocket.scope.get("subprotocols", []):
            await websocket.close(code=4406, reason="Subprotocol not acceptable")
            return
        await websocket.accept(subprotocol=GRAPHQL_TRANSPORT_WS)
        connection = TransportWSConnection(websocket, get_service(websocket))
        await connection.serve()

    return router


class TransportWSConnection:
    """One ``graphql-transport-ws`` connection and its running operations."""

    def __init__(self, websocket: WebSocket, service: Optional[SchemaService]):
        self.websocket = websocket
        self.service = service
        self.initialised = False
        self.closed = False
        self.operations: Dict[str, asyncio.Task] = {}
        self._send_lock = asyncio.Lock()

    async def serve(self) -> None:
        try:
            while not self.closed:
                text = await self.websocket.receive_text()
                try:
                    message = json.loads(text)
                except ValueError:
                    await self.close(4400, "Invalid message received")
                    break
                await self.handle(message)
        except WebSocketDisconnect:
            logger.info("GraphQL WebSocket disconnected", extra={"url_path": self.websocket.url.path})
        finally:
            self.closed = True
            await self.cancel_all()

    async def handle(self, message: Any) -> None:
        if not isinstance(message, dict):
            await self.close(4400, "Invalid message received")
            return
        kind = message.get("type")

        if kind == "connection_init":
            if self.initialised:
                await self.close(4429, "Too many initialisation requests")
                return
            self.initialised = True
            await self.send({"type": "connection_ack"})
        elif kind == "ping":
            await self.send({"type": "pong"})
        elif kind == "pong":
            return
        elif kind == "subscribe":
            await self.start(message)
        elif kind == "complete":
            task = self.operations.pop(str(message.get("id")), None)
            if task is not None:
                task.cancel()
        else:
            await self.close(4400, f"Unexpected message type {kind!r}")

    async def start(self, message: Dict[str, Any]) -> None:
        if not self.initialised:
            await self.close(4401, "Unauthorized")
            return
        op_id = message.get("id")
        payload = message.get("payload")
        if not isinstance(op_id, str) or not isinstance(payload, dict) or not isinstance(payload.get("query"), str):
            await self.close(4400, "Invalid subscribe message")
            return
        if op_id in self.operations:
            await self.close(4409, f"Subscriber for {op_id} already exists")
            return
        self.operations[op_id] = asyncio.create_task(self.run(op_id, payload))

    async def run(self, op_id: str, payload: Dict[str, Any]) -> None:
        query = payload["query"]
        operation_name = payload.get("operationName")
        try:
            variables = _parse_variables(payload.get("variables"))
        except ValueError:
            await self.send({"id": op_id, "type": "error", "payload": [{"message": "Variables are invalid JSON."}]})
            self._release(op_id)
            return
        context = OperationContext.from_request(
            query=query,
            variables=variables,
            operation_name=operation_name,
            url_path=self.websocket.url.path,
            headers=self.websocket.headers,
        )
        try:
            if self.service is None:
                await self.send({"id": op_id, "type": "error", "payload": [{"message": "Schema is not ready"}]})
                return
            if GraphQLService.operation_type(query, operation_name) == OperationType.SUBSCRIPTION:
                result = await self.service.subscribe(query, variables, operation_name, context)
                if isinstance(result, ExecutionResult):
                    await self.send({"id": op_id, "type": "error", "payload": format_result(result).get("errors", [])})
                    return
                try:
                    async for item in result:
                        await self.send({"id": op_id, "type": "next", "payload": format_result(item)})
                finally:
                    await result.aclose()
            else:
                result = await self.service.execute(query, variables, operation_name, context)
                await self.send({"id": op_id, "type": "next", "payload": format_result(result)})
            await self.send({"id": op_id, "type": "complete"})
        except asyncio.CancelledError:
            logger.debug(f"Operation {op_id} cancelled")
            raise
        except Exception as e:
            logger.error(
                "GraphQL WebSocket operation failed",
                extra={"op_name": operation_name, "error": str(e)},
                exc_info=True,
            )
            await self.send({"id": op_id, "type": "error", "payload": [{"message": str(e)}]})
        finally:
            self._release(op_id)

    def _release(self, op_id: str) -> None:
        # A completed id may already be reused by a newer operation
        if self.operations.get(op_id) is asyncio.current_task():
            del self.operations[op_id]

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            return
        async with self._send_lock:
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.closed = True

    async def close(self, code: int, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        logger.warning(f"Closing GraphQL WebSocket: {code} {reason}")
        await self.websocket.close(code=code, reason=reason)

    async def cancel_all(self) -> None:
        tasks = list(self.operations.values())
        self.operations.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
