"""
Watcher gateway - service entry point.

Composes the registered watcher schemas into one federated schema at
startup and serves it over HTTP and WebSocket.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from watcher_gateway import __version__
from watcher_gateway.api.graphql import create_graphql_router
from watcher_gateway.core.config import Settings, get_settings
from watcher_gateway.core.federation.gateway import FederationGateway
from watcher_gateway.core.federation.registry import load_backend_registry
from watcher_gateway.utils.logging import setup_logging

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Settings], Awaitable[FederationGateway]]


async def build_gateway_from_registry(settings: Settings) -> FederationGateway:
    registry = load_backend_registry(settings.WATCHERS_CONFIG)
    return await FederationGateway.build(registry, settings)


def create_app(
    settings: Optional[Settings] = None,
    gateway_factory: GatewayFactory = build_gateway_from_registry,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting watcher gateway...")
        # Startup errors propagate: the server refuses to start without a schema
        gateway = await gateway_factory(settings)
        app.state.gateway = gateway
        logger.info(f"Gateway listening on http://{settings.HOST}:{settings.PORT}/graphql")

        yield

        logger.info("Shutting down watcher gateway...")
        app.state.gateway = None
        await gateway.aclose()

    app = FastAPI(
        title="Watcher Gateway",
        description="Federated GraphQL gateway over watcher services",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(
        create_graphql_router(
            lambda conn: conn.app.state.gateway,
            graphiql_title=settings.GRAPHIQL_TITLE,
        )
    )

    if settings.METRICS_ENABLED:
        app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health_check():
        gateway: Optional[FederationGateway] = app.state.gateway
        return {
            "status": "healthy" if gateway is not None else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "gateway": gateway.describe() if gateway is not None else None,
            "runtime": {
                "python_version": sys.version.split(" ")[0],
                "metrics_enabled": settings.METRICS_ENABLED,
                "strict_sync_status": settings.STRICT_SYNC_STATUS,
            },
        }

    @app.get("/ready")
    async def readiness_check():
        if app.state.gateway is None:
            raise HTTPException(status_code=503, detail="Federated schema not built")
        return {"status": "ready"}

    return app


settings = get_settings()
setup_logging(settings.LOG_LEVEL)
app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(
        "watcher_gateway.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
