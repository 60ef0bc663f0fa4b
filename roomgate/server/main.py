"""
MODULE OVERVIEW:
The FastAPI application factory.

WHAT IS HAPPENING HERE:
`create_app` builds every collaborator from ONE immutable `GatewayConfig`:

    IdentityValidator  <- shared by both engines
    RouteRegistry      <- filled with the routes passed in (or later, before startup)
    HttpDispatcher     <- mounted at "/", catches every HTTP path
    RealtimeGateway    <- served on config.realtime_path, registered first so it wins

We use a `lifespan` context manager. On startup the registry is frozen, so the
route table can no longer change while requests are in flight. On shutdown
every open websocket is closed cleanly.
"""

from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from roomgate.server.dispatcher import HttpDispatcher
from roomgate.server.gateway import RealtimeGateway
from roomgate.server.middleware import RequestTraceMiddleware
from roomgate.server.registry import SUPPORTED_METHODS, RouteDescriptor, RouteRegistry
from roomgate.server.routes import realtime
from roomgate.shared.config import GatewayConfig
from roomgate.shared.identity import IdentityValidator


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry: RouteRegistry = app.state.registry
    gateway: RealtimeGateway = app.state.gateway

    # STARTUP
    registry.freeze()
    logger.info(f"roomgate starting up with {len(registry)} routes, realtime on {gateway.config.realtime_path}")

    yield

    # SHUTDOWN
    logger.info(f"Server shutting down. Closing {len(gateway.sockets)} realtime connections...")
    await gateway.close_all()
    logger.info("Shutdown complete.")


def create_app(config: GatewayConfig, routes: Iterable[RouteDescriptor] = ()) -> FastAPI:
    identity = IdentityValidator(
        config.secret.get_secret_value(),
        config.cookie_name,
        algorithms=config.token_algorithms,
        leeway_s=config.token_leeway_s,
    )
    registry = RouteRegistry()
    registry.register(routes)
    gateway = RealtimeGateway(config, identity)
    dispatcher = HttpDispatcher(config, registry, identity)

    app = FastAPI(
        title="roomgate",
        description="Authenticated JSON API gateway with realtime rooms",
        version="1.0.0",
        lifespan=lifespan,
        # Every HTTP path belongs to the dispatcher
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.dispatcher = dispatcher

    app.add_middleware(RequestTraceMiddleware, slow_ms=config.slow_request_ms)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.origin],
        allow_credentials=True,
        allow_methods=list(SUPPORTED_METHODS),
        allow_headers=["*"],
    )

    app.add_api_websocket_route(config.realtime_path, realtime.realtime_endpoint)
    app.mount("/", dispatcher)
    return app
