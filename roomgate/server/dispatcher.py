"""
MODULE OVERVIEW:
The HTTP request dispatcher: a plain ASGI application mounted underneath the
FastAPI app, behind the realtime route.

WHAT IS HAPPENING HERE:
Each request walks the same pipeline, strictly in this order, and the first
step that fails decides the response:

    RECEIVING_BODY -> ROUTE_LOOKUP -> PARSE_PAYLOAD -> AUTH_CHECK -> VALIDATE -> INVOKE

The body is read BEFORE the route is looked up, so an oversized body is
always answered with 413, even on an unknown path. Every outcome, good or
bad, leaves through `EnvelopeResponse` with the same CORS headers, and
handler failures never leak their cause to the client.
"""
import asyncio
import json
from typing import Any

from fastapi.encoders import jsonable_encoder
from loguru import logger
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse
from starlette.types import Receive, Scope, Send
from starlette.websockets import WebSocketClose

from roomgate.server.registry import RouteDescriptor, RouteRegistry
from roomgate.shared.config import GatewayConfig
from roomgate.shared.errors import (
    BadRequest,
    GatewayError,
    HandlerError,
    MalformedJSON,
    MissingPayload,
    PayloadTooLarge,
    RequestTimeout,
    RouteNotFound,
)
from roomgate.shared.identity import Identity, IdentityValidator
from roomgate.shared.models import Envelope
from roomgate.shared.schema import validate


class EnvelopeResponse(JSONResponse):
    media_type = "application/json; charset=utf-8"


class HttpDispatcher:
    def __init__(self, config: GatewayConfig, registry: RouteRegistry, identity: IdentityValidator):
        self.config = config
        self.registry = registry
        self.identity = identity

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            # A websocket on any path other than the realtime endpoint
            await WebSocketClose()(scope, receive, send)
            return
        response = await self.dispatch(Request(scope, receive))
        await response(scope, receive, send)

    def envelope(self, status: int, error: bool, response: Any) -> EnvelopeResponse:
        return EnvelopeResponse(
            Envelope(error=error, response=response).model_dump(),
            status_code=status,
            headers=self.config.cors_headers,
        )

    async def dispatch(self, request: Request) -> EnvelopeResponse:
        try:
            body = await self._receive_body(request)
            route = self._lookup(request)
            payload = self._parse_payload(route, body)
            identity = self._authenticate(route, request)
            self._validate(route, payload)
            return await self._invoke(route, identity, payload)
        except GatewayError as e:
            logger.info(
                f"method={request.method} path={request.url.path} status={e.status} "
                f"reason={type(e).__name__} detail='{e}'"
            )
            return self.envelope(e.status, True, e.response)

    # RECEIVING_BODY

    async def _receive_body(self, request: Request) -> bytes:
        limit = self.config.max_body_size
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLarge(f"declared body of {declared} bytes exceeds {limit}")
        try:
            return await asyncio.wait_for(self._read_chunks(request, limit), timeout=self.config.body_timeout_s)
        except asyncio.TimeoutError:
            raise RequestTimeout(f"body not received within {self.config.body_timeout_s}s") from None
        except ClientDisconnect:
            raise BadRequest("client disconnected while sending the body") from None

    @staticmethod
    async def _read_chunks(request: Request, limit: int) -> bytes:
        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise PayloadTooLarge(f"body exceeds {limit} bytes")
        return bytes(body)

    # ROUTE_LOOKUP

    def _lookup(self, request: Request) -> RouteDescriptor:
        method, path = request.method, request.url.path
        if not method or not path:
            raise BadRequest("request without method or url")
        route = self.registry.lookup(method, path)
        if route is None:
            if self.config.debug:
                logger.debug(f"method={method} path={path} event=mismatch")
            raise RouteNotFound(f"no route for {method} {path}")
        request.state.route_key = route.key
        return route

    # PARSE_PAYLOAD

    def _parse_payload(self, route: RouteDescriptor, body: bytes) -> Any:
        if route.method == "GET" or not body.strip():
            return None
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise MalformedJSON(f"body is not valid JSON: {e}") from e
        if self.config.debug:
            logger.debug(f"route={route.key} event=payload size={len(body)}")
        return payload

    # AUTH_CHECK

    def _authenticate(self, route: RouteDescriptor, request: Request) -> Identity | None:
        if not route.require_auth:
            return None
        return self.identity.authenticate(request.headers.get("cookie"), request.state)

    # VALIDATE

    @staticmethod
    def _validate(route: RouteDescriptor, payload: Any) -> None:
        if route.schema is None:
            return
        if payload is None:
            raise MissingPayload(f"{route.key} expects a JSON body")
        validate(payload, route.schema)

    # INVOKE

    async def _invoke(self, route: RouteDescriptor, identity: Identity | None, payload: Any) -> EnvelopeResponse:
        """Run the handler and render its result. Anything that fails, rendering included, is a HandlerError."""
        try:
            result = await asyncio.wait_for(
                route.handler(identity, payload),
                timeout=self.config.handler_timeout_s,
            )
            response = self.envelope(200, False, jsonable_encoder(result))
        except Exception as e:
            logger.opt(exception=e).warning(f"route={route.key} event=handler_failed reason={type(e).__name__}")
            raise HandlerError(f"handler for {route.key} failed") from e
        if self.config.debug:
            logger.debug(f"route={route.key} event=handler_ok")
        return response
