"""
MODULE OVERVIEW:
Per-request trace for the HTTP side of the gateway.

WHAT IS HAPPENING HERE:
Every HTTP response gets an `X-Process-Time-Ms` header, and one log line is
written per request naming the route key the dispatcher matched
(`POST:/login`), or `-` when nothing matched. The dispatcher stores that key
in `request.state`; the ASGI scope is shared, so we can read it back here
after `call_next` returns.

Requests slower than `slow_ms` are logged at WARNING so hung or heavy
handlers stand out without turning on DEBUG.
"""

import time

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


class RequestTraceMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, slow_ms: float = 1000.0):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        route_key = getattr(request.state, "route_key", "-")
        line = f"route={route_key} path={request.url.path} status={response.status_code} took_ms={process_time_ms:.2f}"
        if process_time_ms >= self.slow_ms:
            logger.warning(f"{line} event=slow_request")
        else:
            logger.debug(line)
        return response
