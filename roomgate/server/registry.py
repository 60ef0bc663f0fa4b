"""
MODULE OVERVIEW:
The route table consulted by the HTTP dispatcher.

WHAT IS HAPPENING HERE:
Routes are registered once, before the server starts, and are keyed by
`METHOD:path`. Registering the same key twice is a startup error rather than
a silent overwrite: two handlers for one endpoint is always a wiring bug.
The application lifespan freezes the registry, after which it is read-only and
safe to share between every in-flight request.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Iterator, Literal

from loguru import logger

from roomgate.shared.errors import ConfigError, DuplicateRouteError
from roomgate.shared.identity import Identity
from roomgate.shared.schema import Schema

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

Handler = Callable[[Identity | None, Any], Awaitable[Any]]


@dataclass(frozen=True)
class RouteDescriptor:
    method: HttpMethod
    path: str
    handler: Handler
    require_auth: bool = False
    schema: Schema | None = None

    @property
    def key(self) -> str:
        return route_key(self.method, self.path)


def route_key(method: str, path: str) -> str:
    return f"{method.upper()}:{path}"


class RouteRegistry:
    def __init__(self):
        self._routes: dict[str, RouteDescriptor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, routes: Iterable[RouteDescriptor]) -> None:
        if self._frozen:
            raise ConfigError("routes must be registered before the server starts")
        for route in routes:
            if route.method not in SUPPORTED_METHODS:
                raise ConfigError(f"unsupported method {route.method!r} for {route.path}")
            if not route.path.startswith("/"):
                raise ConfigError(f"route path must start with '/': {route.path!r}")
            if route.key in self._routes:
                raise DuplicateRouteError(route.key)
            self._routes[route.key] = route
            logger.debug(f"route={route.key} auth={route.require_auth} schema={route.schema is not None} event=registered")

    def freeze(self) -> None:
        self._frozen = True

    def lookup(self, method: str, path: str) -> RouteDescriptor | None:
        return self._routes.get(route_key(method, path))

    def __contains__(self, key: str) -> bool:
        return key in self._routes

    def __iter__(self) -> Iterator[RouteDescriptor]:
        return iter(self._routes.values())

    def __len__(self) -> int:
        return len(self._routes)
