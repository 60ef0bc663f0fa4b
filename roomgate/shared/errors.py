"""
MODULE OVERVIEW:
The error taxonomy shared by the HTTP dispatcher and the realtime gateway.

WHAT IS HAPPENING HERE:
Every per-request failure is an exception carrying the HTTP status it maps to
and the value the client is allowed to see in the envelope. The dispatcher
catches `GatewayError` at one place and turns it into a response, so nothing
raised inside a pipeline step can take the process down.
`ConfigError` is the only fatal kind and is raised at startup only.
"""
from typing import Any


class GatewayError(Exception):
    status: int = 500
    response: Any = False


class ConfigError(GatewayError):
    """Missing or invalid startup configuration. Fatal."""


class SchemaDefinitionError(ConfigError):
    """A schema node was declared with the wrong constraints for its kind."""


class DuplicateRouteError(ConfigError):
    def __init__(self, key: str):
        super().__init__(f"route {key} is already registered")
        self.key = key


class BadRequest(GatewayError):
    status = 400


class MalformedJSON(BadRequest):
    pass


class MissingPayload(BadRequest):
    pass


class HandlerError(BadRequest):
    """The route handler failed. The cause is logged, never sent to the client."""


class AuthError(GatewayError):
    status = 403


class RouteNotFound(GatewayError):
    status = 404


class RequestTimeout(GatewayError):
    status = 408


class PayloadTooLarge(GatewayError):
    status = 413


class ValidationError(GatewayError):
    status = 422

    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path
        self.message = message

    @property
    def response(self) -> str:
        return self.message
