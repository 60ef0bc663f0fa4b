"""
MODULE OVERVIEW:
Session token extraction and verification, shared by the HTTP dispatcher and
the realtime gateway.

WHAT IS HAPPENING HERE:
The browser sends the session as a cookie (`<cookie_name>=<jwt>`). We pick
that one cookie out of the `Cookie` header, verify the JWT signature and
expiry with PyJWT, and hand back the decoded claims as an `Identity`.
Issuing tokens is somebody else's job; this module only ever verifies them.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import jwt
from loguru import logger
from starlette.requests import cookie_parser

from roomgate.shared.errors import AuthError, ConfigError


@dataclass(frozen=True)
class Identity:
    """Verified claims of a session token. Opaque to the gateway apart from `id`."""

    claims: Mapping[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str | None:
        value = self.claims.get("uid", self.claims.get("sub"))
        return None if value is None else str(value)


class IdentityValidator:
    def __init__(
        self,
        secret: str,
        cookie_name: str,
        algorithms: Iterable[str] = ("HS256",),
        leeway_s: float = 0.0,
    ):
        if not secret:
            raise ConfigError("token signing secret is missing")
        self._secret = secret
        self.cookie_name = cookie_name
        self.algorithms = list(algorithms)
        self.leeway_s = leeway_s

    def extract(self, cookie_header: str | None) -> str | None:
        """Return the session token from a raw `Cookie` header, if present."""
        if not cookie_header:
            return None
        token = cookie_parser(cookie_header).get(self.cookie_name)
        return token or None

    def verify(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self.algorithms,
                leeway=self.leeway_s,
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError("session token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthError(f"invalid session token: {e}") from e
        return Identity(claims)

    def authenticate(self, cookie_header: str | None, context: Any) -> Identity:
        """
        Extract and verify the session cookie, then attach the identity to
        `context` (a request state, a websocket state...) as `context.identity`.
        """
        token = self.extract(cookie_header)
        if token is None:
            raise AuthError(f"cookie {self.cookie_name!r} is missing")
        identity = self.verify(token)
        context.identity = identity
        logger.debug(f"identity={identity.id} event=authenticated")
        return identity
