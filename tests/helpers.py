"""Tokens, headers and the route table used across the test suite."""

import time

import jwt

from roomgate.server.registry import RouteDescriptor
from roomgate.shared.schema import array, boolean, number, obj, string

SECRET = "test-signing-secret"
ORIGIN = "http://app.local"
COOKIE = "token"


def make_token(claims: dict | None = None, secret: str = SECRET, expires_in: int = 3600) -> str:
    payload = {"uid": "u-1", "fullname": "Ada Lovelace", "shortName": "ada"}
    payload.update(claims or {})
    payload.setdefault("exp", int(time.time()) + expires_in)
    return jwt.encode(payload, secret, algorithm="HS256")


def session_headers(token: str | None = None, origin: str | None = ORIGIN) -> dict[str, str]:
    headers = {}
    if token is not None:
        headers["cookie"] = f"{COOKIE}={token}"
    if origin is not None:
        headers["origin"] = origin
    return headers


async def login(identity, payload):
    return {"welcome": payload["user"]}


async def profile(identity, payload):
    return {"uid": identity.id, "name": identity.claims["fullname"]}


async def order(identity, payload):
    return {"total": sum(item["qty"] for item in payload["items"])}


async def stock(identity, payload):
    return {"qty": payload["qty"]}


async def broken(identity, payload):
    raise RuntimeError("database password is hunter2")


async def echo(identity, payload):
    return payload


ROUTES = [
    RouteDescriptor(
        "POST",
        "/login",
        login,
        schema={"user": string(min_length=1), "pass": string(min_length=1)},
    ),
    RouteDescriptor("GET", "/profile", profile, require_auth=True),
    RouteDescriptor(
        "POST",
        "/orders",
        order,
        require_auth=True,
        schema={
            "items": array(obj({"sku": string(min_length=3, max_length=5), "qty": number(min=1)})),
            "gift": boolean(optional=True),
        },
    ),
    RouteDescriptor("PATCH", "/stock", stock, schema={"qty": number(min=0)}),
    RouteDescriptor("POST", "/broken", broken),
    RouteDescriptor("POST", "/echo", echo),
    RouteDescriptor("DELETE", "/echo", echo),
]


