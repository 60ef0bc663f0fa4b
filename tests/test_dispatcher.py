"""Tests for roomgate.server.dispatcher through the full application."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from helpers import COOKIE, ORIGIN, ROUTES, make_token
from loguru import logger
from starlette.requests import Request
from starlette.websockets import WebSocketDisconnect

from roomgate.server.dispatcher import HttpDispatcher
from roomgate.server.main import create_app
from roomgate.server.registry import RouteDescriptor, RouteRegistry
from roomgate.shared.identity import IdentityValidator


def cookie(token: str) -> dict[str, str]:
    return {"cookie": f"{COOKIE}={token}"}


class TestEnvelope:
    """Every outcome shares one envelope and one set of headers."""

    def test_login_scenario(self, client):
        response = client.post("/login", json={"user": "a", "pass": "b"})
        assert response.status_code == 200
        assert response.json() == {"error": False, "response": {"welcome": "a"}}

    @pytest.mark.parametrize("path", ["/login", "/missing"])
    def test_fixed_headers(self, client, path):
        response = client.post(path, json={"user": "a", "pass": "b"})
        assert response.headers["access-control-allow-origin"] == ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"
        assert response.headers["content-type"] == "application/json; charset=utf-8"

    def test_timing_header(self, client):
        assert "x-process-time-ms" in client.post("/login", json={"user": "a", "pass": "b"}).headers

    def test_cors_preflight(self, client):
        response = client.options(
            "/login",
            headers={"origin": ORIGIN, "access-control-request-method": "POST"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == ORIGIN


class TestBodyLimit:
    """Bodies above 5120 bytes are refused before anything else happens."""

    @pytest.mark.parametrize("path", ["/upload", "/login", "/echo"])
    def test_oversized_body_is_413_on_any_path(self, client, path):
        response = client.post(path, content=b"x" * 6000)
        assert response.status_code == 413
        assert response.json() == {"error": True, "response": False}

    def test_body_exactly_at_the_limit_is_accepted(self, client):
        body = json.dumps({"k": "a" * 5111})
        assert len(body) == 5120
        response = client.post("/echo", content=body)
        assert response.status_code == 200
        assert response.json()["response"] == {"k": "a" * 5111}


class TestRouting:
    """Route lookup and payload parsing."""

    def test_unknown_route_is_404(self, client):
        response = client.get("/nowhere")
        assert response.status_code == 404
        assert response.json() == {"error": True, "response": False}

    def test_wrong_method_is_404(self, client):
        assert client.get("/login").status_code == 404

    def test_query_string_is_ignored_for_lookup(self, client, token):
        assert client.get("/profile?tab=1", headers=cookie(token)).status_code == 200

    def test_malformed_json_is_400(self, client):
        response = client.post("/echo", content=b"{not json")
        assert response.status_code == 400
        assert response.json() == {"error": True, "response": False}

    def test_malformed_json_is_reported_before_auth(self, client):
        assert client.post("/orders", content=b"{not json").status_code == 400

    def test_invalid_utf8_is_400(self, client):
        assert client.post("/echo", content=b"\xff\xfe").status_code == 400

    def test_deeply_nested_json_is_400(self, client):
        body = b"[" * 2560 + b"]" * 2560
        assert len(body) == 5120
        response = client.post("/echo", content=body)
        assert response.status_code == 400
        assert response.json() == {"error": True, "response": False}

    def test_empty_body_means_no_payload(self, client):
        response = client.delete("/echo")
        assert response.status_code == 200
        assert response.json() == {"error": False, "response": None}

    def test_schema_route_without_body_is_400(self, client):
        assert client.post("/login").status_code == 400


class TestAuth:
    """Login-gated routes."""

    def test_profile_without_cookie_is_403(self, client):
        response = client.get("/profile")
        assert response.status_code == 403
        assert response.json() == {"error": True, "response": False}

    def test_tampered_cookie_is_403(self, client, token):
        header, payload, _ = token.split(".")
        _, _, signature = make_token({"uid": "u-9"}).split(".")
        assert client.get("/profile", headers=cookie(f"{header}.{payload}.{signature}")).status_code == 403

    def test_expired_cookie_is_403(self, client):
        assert client.get("/profile", headers=cookie(make_token(expires_in=-60))).status_code == 403

    def test_valid_cookie_reaches_handler_with_identity(self, client, token):
        response = client.get("/profile", headers=cookie(token))
        assert response.status_code == 200
        assert response.json()["response"] == {"uid": "u-1", "name": "Ada Lovelace"}

    def test_auth_runs_before_validation(self, client):
        assert client.post("/orders", json={"items": "nope"}).status_code == 403


class TestValidation:
    """Schema failures answer 422 with the validator's message."""

    def test_number_below_min(self, client):
        response = client.patch("/stock", json={"qty": -1})
        assert response.status_code == 422
        body = response.json()
        assert body["error"] is True
        assert '"qty"' in body["response"]

    def test_number_on_min(self, client):
        response = client.patch("/stock", json={"qty": 0})
        assert response.status_code == 200
        assert response.json()["response"] == {"qty": 0}

    def test_unknown_key(self, client):
        response = client.post("/login", json={"user": "a", "pass": "b", "admin": True})
        assert response.status_code == 422
        assert '"admin"' in response.json()["response"]

    def test_missing_key(self, client):
        response = client.post("/login", json={"user": "a"})
        assert response.status_code == 422
        assert '"pass"' in response.json()["response"]

    def test_nested_error_path(self, client, token):
        payload = {"items": [{"sku": "abc", "qty": 1}, {"sku": "toolong", "qty": 1}]}
        response = client.post("/orders", json=payload, headers=cookie(token))
        assert response.status_code == 422
        assert '"items[1].sku"' in response.json()["response"]

    def test_nested_valid_payload(self, client, token):
        payload = {"items": [{"sku": "abc", "qty": 2}, {"sku": "defg", "qty": 3}], "gift": True}
        response = client.post("/orders", json=payload, headers=cookie(token))
        assert response.status_code == 200
        assert response.json()["response"] == {"total": 5}


class TestHandlerFailures:
    """Handler errors become a bare 400 envelope."""

    def test_exception_is_400_without_details(self, client):
        response = client.post("/broken")
        assert response.status_code == 400
        assert response.json() == {"error": True, "response": False}
        assert "hunter2" not in response.text

    def test_hung_handler_times_out_as_400(self, config):
        async def slow(identity, payload):
            await asyncio.sleep(5)

        app = create_app(config.model_copy(update={"handler_timeout_s": 0.05}), [RouteDescriptor("GET", "/slow", slow)])
        with TestClient(app) as client:
            response = client.get("/slow")
        assert response.status_code == 400
        assert response.json() == {"error": True, "response": False}

    def test_unserializable_result_is_400(self, config):
        async def ratio(identity, payload):
            return {"ratio": float("nan")}

        with TestClient(create_app(config, [RouteDescriptor("GET", "/ratio", ratio)])) as client:
            response = client.get("/ratio")
        assert response.status_code == 400
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        assert response.json() == {"error": True, "response": False}


class TestRequestTrace:
    """One trace line per request, naming the matched route."""

    @pytest.fixture
    def trace(self):
        lines = []
        sink = logger.add(lambda message: lines.append(message.record), level="DEBUG")
        yield lines
        logger.remove(sink)

    def test_matched_route_key_is_logged(self, client, trace):
        client.post("/login", json={"user": "a", "pass": "b"})
        assert any("route=POST:/login" in r["message"] and "status=200" in r["message"] for r in trace)

    def test_unmatched_request_logs_a_dash(self, client, trace):
        client.get("/nowhere")
        assert any("route=- path=/nowhere status=404" in r["message"] for r in trace)

    def test_slow_requests_are_warnings(self, config, trace):
        with TestClient(create_app(config.model_copy(update={"slow_request_ms": 0}), ROUTES)) as client:
            client.post("/login", json={"user": "a", "pass": "b"})
        slow = [r for r in trace if "event=slow_request" in r["message"]]
        assert slow and slow[0]["level"].name == "WARNING"


class TestNonHttpScopes:
    """A websocket on an ordinary path is closed."""

    def test_websocket_outside_realtime_path(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/login") as ws:
                ws.receive_text()


def http_scope(path: str = "/echo", headers: list | None = None) -> dict:
    return {
        "type": "http",
        "method": "POST",
        "path": path,
        "root_path": "",
        "scheme": "http",
        "server": ("testserver", 80),
        "query_string": b"",
        "headers": headers or [],
    }


@pytest.fixture
def dispatcher(config):
    registry = RouteRegistry()
    registry.register(ROUTES)
    return HttpDispatcher(
        config.model_copy(update={"body_timeout_s": 0.05}),
        registry,
        IdentityValidator(config.secret.get_secret_value(), config.cookie_name),
    )


class TestStreamingBody:
    """Body accumulation over several ASGI messages."""

    @pytest.mark.asyncio
    async def test_chunks_over_the_limit_are_413(self, dispatcher):
        chunks = [b"x" * 3000, b"x" * 3000, b"x" * 3000]

        async def receive():
            chunk = chunks.pop(0)
            return {"type": "http.request", "body": chunk, "more_body": bool(chunks)}

        response = await dispatcher.dispatch(Request(http_scope(), receive))
        assert response.status_code == 413
        # aborted as soon as the limit was crossed
        assert len(chunks) == 1

    @pytest.mark.asyncio
    async def test_declared_length_over_the_limit_is_413_without_reading(self, dispatcher):
        async def receive():
            raise AssertionError("body should not be read")

        scope = http_scope(headers=[(b"content-length", b"99999")])
        response = await dispatcher.dispatch(Request(scope, receive))
        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_stalled_body_times_out(self, dispatcher):
        async def receive():
            await asyncio.Event().wait()

        response = await dispatcher.dispatch(Request(http_scope(), receive))
        assert response.status_code == 408
        assert json.loads(response.body) == {"error": True, "response": False}
