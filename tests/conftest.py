"""Shared pytest fixtures: config, a valid session token and the app."""

import pytest
from fastapi.testclient import TestClient
from helpers import COOKIE, ORIGIN, ROUTES, SECRET, make_token

from roomgate.server.main import create_app
from roomgate.shared.config import GatewayConfig


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(origin=ORIGIN, secret=SECRET, cookie_name=COOKIE)


@pytest.fixture
def token() -> str:
    return make_token()


@pytest.fixture
def app(config):
    return create_app(config, ROUTES)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
