"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest
from starlette.testclient import TestClient

from gateway.config.loader import GatewaySettings
from gateway.main import HttpGateway
from tests.helpers.hub import RecordingHub


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate every test from GATEWAY_* variables and any local .env file."""
    for key in list(os.environ):
        if key.startswith("GATEWAY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GATEWAY_LOG_JSON", "false")
    yield


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def make_gateway(hub):
    """Build an ``HttpGateway`` on the recording hub with test-friendly defaults."""

    def _make(**overrides) -> HttpGateway:
        values = {"port": 0, "crud_timeout": 2.0}
        values.update(overrides)
        return HttpGateway(hub, GatewaySettings(**values))

    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()


@pytest.fixture
def client_for():
    """Test client for a configured gateway, with the error stage installed as on start."""

    def _client(gw: HttpGateway) -> TestClient:
        app = gw.app or gw.configure()
        app.install_error_stage()
        return TestClient(app, raise_server_exceptions=False)

    return _client
