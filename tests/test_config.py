"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from gateway.config.loader import GatewaySettings, load_settings, merge_settings


def test_default_settings():
    settings = load_settings()
    assert settings.bind == "127.0.0.1"
    assert settings.port == 3000
    assert settings.https is False
    assert settings.logging is True
    assert settings.cors == "*"
    assert settings.error_on_bind_fail is True
    assert settings.enable_body_parser is True
    assert settings.body_parser_limit == 100_000_000
    assert settings.enable_websocket is True
    assert settings.websocket_path == "/ws"
    assert settings.crud_timeout == 30.0
    assert settings.middleware == ()


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv("GATEWAY_PORT", "8080")
    monkeypatch.setenv("GATEWAY_ERROR_ON_BIND_FAIL", "false")
    settings = load_settings()
    assert settings.port == 8080
    assert settings.error_on_bind_fail is False


def test_yaml_file_overrides_defaults(tmp_path):
    path = tmp_path / "gateway.yaml"
    path.write_text("bind: 0.0.0.0\nport: 9000\ncors:\n  - https://a.example\n  - https://b.example\n")
    settings = load_settings(config_file=str(path))
    assert settings.bind == "0.0.0.0"
    assert settings.port == 9000
    assert settings.cors == ["https://a.example", "https://b.example"]


def test_env_wins_over_yaml(tmp_path, monkeypatch):
    path = tmp_path / "gateway.yaml"
    path.write_text("port: 9000\n")
    monkeypatch.setenv("GATEWAY_PORT", "9100")
    assert load_settings(config_file=str(path)).port == 9100


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("GATEWAY_PORT", "9100")
    assert load_settings(port=9200).port == 9200


def test_missing_yaml_file_is_ignored(tmp_path):
    settings = load_settings(config_file=str(tmp_path / "absent.yaml"))
    assert settings.port == 3000


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text("GATEWAY_BIND=0.0.0.0\n")
    assert GatewaySettings().bind == "0.0.0.0"


@pytest.mark.parametrize("value", [None, False, "", []])
def test_cors_disable_forms(value):
    assert GatewaySettings(cors=value).cors is None


def test_cors_single_origin():
    assert GatewaySettings(cors="https://app.example").cors == "https://app.example"


def test_body_limit_units():
    assert GatewaySettings(body_parser_limit="2kb").body_parser_limit == 2000
    assert GatewaySettings(body_parser_limit="1KiB").body_parser_limit == 1024
    assert GatewaySettings(body_parser_limit=512).body_parser_limit == 512


def test_key_and_cert_must_come_together():
    with pytest.raises(ValidationError):
        GatewaySettings(https=True, key="server.key")
    with pytest.raises(ValidationError):
        GatewaySettings(cert="server.crt")


def test_tls_enabled_needs_https_flag():
    assert GatewaySettings(https=True, key="k.pem", cert="c.pem").tls_enabled
    assert not GatewaySettings(key="k.pem", cert="c.pem").tls_enabled
    assert not GatewaySettings(https=True).tls_enabled


def test_scheme_label():
    assert GatewaySettings().scheme_label == "HTTP"
    assert GatewaySettings(https=True).scheme_label == "HTTPS"


def test_settings_are_frozen():
    settings = GatewaySettings()
    with pytest.raises(ValidationError):
        settings.port = 1


def test_merge_settings_keeps_explicit_values():
    base = GatewaySettings(bind="0.0.0.0", port=4000)
    merged = merge_settings(base, port=5000)
    assert merged.bind == "0.0.0.0"
    assert merged.port == 5000
    assert base.port == 4000


def test_middleware_setting_accepts_callables():
    def stage(request, context):
        return None

    assert GatewaySettings(middleware=[stage]).middleware == (stage,)
