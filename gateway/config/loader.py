"""YAML + env var config loading with pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ByteSize, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def _load_yaml_defaults(path: Path) -> dict[str, Any]:
    """Load YAML config file, returning empty dict on failure."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


class GatewaySettings(BaseSettings):
    """Gateway configuration. Frozen once built; reconfigure by building a new one."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    bind: str = "127.0.0.1"
    port: int = 3000

    # TLS: both key and cert (PEM file paths) are needed for an HTTPS listener
    https: bool = False
    key: str | None = None
    cert: str | None = None

    logging: bool = True

    # "*", a single origin, a list of origins, or None to disable
    cors: str | list[str] | None = "*"

    error_on_bind_fail: bool = True

    enable_body_parser: bool = True
    body_parser_limit: ByteSize = Field(default="100mb", validate_default=True)

    enable_websocket: bool = True
    websocket_path: str = "/ws"

    # Seconds to wait for the data layer to answer a CRUD event
    crud_timeout: float = 30.0

    # Honor X-Forwarded-For / X-Real-IP when resolving the source address
    trust_proxy: bool = False

    # User middleware, appended after the built-in stages in this order
    middleware: tuple[Any, ...] = ()

    log_level: str = "info"
    log_json: bool = True
    config_file: str = str(_DEFAULTS_PATH)

    @field_validator("cors", mode="before")
    @classmethod
    def _normalize_cors(cls, v: Any) -> Any:
        if v is False or v == "" or v == []:
            return None
        if isinstance(v, tuple):
            return list(v)
        return v

    @model_validator(mode="after")
    def _check_tls_pair(self) -> GatewaySettings:
        if bool(self.key) != bool(self.cert):
            raise ValueError("key and cert must be provided together")
        return self

    @property
    def tls_enabled(self) -> bool:
        return bool(self.https and self.key and self.cert)

    @property
    def scheme_label(self) -> str:
        return "HTTPS" if self.https else "HTTP"


def load_settings(config_file: str | None = None, **overrides: Any) -> GatewaySettings:
    """Build settings: YAML file, then env vars, then explicit overrides."""
    from_env = GatewaySettings()
    path = Path(config_file or from_env.config_file)
    merged: dict[str, Any] = _load_yaml_defaults(path)
    merged.update({name: getattr(from_env, name) for name in from_env.model_fields_set})
    merged.update(overrides)
    settings = GatewaySettings(**merged)
    logger.debug("config_loaded", bind=settings.bind, port=settings.port, config_file=str(path))
    return settings


def merge_settings(current: GatewaySettings, **overrides: Any) -> GatewaySettings:
    """Return a new validated settings instance with ``overrides`` applied."""
    values = {name: getattr(current, name) for name in current.model_fields_set}
    values.update(overrides)
    return GatewaySettings(**values)
