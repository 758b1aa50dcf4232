"""Presence relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml: non-secret configuration plus the token signing key

The path can be overridden with the ``RELAY_SETTINGS`` environment variable.
A missing file is not an error: every section falls back to its defaults.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5120
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class RealtimeSettings(BaseModel):
    """WebSocket endpoint settings for the relay core."""
    ws_path:           str = "/ws/connect"
    max_message_bytes: int = 4096

    @field_validator("ws_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            return "/" + value
        return value


class AuthSettings(BaseModel):
    secret_key:            str  = "change-me-in-production"
    issuer:                str  = "presence-relay"
    algorithm:             str  = "HS256"
    token_expire_days:     int  = 30
    # Invalid (not missing) bearer tokens are rejected instead of downgraded
    # to anonymous when this is set.
    reject_invalid_tokens: bool = False


class ClientSettings(BaseModel):
    """Defaults for :class:`app.client.session.ClientSession`."""
    url:                    str   = "ws://localhost:5120"
    ws_path:                str   = "/ws/connect"
    reconnect_interval:     float = Field(default=1.0, gt=0)
    max_reconnect_attempts: int   = Field(default=5, ge=0)
    connect_timeout:        float = Field(default=10.0, gt=0)
    heartbeat_interval:     float = Field(default=30.0, ge=0)


class LoggingSettings(BaseModel):
    level: str = "info"


class RelayConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    client:   ClientSettings   = Field(default_factory=ClientSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> RelayConfig:
    """Load settings into a single *RelayConfig* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_data = _load_yaml(Path(settings_path))

    config = RelayConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, ws_path=%s, reject_invalid_tokens=%s)",
        config.server.host,
        config.server.port,
        config.realtime.ws_path,
        config.auth.reject_invalid_tokens,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> RelayConfig:
    """Return the process configuration, loading it on first use."""
    return load_config()
