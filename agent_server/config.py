"""Configuration loader — reads agent-server.yaml, overlays env, validates with Pydantic.

The YAML file is optional; every setting has a default and the deployment
secrets (shared bearer secret, storage endpoint, Microsoft app credentials)
normally arrive through the environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "agent-server.yaml"

# env var → ServerConfig field
_ENV_OVERRIDES: dict[str, str] = {
    "AGENT_SERVER_SECRET": "api_secret",
    "CONVEX_URL": "storage_url",
    "CONVEX_DEPLOY_KEY": "storage_deploy_key",
    "MS_TENANT_ID": "ms_tenant_id",
    "MS_CLIENT_ID": "ms_client_id",
    "MS_CLIENT_SECRET": "ms_client_secret",
    "AGENT_ENGINE": "engine",
    "AGENT_MAX_TURNS": "max_turns",
    "AGENT_WORKDIR": "workdir",
}


class ServerConfig(BaseModel):
    """Top-level agent server configuration."""

    # HTTP boundary
    allowed_origins: list[str] = ["http://localhost:3000"]
    api_secret: str | None = None

    # Storage endpoint handed to every tool server
    storage_url: str = ""
    storage_deploy_key: str = ""

    # Outlook app credentials (client-credentials fallback + token refresh)
    ms_tenant_id: str = ""
    ms_client_id: str = ""
    ms_client_secret: str = ""

    # Turn execution
    supported_connectors: list[str] = ["gmail", "google-calendar", "github", "outlook"]
    core_tools: list[str] = ["WebSearch", "WebFetch"]
    max_turns: int = 25
    workdir: str = "skills"
    engine: Literal["agent-sdk", "langgraph"] = "agent-sdk"

    # LangGraph session retention
    session_ttl_seconds: int = 30 * 60
    max_sessions: int = 200

    @field_validator("max_turns")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_turns must be at least 1")
        return v

    @field_validator("workdir")
    @classmethod
    def make_absolute(cls, v: str) -> str:
        return str(Path(v).expanduser().resolve())


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: ServerConfig | None = None


def _read_env(environ: Mapping[str, str]) -> dict:
    overrides: dict = {}
    for var, field_name in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            overrides[field_name] = value
    origin = environ.get("NEXT_PUBLIC_APP_URL")
    if origin:
        overrides["allowed_origins"] = [origin]
    return overrides


def load_config(path: str | None = None, environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Read the YAML file (if present), overlay env, validate, and cache.

    An explicit ``path`` must exist; the default path (or
    ``AGENT_SERVER_CONFIG``) is optional.
    """
    global _config
    env = os.environ if environ is None else environ

    raw: dict = {}
    config_file = Path(path or env.get("AGENT_SERVER_CONFIG", DEFAULT_CONFIG_PATH))
    if config_file.exists():
        raw = yaml.safe_load(config_file.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {config_file.resolve()} must contain a mapping")
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw.update(_read_env(env))
    _config = ServerConfig(**raw)

    logger.info(
        f"Loaded config: engine={_config.engine}, max_turns={_config.max_turns}, "
        f"connectors={_config.supported_connectors}"
    )
    return _config


def get_config() -> ServerConfig:
    """Return cached config, loading defaults on first access."""
    if _config is None:
        return load_config()
    return _config
