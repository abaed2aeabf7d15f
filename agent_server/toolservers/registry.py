"""Tool-server registry — per-turn launch specs from a user's connected integrations.

The only place where connector ids are mapped to tool-server subprocesses.
The orchestrator grants tool access per server name, so whatever this
module emits is exactly what the engine may reach for one turn.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from agent_server.config import get_config

if TYPE_CHECKING:
    from agent_server.config import ServerConfig

logger = logging.getLogger(__name__)

MEMORY_SERVER = "memory"
_MODULE_PREFIX = "agent_server.toolservers"


@dataclass(frozen=True)
class ToolServerSpec:
    """How to launch one tool-server subprocess. Rebuilt every turn."""

    name: str
    command: str
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict, hash=False)

    def to_launch_config(self) -> dict:
        """Stdio launch config in the shape the Claude Agent SDK expects."""
        return {
            "type": "stdio",
            "command": self.command,
            "args": list(self.args),
            "env": dict(self.env),
        }


@dataclass(frozen=True)
class ConnectorDefinition:
    server: str        # tool-server name, also the allowed-tool grant prefix
    module: str        # module under agent_server.toolservers
    extra_env: tuple[str, ...] = ()  # ServerConfig fields layered over the base env


# connector id → server definition
CONNECTOR_REGISTRY: dict[str, ConnectorDefinition] = {
    "gmail": ConnectorDefinition(server="gmail", module="gmail"),
    "google-calendar": ConnectorDefinition(server="calendar", module="google_calendar"),
    "github": ConnectorDefinition(server="github", module="github"),
    "outlook": ConnectorDefinition(
        server="outlook",
        module="outlook",
        extra_env=("ms_tenant_id", "ms_client_id", "ms_client_secret"),
    ),
}


def _launch_spec(name: str, module: str, env: dict[str, str]) -> ToolServerSpec:
    return ToolServerSpec(
        name=name,
        command=sys.executable,
        args=("-m", f"{_MODULE_PREFIX}.{module}"),
        env=env,
    )


def _base_env(user_id: str, config: ServerConfig) -> dict[str, str]:
    return {
        "USER_ID": user_id,
        "CONVEX_URL": config.storage_url,
        "CONVEX_DEPLOY_KEY": config.storage_deploy_key,
    }


def active_connectors(connectors: Iterable[str]) -> list[str]:
    """Known connector ids in request order, duplicates dropped."""
    active: list[str] = []
    for connector in connectors:
        if connector not in CONNECTOR_REGISTRY:
            logger.debug(f"Ignoring unrecognized connector '{connector}'")
            continue
        if connector not in active:
            active.append(connector)
    return active


def build_tool_servers(
    connectors: Iterable[str],
    user_id: str,
    config: ServerConfig | None = None,
) -> dict[str, ToolServerSpec]:
    """Build the tool-server topology for one turn.

    Always includes ``memory``. Unknown connector ids are skipped and
    duplicates collapse to a single entry.
    """
    config = config or get_config()
    base_env = _base_env(user_id, config)

    servers: dict[str, ToolServerSpec] = {
        MEMORY_SERVER: _launch_spec(MEMORY_SERVER, "memory", dict(base_env)),
    }

    for connector in active_connectors(connectors):
        definition = CONNECTOR_REGISTRY[connector]
        env = dict(base_env)
        for field_name in definition.extra_env:
            env[field_name.upper()] = getattr(config, field_name)
        servers[definition.server] = _launch_spec(definition.server, definition.module, env)

    logger.info(f"Tool servers for user {user_id}: {sorted(servers)}")
    return servers
