"""Tool-server bridge — expose a running tool server's catalog as LangChain tools.

Each catalog entry becomes a ``StructuredTool`` named ``mcp__<server>__<tool>``,
the same naming the allowed-tool grants use, so one ``fnmatch`` filter covers
both core tools and tool-server tools.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool, ToolException

from agent_server.errors import ToolServerError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from langchain_core.tools import BaseTool

    from agent_server.toolservers.protocol import ToolDefinition, ToolServerClient

logger = logging.getLogger(__name__)


def qualified_name(server: str, tool_name: str) -> str:
    return f"mcp__{server}__{tool_name}"


def bridge_tool(client: ToolServerClient, server: str, definition: ToolDefinition) -> StructuredTool:
    """Wrap one tool-server tool; JSON-RPC errors surface as ``ToolException``."""

    async def call(**arguments: Any) -> str:
        try:
            return await client.call_tool(definition.name, arguments)
        except ToolServerError as e:
            raise ToolException(e.message) from e

    return StructuredTool.from_function(
        coroutine=call,
        name=qualified_name(server, definition.name),
        description=definition.description or definition.name,
        args_schema=definition.input_schema,
    )


async def bridge_server(client: ToolServerClient, server: str) -> list[StructuredTool]:
    definitions = await client.list_tools()
    logger.info(f"Bridged {len(definitions)} tools from '{server}'")
    return [bridge_tool(client, server, d) for d in definitions]


def is_allowed(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def filter_allowed(tools: Iterable[BaseTool], patterns: Iterable[str]) -> list[BaseTool]:
    patterns = list(patterns)
    return [t for t in tools if is_allowed(t.name, patterns)]
