"""Core tools — in-process LangChain tools available to the graph engine.

Core tools are decorated with ``@register`` and granted by name through the
allowed-tool list (``WebSearch``, ``WebFetch``). Tool-server tools are not
registered here; ``agent_server.tools.bridge`` builds them per turn from each
server's catalog.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from langchain_core.tools import BaseTool

logger = logging.getLogger(__name__)

# Registry: {"WebSearch": BaseTool}
_core_tools: dict[str, BaseTool] = {}


def register(tool: BaseTool) -> BaseTool:
    """Add a core tool under its ``.name``. Applied outside ``@tool``::

        @register
        @tool("WebSearch")
        async def web_search(query: str) -> str:
            ...
    """
    if tool.name in _core_tools:
        raise ValueError(f"Core tool '{tool.name}' already registered")
    _core_tools[tool.name] = tool
    return tool


def core_tools(names: Iterable[str] | None = None) -> list[BaseTool]:
    """Core tools named in ``names`` (all of them if None); unknown names are skipped."""
    if names is None:
        return list(_core_tools.values())
    selected = []
    for name in names:
        tool = _core_tools.get(name)
        if tool is None:
            logger.debug(f"No core tool named '{name}', skipping")
            continue
        selected.append(tool)
    return selected


def core_tool_names() -> list[str]:
    return list(_core_tools)


import agent_server.tools.web as _web  # noqa: E402, F401
