"""Graph builder — wires the agent node and tool node into a LangGraph StateGraph.

    START → [agent] ─tool calls─▶ [tools] ─▶ [agent] … ─no tool calls─▶ END

Built once per turn, because the bridged tools hold that turn's tool-server
connections; conversation history lives in the session's checkpointer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langgraph.graph import END, StateGraph
from langgraph.prebuilt import ToolNode, tools_condition

from agent_server.agents.nodes import make_agent_node
from agent_server.agents.state import AgentState

if TYPE_CHECKING:
    from langchain_core.runnables import Runnable
    from langchain_core.tools import BaseTool
    from langgraph.checkpoint.base import BaseCheckpointSaver
    from langgraph.graph.state import CompiledStateGraph

logger = logging.getLogger(__name__)

AGENT_NODE = "agent"
TOOLS_NODE = "tools"


def recursion_limit(max_turns: int) -> int:
    """Graph step ceiling for ``max_turns`` agent⇄tools round trips."""
    return 2 * max_turns + 1


def build_graph(
    llm: Runnable,
    tools: list[BaseTool],
    system_prompt: str,
    checkpointer: BaseCheckpointSaver | None = None,
) -> CompiledStateGraph:
    graph = StateGraph(AgentState)
    graph.add_node(AGENT_NODE, make_agent_node(llm, system_prompt))
    graph.set_entry_point(AGENT_NODE)

    if tools:
        graph.add_node(TOOLS_NODE, ToolNode(tools, handle_tool_errors=True))
        graph.add_conditional_edges(AGENT_NODE, tools_condition, {TOOLS_NODE: TOOLS_NODE, END: END})
        graph.add_edge(TOOLS_NODE, AGENT_NODE)
    else:
        graph.add_edge(AGENT_NODE, END)

    logger.info(f"Built agent graph with {len(tools)} tools")
    return graph.compile(checkpointer=checkpointer)
