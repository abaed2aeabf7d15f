"""LangGraph node functions and the chat-model factory they run on.

The agent node calls the bound chat model with the turn's system prompt;
tool execution is left to LangGraph's ``ToolNode`` (see builder.py).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

if TYPE_CHECKING:
    from collections.abc import Callable

    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable
    from langchain_core.tools import BaseTool

    from agent_server.agents.state import AgentState
    from agent_server.auth import AuthConfig

logger = logging.getLogger(__name__)


def extract_content(content) -> str:
    """Normalize message content — providers return a string or a list of blocks.

    Only text blocks count; tool-use and thinking blocks are dropped.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content) if content is not None else ""


# ---------------------------------------------------------------------------
# LLM factory
# ---------------------------------------------------------------------------


def get_llm(auth: AuthConfig, model: str, tools: list[BaseTool] | None = None) -> Runnable:
    """Create the chat model for this credential, optionally with tool bindings.

    Keys come from ``auth``; the process environment is never consulted.
    """
    llm: BaseChatModel
    match auth.mode:
        case "gemini":
            llm = ChatGoogleGenerativeAI(model=model, google_api_key=auth.google_api_key)
        case "api-key":
            llm = ChatAnthropic(model=model, max_tokens=4096, api_key=auth.anthropic_api_key)
        case _:
            raise ValueError(f"Auth mode '{auth.mode}' cannot drive the graph engine")
    if tools:
        return llm.bind_tools(tools)
    return llm


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------


def make_agent_node(llm: Runnable, system_prompt: str) -> Callable:
    """Create the graph node that asks the model for its next step."""

    async def agent_node(state: AgentState) -> dict:
        messages = [SystemMessage(content=system_prompt), *state["messages"]]
        response = await llm.ainvoke(messages)
        tool_calls = getattr(response, "tool_calls", None) or []
        logger.info(f"Agent step: {len(tool_calls)} tool call(s)")
        return {"messages": [response]}

    return agent_node
