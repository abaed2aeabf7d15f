"""LangGraph engine — runs a turn through an agent ⇄ ToolNode graph.

Used for gemini credentials, and for API-key credentials when the server is
configured with ``engine: langgraph``. Unlike the SDK engine, this engine
spawns the turn's tool servers itself and bridges their catalogs into
LangChain tools; every subprocess is torn down when the stream ends or the
consumer stops iterating.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
import time
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langgraph.errors import GraphRecursionError

from agent_server.agents import cache
from agent_server.agents.builder import build_graph, recursion_limit
from agent_server.agents.messages import (
    AssistantMessage,
    EngineInvocation,
    EngineMessage,
    InitMessage,
    ResultMessage,
    TextFragment,
    ToolResult,
    ToolResultMessage,
    ToolUse,
)
from agent_server.agents.nodes import extract_content, get_llm
from agent_server.tools import core_tools
from agent_server.tools.bridge import bridge_server, filter_allowed
from agent_server.toolservers.transport import ToolServerProcess

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from langchain_core.tools import BaseTool

    from agent_server.toolservers.protocol import ToolServerClient
    from agent_server.toolservers.registry import ToolServerSpec

    Connector = Callable[[ToolServerSpec], AbstractAsyncContextManager[ToolServerClient]]

logger = logging.getLogger(__name__)


def new_session_id(mode: str) -> str:
    return f"{mode}-{int(time.time() * 1000):x}-{secrets.token_hex(4)}"


def decode_graph_message(message: Any) -> EngineMessage | None:
    match message:
        case AIMessage():
            blocks: list[TextFragment | ToolUse] = []
            text = extract_content(message.content)
            if text:
                blocks.append(TextFragment(text))
            for call in message.tool_calls:
                blocks.append(ToolUse(id=call.get("id") or "", name=call["name"], input=dict(call.get("args") or {})))
            return AssistantMessage(tuple(blocks)) if blocks else None
        case ToolMessage():
            return ToolResultMessage(
                (
                    ToolResult(
                        tool_use_id=message.tool_call_id,
                        content=extract_content(message.content),
                        is_error=message.status == "error",
                    ),
                )
            )
        case _:
            return None


class GraphEngine:
    name = "langgraph"

    def __init__(
        self,
        llm_factory: Callable[..., Any] = get_llm,
        connector: Connector = ToolServerProcess,
        *,
        core_tools: list[BaseTool] | None = None,
        session_ttl_seconds: float = 1800,
        max_sessions: int = 200,
    ):
        self._llm_factory = llm_factory
        self._connector = connector
        self._core_tools = core_tools
        self.session_ttl_seconds = session_ttl_seconds
        self.max_sessions = max_sessions

    def _base_tools(self) -> list[BaseTool]:
        if self._core_tools is not None:
            return list(self._core_tools)
        return core_tools()

    async def stream(self, invocation: EngineInvocation) -> AsyncIterator[EngineMessage]:
        auth = invocation.auth
        model = invocation.model or auth.model
        session_id = invocation.resume or new_session_id(auth.mode)
        yield InitMessage(session_id=session_id, model=model)

        session = cache.get_or_create(
            invocation.user_id,
            session_id,
            auth,
            model,
            ttl_seconds=self.session_ttl_seconds,
            max_sessions=self.max_sessions,
        )

        async with contextlib.AsyncExitStack() as stack:
            tools = self._base_tools()
            for name, spec in invocation.tool_servers.items():
                client = await stack.enter_async_context(self._connector(spec))
                tools.extend(await bridge_server(client, name))
            tools = filter_allowed(tools, invocation.allowed_tools)

            llm = self._llm_factory(auth, model, tools)
            graph = build_graph(llm, tools, invocation.system_prompt, session.checkpointer)
            config = {
                "configurable": {"thread_id": session_id},
                "recursion_limit": recursion_limit(invocation.max_turns),
            }
            logger.info(f"Starting graph turn: {invocation!r} with {len(tools)} tools")

            final_text = ""
            try:
                async for update in graph.astream(
                    {"messages": [HumanMessage(content=invocation.prompt)]},
                    config,
                    stream_mode="updates",
                ):
                    for delta in update.values():
                        if not isinstance(delta, dict):
                            continue
                        for message in delta.get("messages", []):
                            if isinstance(message, AIMessage) and not message.tool_calls:
                                final_text = extract_content(message.content)
                            decoded = decode_graph_message(message)
                            if decoded is not None:
                                yield decoded
            except GraphRecursionError:
                logger.warning(f"Turn hit the step ceiling ({invocation.max_turns} turns)")
                yield ResultMessage(success=False, subtype="error_max_turns")
                return

            yield ResultMessage(success=True, text=final_text or None)
