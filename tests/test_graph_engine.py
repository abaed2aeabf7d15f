from typing import Any

import pytest
from conftest import FakeStorage
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from agent_server.agents import cache
from agent_server.agents.builder import recursion_limit
from agent_server.agents.graph_engine import GraphEngine, new_session_id
from agent_server.agents.messages import (
    AssistantMessage,
    EngineInvocation,
    InitMessage,
    ResultMessage,
    ToolResultMessage,
)
from agent_server.auth import AuthConfig
from agent_server.runtime import run_turn
from agent_server.schemas import ChatRequest
from agent_server.toolservers import memory
from agent_server.toolservers.registry import build_tool_servers
from agent_server.toolservers.transport import InProcessChannel

GEMINI_AUTH = AuthConfig(mode="gemini", model="gemini-3-flash-preview", google_api_key="g-test")

SAVE_CALL = {
    "name": "mcp__memory__memory_save",
    "args": {"tier": "persistent", "category": "preference", "title": "Coffee", "content": "Espresso", "importance": 8},
    "id": "call_1",
}


class ScriptedChatModel(BaseChatModel):
    """Replays AI messages in order, repeating the last one."""

    script: list[AIMessage]
    calls: int = 0
    bound_tools: list[str] = []

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any) -> ChatResult:
        source = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        message = AIMessage(content=source.content, tool_calls=source.tool_calls)
        return ChatResult(generations=[ChatGeneration(message=message)])

    def bind_tools(self, tools, **kwargs: Any):
        self.bound_tools = [t.name for t in tools]
        return self


def memory_connector(storage):
    server = memory.create_server(storage=storage)
    return lambda spec: InProcessChannel(server)


def invocation(tmp_path, **overrides):
    fields = {
        "prompt": "I like espresso",
        "system_prompt": "You are a test assistant.",
        "allowed_tools": ["WebSearch", "WebFetch", "mcp__memory__*"],
        "tool_servers": {"memory": build_tool_servers([], "user-1")["memory"]},
        "auth": GEMINI_AUTH,
        "user_id": "user-1",
        "cwd": str(tmp_path),
        **overrides,
    }
    return EngineInvocation(**fields)


async def collect(engine, inv):
    return [message async for message in engine.stream(inv)]


class TestGraphEngine:
    def test_session_id_format(self):
        session_id = new_session_id("gemini")
        assert session_id.startswith("gemini-")
        assert len(session_id.split("-")) == 3

    def test_recursion_limit(self):
        assert recursion_limit(25) == 51

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, server_config, tmp_path):
        storage = FakeStorage()
        llm = ScriptedChatModel(script=[AIMessage(content="", tool_calls=[SAVE_CALL]), AIMessage(content="Noted.")])
        engine = GraphEngine(lambda auth, model, tools: llm.bind_tools(tools), memory_connector(storage), core_tools=[])

        messages = await collect(engine, invocation(tmp_path))

        assert isinstance(messages[0], InitMessage)
        assert messages[0].session_id.startswith("gemini-")
        assert messages[0].model == "gemini-3-flash-preview"
        assert llm.bound_tools == ["mcp__memory__memory_save", "mcp__memory__memory_search", "mcp__memory__memory_list"]

        tool_use = messages[1].blocks[0]
        assert isinstance(messages[1], AssistantMessage)
        assert (tool_use.id, tool_use.name) == ("call_1", "mcp__memory__memory_save")
        assert isinstance(messages[2], ToolResultMessage)
        assert messages[2].results[0].content == 'Memory saved: "Coffee" (persistent, importance 8)'
        assert messages[-1] == ResultMessage(success=True, text="Noted.")
        assert storage.calls[0][1] == "memory:save"

    @pytest.mark.asyncio
    async def test_allowed_tools_filter_bridged_tools(self, server_config, tmp_path):
        llm = ScriptedChatModel(script=[AIMessage(content="Hi")])
        engine = GraphEngine(
            lambda auth, model, tools: llm.bind_tools(tools), memory_connector(FakeStorage()), core_tools=[]
        )
        await collect(engine, invocation(tmp_path, allowed_tools=["mcp__memory__memory_list"]))
        assert llm.bound_tools == ["mcp__memory__memory_list"]

    @pytest.mark.asyncio
    async def test_tool_error_is_reported_not_raised(self, server_config, tmp_path):
        bad_call = {**SAVE_CALL, "args": {**SAVE_CALL["args"], "tier": "forever"}}
        llm = ScriptedChatModel(script=[AIMessage(content="", tool_calls=[bad_call]), AIMessage(content="Sorry.")])
        engine = GraphEngine(lambda auth, model, tools: llm.bind_tools(tools), memory_connector(FakeStorage()), core_tools=[])

        messages = await collect(engine, invocation(tmp_path))

        result = messages[2].results[0]
        assert result.is_error
        assert "Invalid tier" in result.content
        assert messages[-1].success

    @pytest.mark.asyncio
    async def test_step_ceiling_ends_with_max_turns(self, server_config, tmp_path):
        llm = ScriptedChatModel(script=[AIMessage(content="", tool_calls=[SAVE_CALL])])
        engine = GraphEngine(lambda auth, model, tools: llm.bind_tools(tools), memory_connector(FakeStorage()), core_tools=[])

        messages = await collect(engine, invocation(tmp_path, max_turns=1))

        assert messages[-1] == ResultMessage(success=False, subtype="error_max_turns")

    @pytest.mark.asyncio
    async def test_history_survives_across_turns(self, server_config, tmp_path):
        seen = []

        class RecordingModel(ScriptedChatModel):
            def _generate(self, messages, stop=None, run_manager=None, **kwargs):
                seen.append(len(messages))
                return super()._generate(messages, stop, run_manager, **kwargs)

        llm = RecordingModel(script=[AIMessage(content="Hello again")])
        engine = GraphEngine(lambda auth, model, tools: llm, memory_connector(FakeStorage()), core_tools=[])

        first = await collect(engine, invocation(tmp_path))
        session_id = first[0].session_id
        await collect(engine, invocation(tmp_path, resume=session_id))

        # system + human, then system + human + ai + human
        assert seen == [2, 4]
        assert cache.size() == 1

    @pytest.mark.asyncio
    async def test_run_turn_emits_memory_saved(self, server_config, tmp_path):
        llm = ScriptedChatModel(script=[AIMessage(content="", tool_calls=[SAVE_CALL]), AIMessage(content="Noted.")])
        engine = GraphEngine(lambda auth, model, tools: llm.bind_tools(tools), memory_connector(FakeStorage()), core_tools=[])
        request = ChatRequest(thread_id="t1", message="I like espresso", user_id="user-1")
        events = []

        result = await run_turn(request, GEMINI_AUTH, [], events.append, engine=engine)

        assert [e.type for e in events] == [
            "session_init",
            "tool_start",
            "tool_done",
            "memory_saved",
            "text",
            "done",
        ]
        assert events[3].title == "Coffee"
        assert result.response == "Noted."
