"""Runtime — drives one conversational turn from request to terminal event.

1. Build the turn's tool-server topology and system prompt
2. Assemble an EngineInvocation (credentials travel only inside it)
3. Stream engine messages through the EventTranslator to ``on_event``
4. Emit exactly one ``done`` (returning a TurnResult) or one ``error``
   (raising EngineFailure)

If an Anthropic-family engine fails before anything past ``session_init`` was
emitted and a Gemini credential is available, the turn is retried once on
Gemini with the same translator, so the client still sees one ``session_init``.
"""

from __future__ import annotations

import contextlib
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from agent_server.agents.graph_engine import GraphEngine
from agent_server.agents.messages import EngineInvocation
from agent_server.agents.sdk_engine import ClaudeAgentEngine
from agent_server.agents.translator import EventTranslator
from agent_server.auth import get_agent_env
from agent_server.config import get_config
from agent_server.errors import EngineFailure
from agent_server.prompt import build_system_prompt
from agent_server.toolservers.registry import active_connectors, build_tool_servers

if TYPE_CHECKING:
    from agent_server.agents.messages import ReasoningEngine
    from agent_server.auth import AuthConfig
    from agent_server.config import ServerConfig
    from agent_server.schemas import ChatRequest, WireModel
    from agent_server.toolservers.registry import ToolServerSpec

    EventSink = Callable[[WireModel], Awaitable[None] | None]

logger = logging.getLogger(__name__)

CORE_TOOLS = ("WebSearch", "WebFetch")

FALLBACK_PATTERN = re.compile(
    r"claude code process exited|no ai auth configured|anthropic|rate limit|billing|overloaded|429|401|403",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TurnResult:
    session_id: str
    response: str


# ---------------------------------------------------------------------------
# Turn assembly
# ---------------------------------------------------------------------------


def build_allowed_tools(
    servers: Iterable[str], core_tools: Iterable[str] = CORE_TOOLS
) -> list[str]:
    """Core tools plus a wildcard grant per tool server."""
    return [*core_tools, *(f"mcp__{name}__*" for name in servers)]


def build_invocation(
    request: ChatRequest,
    auth: AuthConfig,
    servers: dict[str, ToolServerSpec],
    system_prompt: str,
    config: ServerConfig,
) -> EngineInvocation:
    return EngineInvocation(
        prompt=request.message,
        system_prompt=system_prompt,
        allowed_tools=build_allowed_tools(servers, config.core_tools),
        tool_servers=servers,
        auth=auth,
        user_id=request.user_id,
        resume=request.session_id or None,
        model=None if auth.mode == "gemini" else auth.model,
        max_turns=config.max_turns,
        cwd=config.workdir,
        env=get_agent_env(auth),
    )


def select_engine(auth: AuthConfig, config: ServerConfig) -> ReasoningEngine:
    match auth.mode:
        case "gemini":
            use_graph = True
        case "api-key":
            use_graph = config.engine == "langgraph"
        case _:
            use_graph = False
    if use_graph:
        return GraphEngine(
            session_ttl_seconds=config.session_ttl_seconds,
            max_sessions=config.max_sessions,
        )
    return ClaudeAgentEngine()


def should_fallback(auth: AuthConfig, fallback: AuthConfig | None, error: BaseException) -> bool:
    if auth.mode == "gemini" or fallback is None:
        return False
    return FALLBACK_PATTERN.search(str(error)) is not None


# ---------------------------------------------------------------------------
# Turn execution
# ---------------------------------------------------------------------------


async def _emit(on_event: EventSink, event: WireModel) -> None:
    result = on_event(event)
    if inspect.isawaitable(result):
        await result


async def _drive(
    engine: ReasoningEngine,
    invocation: EngineInvocation,
    translator: EventTranslator,
    on_event: EventSink,
) -> None:
    async with contextlib.aclosing(engine.stream(invocation)) as stream:
        async for message in stream:
            for event in translator.feed(message):
                await _emit(on_event, event)


async def run_turn(
    request: ChatRequest,
    auth: AuthConfig,
    connectors: list[str],
    on_event: EventSink,
    *,
    engine: ReasoningEngine | None = None,
    fallback: AuthConfig | None = None,
    fallback_engine: ReasoningEngine | None = None,
    config: ServerConfig | None = None,
) -> TurnResult:
    """Run one turn, emitting every event through ``on_event`` as it is produced."""
    config = config or get_config()
    connectors = active_connectors(connectors)
    servers = build_tool_servers(connectors, request.user_id, config)
    system_prompt = build_system_prompt(request.soul_file, request.memories, connectors)
    translator = EventTranslator(request.session_id or "")

    primary = engine or select_engine(auth, config)
    logger.info(
        f"Turn start: user={request.user_id} thread={request.thread_id} "
        f"engine={primary.name} auth={auth!r} servers={list(servers)}"
    )

    try:
        try:
            await _drive(primary, build_invocation(request, auth, servers, system_prompt, config), translator, on_event)
        except Exception as e:
            if not (translator.replayable and should_fallback(auth, fallback, e)):
                raise
            logger.warning(f"{primary.name} failed before any model output ({e}); retrying on Gemini")
            translator.rebind()
            secondary = fallback_engine or select_engine(fallback, config)
            await _drive(
                secondary,
                build_invocation(request, fallback, servers, system_prompt, config),
                translator,
                on_event,
            )
    except Exception as e:
        logger.error(f"Turn failed for user {request.user_id}: {e}", exc_info=True)
        await _emit(on_event, translator.fail(e))
        raise EngineFailure(str(e) or type(e).__name__) from e

    await _emit(on_event, translator.finish())
    logger.info(f"Turn done: user={request.user_id} session={translator.session_id}")
    return TurnResult(session_id=translator.session_id, response=translator.response)
