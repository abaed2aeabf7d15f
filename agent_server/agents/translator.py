"""Event translator — engine messages in, SSE events out, for exactly one turn.

    AWAITING_INIT ──first message──▶ STREAMING ──finish()/fail()──▶ TERMINATED

Guarantees for the emitted sequence: at most one ``session_init`` and only
as the very first event; exactly one ``done`` or ``error`` and only as the
very last. Anything fed after termination is a programming error.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any

from agent_server.agents.messages import (
    AssistantMessage,
    EngineMessage,
    InitMessage,
    ResultMessage,
    TextFragment,
    ToolResultMessage,
    ToolUse,
)
from agent_server.schemas import (
    DoneEvent,
    ErrorEvent,
    MemorySavedEvent,
    SessionInitEvent,
    TextEvent,
    ToolDoneEvent,
    ToolErrorEvent,
    ToolStartEvent,
    WireModel,
)

logger = logging.getLogger(__name__)

MEMORY_SAVE_TOOL = "memory_save"


class TurnState(enum.Enum):
    AWAITING_INIT = "awaiting_init"
    STREAMING = "streaming"
    TERMINATED = "terminated"


def _bare_tool_name(name: str) -> str:
    """``mcp__memory__memory_save`` → ``memory_save``."""
    return name.rsplit("__", 1)[-1]


class EventTranslator:
    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self.response = ""
        self.state = TurnState.AWAITING_INIT
        self.emitted = 0
        self._session_captured = False
        self._init_emitted = False
        self._tool_uses: dict[str, ToolUse] = {}

    @property
    def replayable(self) -> bool:
        """True while nothing beyond ``session_init`` has been produced."""
        return self.state is not TurnState.TERMINATED and self.emitted == int(self._init_emitted)

    def rebind(self) -> None:
        """Accept the next engine's session id without a second ``session_init``."""
        self._check_open("rebind")
        self._session_captured = False
        self.response = ""

    def _check_open(self, operation: str) -> None:
        if self.state is TurnState.TERMINATED:
            raise RuntimeError(f"Cannot {operation}: turn already terminated")

    def _count(self, events: list[WireModel]) -> list[WireModel]:
        self.emitted += len(events)
        return events

    # -- streaming ------------------------------------------------------------

    def feed(self, message: EngineMessage) -> list[WireModel]:
        """Translate one engine message into zero or more events."""
        self._check_open("feed")
        first = self.emitted == 0
        self.state = TurnState.STREAMING

        match message:
            case InitMessage(session_id=session_id, model=model):
                return self._count(self._on_init(session_id, model, first))
            case AssistantMessage(blocks=blocks):
                return self._count(self._on_assistant(blocks))
            case ToolResultMessage(results=results):
                return self._count(self._on_tool_results(results))
            case ResultMessage(success=True, text=text) if text:
                self.response = text
                return []
            case ResultMessage(success=success, subtype=subtype):
                if not success:
                    logger.warning(f"Engine reported unsuccessful result ({subtype})")
                return []
            case _:
                raise TypeError(f"Unknown engine message: {type(message).__name__}")

    def _on_init(self, session_id: str, model: str, first: bool) -> list[WireModel]:
        if first:
            if session_id:
                self.session_id = session_id
                self._session_captured = True
            self._init_emitted = True
            return [SessionInitEvent(session_id=self.session_id, model=model)]
        if not self._session_captured and session_id:
            # Late init: keep the turn resumable without breaking event order.
            self.session_id = session_id
            self._session_captured = True
            logger.debug(f"Captured late session id {session_id}")
        return []

    def _on_assistant(self, blocks: tuple) -> list[WireModel]:
        events: list[WireModel] = []
        text = "".join(b.text for b in blocks if isinstance(b, TextFragment))
        if text:
            self.response += text
            events.append(TextEvent(content=text))
        for block in blocks:
            if isinstance(block, ToolUse):
                self._tool_uses[block.id] = block
                events.append(
                    ToolStartEvent(
                        tool_name=block.name,
                        tool_input=json.dumps(block.input, default=str),
                        message_id=block.id,
                    )
                )
        return events

    def _on_tool_results(self, results: tuple) -> list[WireModel]:
        events: list[WireModel] = []
        for result in results:
            use = self._tool_uses.get(result.tool_use_id)
            name = use.name if use else "unknown"
            if result.is_error:
                events.append(ToolErrorEvent(tool_name=name, error=result.content, message_id=result.tool_use_id))
                continue
            events.append(ToolDoneEvent(tool_name=name, tool_output=result.content, message_id=result.tool_use_id))
            if use and _bare_tool_name(name) == MEMORY_SAVE_TOOL:
                events.append(self._memory_saved(use.input))
        return events

    @staticmethod
    def _memory_saved(tool_input: dict[str, Any]) -> MemorySavedEvent:
        return MemorySavedEvent(
            title=str(tool_input.get("title", "")),
            tier=str(tool_input.get("tier", "persistent")),
        )

    # -- termination ----------------------------------------------------------

    def finish(self) -> DoneEvent:
        self._check_open("finish")
        self.state = TurnState.TERMINATED
        self.emitted += 1
        return DoneEvent(content=self.response)

    def fail(self, error: BaseException | str) -> ErrorEvent:
        self._check_open("fail")
        self.state = TurnState.TERMINATED
        self.emitted += 1
        return ErrorEvent(error=str(error) or type(error).__name__)
