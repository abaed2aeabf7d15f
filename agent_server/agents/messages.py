"""Engine boundary — the invocation passed in and the messages streamed back.

Every engine decodes its native message shapes into ``EngineMessage`` once,
at the boundary, so the translator can ``match`` on exactly four variants:

    InitMessage        — session id assigned (or resumed) and model in use
    AssistantMessage   — text fragments and tool-use requests, in order
    ToolResultMessage  — outcomes of earlier tool uses
    ResultMessage      — authoritative end-of-turn outcome
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union

if TYPE_CHECKING:
    from agent_server.auth import AuthConfig
    from agent_server.toolservers.registry import ToolServerSpec


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class InitMessage:
    session_id: str
    model: str


@dataclass(frozen=True)
class AssistantMessage:
    blocks: tuple[TextFragment | ToolUse, ...]


@dataclass(frozen=True)
class ToolResultMessage:
    results: tuple[ToolResult, ...]


@dataclass(frozen=True)
class ResultMessage:
    success: bool
    text: str | None = None
    subtype: str = "success"


EngineMessage = Union[InitMessage, AssistantMessage, ToolResultMessage, ResultMessage]


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


@dataclass
class EngineInvocation:
    """Everything one engine call needs. Credentials travel only in ``env``."""

    prompt: str
    system_prompt: str
    allowed_tools: list[str]
    tool_servers: dict[str, ToolServerSpec]
    auth: AuthConfig
    user_id: str
    resume: str | None = None
    model: str | None = None  # None: the engine takes it from ``auth``
    max_turns: int = 25
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"EngineInvocation(user_id={self.user_id!r}, resume={self.resume!r}, "
            f"model={self.model!r}, tool_servers={sorted(self.tool_servers)})"
        )


class ReasoningEngine(Protocol):
    """Drives one turn and yields its messages in emission order."""

    name: str

    def stream(self, invocation: EngineInvocation) -> AsyncIterator[EngineMessage]: ...
