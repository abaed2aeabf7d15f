"""Request/response models — the contract between the agent server and its clients.

Wire field names are camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class MemoryEntry(WireModel):
    """A stored fact or preference about the user."""

    id: str = ""
    tier: Literal["persistent", "archival", "session"]
    category: str = "fact"
    title: str
    content: str
    importance: float = 5


class ChatRequest(WireModel):
    """Incoming body for /api/chat and /api/task."""

    thread_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    session_id: str | None = None
    connectors: list[str] = []
    soul_file: str | None = None
    memories: list[MemoryEntry] = []
    ai_provider: Literal["anthropic", "google"] | None = None
    ai_model: str | None = None
    anthropic_api_key: str | None = None
    google_api_key: str | None = None


# ---------------------------------------------------------------------------
# SSE events
# ---------------------------------------------------------------------------


class SessionInitEvent(WireModel):
    type: Literal["session_init"] = "session_init"
    session_id: str
    model: str


class TextEvent(WireModel):
    type: Literal["text"] = "text"
    content: str


class ToolStartEvent(WireModel):
    type: Literal["tool_start"] = "tool_start"
    tool_name: str
    tool_input: str
    message_id: str | None = None


class ToolDoneEvent(WireModel):
    type: Literal["tool_done"] = "tool_done"
    tool_name: str
    tool_output: str
    message_id: str | None = None


class ToolErrorEvent(WireModel):
    type: Literal["tool_error"] = "tool_error"
    tool_name: str
    error: str
    message_id: str | None = None


class MemorySavedEvent(WireModel):
    type: Literal["memory_saved"] = "memory_saved"
    title: str
    tier: str


class DoneEvent(WireModel):
    type: Literal["done"] = "done"
    content: str


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    error: str


SSEEvent = Annotated[
    Union[
        SessionInitEvent,
        TextEvent,
        ToolStartEvent,
        ToolDoneEvent,
        ToolErrorEvent,
        MemorySavedEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})


def format_sse(event: WireModel) -> str:
    """Frame one event as an SSE ``data:`` record."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


# ---------------------------------------------------------------------------
# Non-streaming responses
# ---------------------------------------------------------------------------


class StatusResponse(WireModel):
    mode: str
    model: str | None
    description: str
    fallback_available: bool = False


class TaskResponse(WireModel):
    success: bool
    response: str | None = None
    session_id: str | None = None
    error: str | None = None
