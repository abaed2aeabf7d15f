"""Claude Agent SDK engine — runs a turn through ``claude_agent_sdk.query``.

The SDK spawns the tool servers itself from the stdio launch configs, so
this engine only maps the invocation onto ``ClaudeAgentOptions`` and
decodes the SDK's message classes into ``EngineMessage`` variants.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from claude_agent_sdk import (
    AssistantMessage as SdkAssistantMessage,
    ClaudeAgentOptions,
    ResultMessage as SdkResultMessage,
    SystemMessage as SdkSystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage as SdkUserMessage,
    query,
)

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

logger = logging.getLogger(__name__)


def _tool_result_text(content: Any) -> str:
    """ToolResultBlock content is a string, a list of content blocks, or None."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(block.get("text") if block.get("type") == "text" else json.dumps(block))
            else:
                parts.append(str(block))
        return "\n".join(p for p in parts if p)
    return str(content)


def decode_sdk_message(message: Any, default_model: str) -> EngineMessage | None:
    """Decode one SDK message. Returns None for messages with no turn meaning."""
    match message:
        case SdkSystemMessage(subtype="init", data=data):
            return InitMessage(
                session_id=str(data.get("session_id") or ""),
                model=str(data.get("model") or default_model),
            )
        case SdkAssistantMessage(content=content):
            blocks: list[TextFragment | ToolUse] = []
            for block in content:
                match block:
                    case TextBlock(text=text):
                        blocks.append(TextFragment(text))
                    case ToolUseBlock(id=tool_id, name=name, input=tool_input):
                        blocks.append(ToolUse(id=tool_id, name=name, input=dict(tool_input or {})))
            return AssistantMessage(tuple(blocks)) if blocks else None
        case SdkUserMessage(content=list() as content):
            results = tuple(
                ToolResult(
                    tool_use_id=block.tool_use_id,
                    content=_tool_result_text(block.content),
                    is_error=bool(block.is_error),
                )
                for block in content
                if isinstance(block, ToolResultBlock)
            )
            return ToolResultMessage(results) if results else None
        case SdkResultMessage(subtype=subtype, is_error=is_error, result=result):
            return ResultMessage(success=subtype == "success" and not is_error, text=result, subtype=subtype)
        case _:
            return None


class ClaudeAgentEngine:
    name = "agent-sdk"

    def build_options(self, invocation: EngineInvocation) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            resume=invocation.resume,
            model=invocation.model,
            system_prompt=invocation.system_prompt,
            allowed_tools=list(invocation.allowed_tools),
            mcp_servers={name: spec.to_launch_config() for name, spec in invocation.tool_servers.items()},
            permission_mode="bypassPermissions",
            max_turns=invocation.max_turns,
            cwd=invocation.cwd,
            env=dict(invocation.env),
        )

    async def stream(self, invocation: EngineInvocation) -> AsyncIterator[EngineMessage]:
        options = self.build_options(invocation)
        default_model = invocation.model or invocation.auth.model
        logger.info(f"Starting SDK turn: {invocation!r}")

        async for sdk_message in query(prompt=invocation.prompt, options=options):
            decoded = decode_sdk_message(sdk_message, default_model)
            if decoded is None:
                logger.debug(f"Skipping SDK message {type(sdk_message).__name__}")
                continue
            yield decoded
