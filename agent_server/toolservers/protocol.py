"""Tool-server protocol — JSON-RPC 2.0, one object per line, transport-independent.

Server side: ``ToolServer`` owns a static tool catalog and a method dispatch
table. ``handle_line`` turns one input line into at most one output line, so
any transport that can move lines (stdio, a socket, an in-process queue) can
host it.

Client side: ``JsonRpcClient`` correlates responses to requests by id;
``ToolServerClient`` adds the initialize / tools.list / tools.call calls.

Usage::

    server = ToolServer("memory")

    @server.tool("memory_list", "List memories.", {"type": "object", "properties": {}})
    async def memory_list(args: dict) -> str:
        ...
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from agent_server.errors import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    TOOL_ERROR,
    JsonRpcError,
    ToolServerError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def render_result(result: Any) -> dict[str, Any]:
    """Wrap a handler's return value as a text content block."""
    text = result if isinstance(result, str) else json.dumps(result, indent=2, default=str)
    return {"content": [{"type": "text", "text": text}]}


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


class ToolServer:
    """One integration's tool catalog behind a JSON-RPC dispatch table."""

    def __init__(self, name: str, version: str = "1.0.0", *, strict: bool = False):
        self.name = name
        self.version = version
        # strict=True answers unknown methods with METHOD_NOT_FOUND instead of null.
        self.strict = strict
        self._tools: dict[str, tuple[ToolDefinition, ToolHandler]] = {}
        self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    # -- registration -------------------------------------------------------

    def tool(
        self, name: str, description: str, input_schema: dict[str, Any] | None = None
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator registering an async handler under ``name``."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Tool '{name}' already registered on server '{self.name}'")
            definition = ToolDefinition(
                name=name,
                description=description,
                input_schema=input_schema or {"type": "object", "properties": {}},
            )
            self._tools[name] = (definition, handler)
            return handler

        return decorator

    @property
    def catalog(self) -> list[dict[str, Any]]:
        return [definition.to_dict() for definition, _ in self._tools.values()]

    # -- methods ------------------------------------------------------------

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    async def _initialized(self, params: dict[str, Any]) -> None:
        logger.debug(f"[{self.name}] client initialized")

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self.catalog}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        entry = self._tools.get(name) if isinstance(name, str) else None
        if entry is None:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")
        _, handler = entry
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Tool arguments must be an object")

        try:
            result = await handler(arguments)
        except JsonRpcError:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] tool '{name}' failed: {e}")
            raise JsonRpcError(TOOL_ERROR, str(e) or "Tool error") from e
        return render_result(result)

    # -- dispatch -----------------------------------------------------------

    async def handle(self, message: Any) -> dict[str, Any] | None:
        """Dispatch one decoded message. Returns the response object, or None."""
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            logger.debug(f"[{self.name}] dropping non-request message")
            return None

        method = message["method"]
        is_notification = "id" not in message
        msg_id = message.get("id")
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        handler = self._methods.get(method)
        try:
            if handler is None:
                if self.strict:
                    raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
                logger.info(f"[{self.name}] unhandled method '{method}', answering null")
                result = None
            else:
                result = await handler(params)
        except JsonRpcError as e:
            if is_notification:
                return None
            return {"jsonrpc": "2.0", "id": msg_id, "error": e.to_dict()}

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    async def handle_line(self, line: str) -> str | None:
        """Handle one protocol line. Unparseable input produces no output."""
        line = line.strip()
        if not line:
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"[{self.name}] dropping unparseable line")
            return None
        response = await self.handle(message)
        if response is None:
            return None
        return json.dumps(response, default=str)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class JsonRpcClient:
    """Request/response correlator keyed by request id.

    ``send`` writes one line to the peer; the transport calls ``feed`` with
    every line the peer writes back.
    """

    def __init__(self, send: Callable[[str], Awaitable[None]], *, name: str = "peer"):
        self._send = send
        self._name = name
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._closed: BaseException | None = None

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self._closed is not None:
            raise ConnectionError(f"Connection to {self._name} is closed") from self._closed
        msg_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": msg_id, "method": method}
        if params is not None:
            message["params"] = params
        try:
            await self._send(json.dumps(message))
            return await future
        finally:
            self._pending.pop(msg_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send(json.dumps(message))

    def feed(self, line: str) -> None:
        """Resolve the pending request a response line answers."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"[{self._name}] ignoring unparseable output line")
            return
        if not isinstance(message, dict):
            return
        msg_id = message.get("id")
        future = self._pending.get(msg_id) if isinstance(msg_id, int) else None
        if future is None or future.done():
            logger.debug(f"[{self._name}] ignoring response for unknown id {msg_id!r}")
            return
        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"code": TOOL_ERROR, "message": str(error)}
            future.set_exception(
                ToolServerError(
                    error.get("code", TOOL_ERROR),
                    error.get("message", "Unknown error"),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    def close(self, exc: BaseException | None = None) -> None:
        """Fail every pending request; later requests raise immediately."""
        self._closed = exc or ConnectionError(f"Connection to {self._name} closed")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(f"{self._name} exited before responding"))
        self._pending.clear()


class ToolServerClient:
    """Typed calls against one tool server."""

    def __init__(self, rpc: JsonRpcClient, name: str):
        self.rpc = rpc
        self.name = name
        self.server_info: dict[str, Any] = {}

    async def initialize(self) -> dict[str, Any]:
        result = await self.rpc.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "agent-server", "version": "1.0.0"},
            },
        )
        self.server_info = result or {}
        await self.rpc.notify("notifications/initialized")
        return self.server_info

    async def list_tools(self) -> list[ToolDefinition]:
        result = await self.rpc.request("tools/list") or {}
        return [
            ToolDefinition(
                name=t["name"],
                description=t.get("description", ""),
                input_schema=t.get("inputSchema") or {"type": "object", "properties": {}},
            )
            for t in result.get("tools", [])
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        result = await self.rpc.request("tools/call", {"name": name, "arguments": arguments or {}})
        blocks = (result or {}).get("content", [])
        return "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
