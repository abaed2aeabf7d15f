"""Error taxonomy shared by the orchestrator, the HTTP layer and tool servers."""

from __future__ import annotations

from typing import Any

# JSON-RPC 2.0 error codes used by the tool-server protocol.
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
TOOL_ERROR = -32000


class AuthUnavailable(RuntimeError):
    """No credential source resolved to an AuthConfig."""


class EngineFailure(RuntimeError):
    """The reasoning engine call failed; the turn ended with an ``error`` event."""


class JsonRpcError(Exception):
    """Raised inside a tool server's dispatch to produce a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ToolServerError(RuntimeError):
    """A tool server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class StorageError(RuntimeError):
    """The storage endpoint rejected a query or mutation."""


class IntegrationError(RuntimeError):
    """An integration's API or token lookup failed inside a tool handler."""
