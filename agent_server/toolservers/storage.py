"""Storage client — Convex HTTP API access for tool servers.

Tool servers run as subprocesses with ``CONVEX_URL``, ``CONVEX_DEPLOY_KEY``
and ``USER_ID`` in their environment; ``StorageClient.from_env`` reads them.

    storage = StorageClient.from_env()
    tokens = await storage.get_connector_token("gmail")
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any, Literal

import httpx

from agent_server.errors import StorageError

logger = logging.getLogger(__name__)

_TIMEOUT = 15.0


class StorageClient:
    def __init__(
        self,
        url: str,
        deploy_key: str = "",
        user_id: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = _TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.deploy_key = deploy_key
        self.user_id = user_id
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> StorageClient:
        env = os.environ if environ is None else environ
        return cls(
            env.get("CONVEX_URL", ""),
            env.get("CONVEX_DEPLOY_KEY", ""),
            env.get("USER_ID", ""),
            transport=transport,
        )

    async def _call(self, kind: Literal["query", "mutation"], path: str, args: dict[str, Any]) -> Any:
        if not self.url:
            raise StorageError("Storage is not configured (CONVEX_URL is empty)")

        headers = {"Content-Type": "application/json"}
        if self.deploy_key:
            headers["Authorization"] = f"Convex {self.deploy_key}"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(
                f"{self.url}/api/{kind}",
                json={"path": path, "args": args, "format": "json"},
                headers=headers,
            )
        if resp.is_error:
            raise StorageError(f"Storage {kind} '{path}' failed ({resp.status_code}): {resp.text}")

        data = resp.json()
        if data.get("status") == "error":
            raise StorageError(data.get("errorMessage") or f"Storage {kind} '{path}' failed")
        logger.debug(f"Storage {kind} '{path}' ok")
        return data.get("value")

    async def query(self, path: str, args: dict[str, Any] | None = None) -> Any:
        return await self._call("query", path, args or {})

    async def mutation(self, path: str, args: dict[str, Any] | None = None) -> Any:
        return await self._call("mutation", path, args or {})

    async def get_connector_token(self, provider: str) -> dict[str, Any] | None:
        """Stored OAuth tokens for ``provider`` (``accessToken``, ``refreshToken``, ``expiresAt``)."""
        return await self.query(
            "connectors/tokens:getByProvider",
            {"userId": self.user_id, "provider": provider},
        )
