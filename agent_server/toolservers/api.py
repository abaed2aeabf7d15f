"""Bearer-token JSON API helper shared by the integration tool servers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from agent_server.errors import IntegrationError

logger = logging.getLogger(__name__)

_TIMEOUT = 20.0


class BearerApi:
    """Calls ``base_url`` with a token fetched fresh for every request.

    ``label`` prefixes error messages ("Gmail API error 401: ...").
    """

    def __init__(
        self,
        base_url: str,
        get_token: Callable[[], Awaitable[str]],
        *,
        label: str,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.label = label
        self._get_token = get_token
        self._headers = headers or {}
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        token = await self._get_token()
        headers = {"Authorization": f"Bearer {token}", **self._headers}
        async with httpx.AsyncClient(timeout=_TIMEOUT, transport=self._transport) as client:
            resp = await client.request(
                method, f"{self.base_url}{path}", params=params, json=json, headers=headers
            )
        if resp.is_error:
            logger.warning(f"{self.label} API {method} {path} -> {resp.status_code}")
            raise IntegrationError(f"{self.label} API error {resp.status_code}: {resp.text}")
        if not resp.content:
            return {}
        return resp.json()

    async def get(self, path: str, **params: Any) -> Any:
        return await self.request("GET", path, params={k: v for k, v in params.items() if v is not None})

    async def post(self, path: str, body: Any) -> Any:
        return await self.request("POST", path, json=body)


def stored_token_source(storage, provider: str, display_name: str) -> Callable[[], Awaitable[str]]:
    """Token getter reading the user's stored OAuth access token."""

    async def get_token() -> str:
        tokens = await storage.get_connector_token(provider)
        if not tokens or not tokens.get("accessToken"):
            raise IntegrationError(f"{display_name} not connected. Please connect {display_name} in Settings.")
        return tokens["accessToken"]

    return get_token


def clamp(value: Any, default: int, maximum: int) -> int:
    """Coerce a model-supplied count into ``1..maximum``."""
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return max(1, min(number, maximum))
