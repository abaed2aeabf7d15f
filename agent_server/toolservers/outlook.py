"""Outlook tool server — Office 365 mail and calendar via Microsoft Graph.

Token order: the user's stored ``outlook`` OAuth token (refreshed when it
expires within a minute), then the app's client-credentials grant when
``MS_TENANT_ID`` / ``MS_CLIENT_ID`` / ``MS_CLIENT_SECRET`` are all set.

Run: ``python -m agent_server.toolservers.outlook``
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from agent_server.errors import IntegrationError
from agent_server.toolservers.api import BearerApi, clamp
from agent_server.toolservers.protocol import ToolServer
from agent_server.toolservers.storage import StorageClient
from agent_server.toolservers.transport import run

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
_DELEGATED_SCOPES = " ".join(
    f"https://graph.microsoft.com/{scope}" for scope in ("Mail.Read", "Mail.Send", "Calendars.Read")
)
_REFRESH_MARGIN_MS = 60_000


class GraphTokenSource:
    """Resolves a Graph access token for the current user."""

    def __init__(
        self,
        storage: StorageClient,
        environ: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        env = os.environ if environ is None else environ
        self.storage = storage
        self.tenant_id = env.get("MS_TENANT_ID", "")
        self.client_id = env.get("MS_CLIENT_ID", "")
        self.client_secret = env.get("MS_CLIENT_SECRET", "")
        self._transport = transport

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    async def __call__(self) -> str:
        tokens = await self.storage.get_connector_token("outlook")
        if tokens and tokens.get("accessToken"):
            expires_at = tokens.get("expiresAt")
            if expires_at and expires_at < time.time() * 1000 + _REFRESH_MARGIN_MS:
                return await self._grant(
                    "refresh",
                    {
                        "grant_type": "refresh_token",
                        "refresh_token": tokens.get("refreshToken") or "",
                        "scope": _DELEGATED_SCOPES,
                    },
                )
            return tokens["accessToken"]

        if self.has_app_credentials:
            return await self._grant(
                "client credentials",
                {"grant_type": "client_credentials", "scope": "https://graph.microsoft.com/.default"},
            )
        raise IntegrationError("Outlook not connected. Please connect Outlook in Settings.")

    async def _grant(self, label: str, form: dict[str, str]) -> str:
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            resp = await client.post(
                _TOKEN_URL.format(tenant=self.tenant_id),
                data={"client_id": self.client_id, "client_secret": self.client_secret, **form},
            )
        data = resp.json()
        if not data.get("access_token"):
            raise IntegrationError(f"Token {label} failed: {data.get('error_description')}")
        logger.info(f"Obtained Graph token via {label}")
        return data["access_token"]


def _address(recipient: dict[str, Any] | None) -> str:
    return ((recipient or {}).get("emailAddress") or {}).get("address") or ""


def format_email(message: dict[str, Any], *, include_read: bool = False) -> str:
    lines = [
        f"ID: {message.get('id')}",
        f"From: {_address(message.get('from')) or 'Unknown'}",
        f"Subject: {message.get('subject') or '(no subject)'}",
        f"Date: {message.get('receivedDateTime') or ''}",
    ]
    if include_read:
        lines.append(f"Read: {message.get('isRead')}")
    lines.append(f"Preview: {message.get('bodyPreview') or ''}")
    return "\n".join(lines)


def format_calendar_event(event: dict[str, Any]) -> str:
    start = (event.get("start") or {}).get("dateTime") or ""
    end = (event.get("end") or {}).get("dateTime") or ""
    lines = [f"**{event.get('subject') or 'Untitled'}**", f"Time: {start} – {end}"]
    location = (event.get("location") or {}).get("displayName")
    if location:
        lines.append(f"Location: {location}")
    attendees = ", ".join(_address(a) for a in event.get("attendees") or [])
    if attendees:
        lines.append(f"Attendees: {attendees}")
    return "\n".join(lines)


def create_server(
    storage: StorageClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    environ: Mapping[str, str] | None = None,
) -> ToolServer:
    storage = storage or StorageClient.from_env(transport=transport)
    tokens = GraphTokenSource(storage, environ, transport)
    api = BearerApi(GRAPH_BASE_URL, tokens, label="Graph", transport=transport)
    server = ToolServer("outlook")

    @server.tool(
        "outlook_list_emails",
        "List recent Outlook/Office 365 emails from the inbox.",
        {
            "type": "object",
            "properties": {
                "top": {"type": "number", "description": "Number of emails to fetch (default 10, max 50)"},
                "filter": {"type": "string", "description": "OData filter e.g. 'isRead eq false'"},
            },
        },
    )
    async def outlook_list_emails(args: dict[str, Any]) -> str:
        params = {
            "$top": clamp(args.get("top"), 10, 50),
            "$orderby": "receivedDateTime desc",
            "$select": "id,subject,from,receivedDateTime,bodyPreview,isRead",
            "$filter": args.get("filter") or None,
        }
        data = await api.get("/me/mailFolders/inbox/messages", **params)
        messages = data.get("value") or []
        if not messages:
            return "No emails found."
        return "\n\n---\n\n".join(format_email(m, include_read=True) for m in messages)

    @server.tool(
        "outlook_search_emails",
        "Search Outlook emails using a keyword query.",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search keyword or phrase"},
                "top": {"type": "number", "description": "Max results (default 10)"},
            },
            "required": ["query"],
        },
    )
    async def outlook_search_emails(args: dict[str, Any]) -> str:
        params = {
            "$search": f'"{args["query"]}"',
            "$top": clamp(args.get("top"), 10, 50),
            "$select": "id,subject,from,receivedDateTime,bodyPreview",
        }
        data = await api.get("/me/messages", **params)
        messages = data.get("value") or []
        if not messages:
            return "No matching emails found."
        return "\n\n---\n\n".join(format_email(m) for m in messages)

    @server.tool(
        "outlook_get_email",
        "Get the full content of a specific Outlook email by ID.",
        {
            "type": "object",
            "properties": {"messageId": {"type": "string"}},
            "required": ["messageId"],
        },
    )
    async def outlook_get_email(args: dict[str, Any]) -> str:
        message = await api.get(
            f"/me/messages/{args['messageId']}",
            **{"$select": "subject,from,toRecipients,receivedDateTime,body"},
        )
        to = ", ".join(_address(r) for r in message.get("toRecipients") or [])
        body = (message.get("body") or {}).get("content") or "(no body)"
        return (
            f"From: {_address(message.get('from'))}\n"
            f"To: {to}\n"
            f"Subject: {message.get('subject') or ''}\n"
            f"Date: {message.get('receivedDateTime') or ''}\n\n{body}"
        )

    @server.tool(
        "outlook_send_email",
        "Send an email via Outlook. Requires explicit user confirmation.",
        {
            "type": "object",
            "properties": {
                "to": {"type": "string"},
                "subject": {"type": "string"},
                "body": {"type": "string"},
                "cc": {"type": "string"},
            },
            "required": ["to", "subject", "body"],
        },
    )
    async def outlook_send_email(args: dict[str, Any]) -> str:
        message: dict[str, Any] = {
            "subject": args["subject"],
            "body": {"contentType": "Text", "content": args["body"]},
            "toRecipients": [{"emailAddress": {"address": args["to"]}}],
        }
        if args.get("cc"):
            message["ccRecipients"] = [{"emailAddress": {"address": args["cc"]}}]
        await api.post("/me/sendMail", {"message": message})
        logger.info("Sent Outlook message")
        return f'Email sent to {args["to"]} with subject "{args["subject"]}".'

    @server.tool(
        "outlook_list_calendar",
        "List upcoming Outlook calendar events.",
        {
            "type": "object",
            "properties": {
                "top": {"type": "number", "description": "Number of events (default 10)"},
                "startDateTime": {"type": "string", "description": "ISO 8601 start (default: now)"},
                "endDateTime": {"type": "string", "description": "ISO 8601 end (default: 7 days from now)"},
            },
        },
    )
    async def outlook_list_calendar(args: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        params = {
            "startDateTime": str(args.get("startDateTime") or now.isoformat()),
            "endDateTime": str(args.get("endDateTime") or (now + timedelta(days=7)).isoformat()),
            "$top": clamp(args.get("top"), 10, 50),
            "$orderby": "start/dateTime",
            "$select": "subject,start,end,location,attendees",
        }
        data = await api.get("/me/calendarView", **params)
        events = data.get("value") or []
        if not events:
            return "No upcoming calendar events."
        return "\n\n---\n\n".join(format_calendar_event(e) for e in events)

    return server


def main() -> None:
    run(create_server())


if __name__ == "__main__":
    main()
