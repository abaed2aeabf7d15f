"""Gmail tool server — list, search, read, send and draft mail via the Gmail REST API.

Uses the user's stored ``gmail`` OAuth token.

Run: ``python -m agent_server.toolservers.gmail``
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx

from agent_server.toolservers.api import BearerApi, clamp, stored_token_source
from agent_server.toolservers.protocol import ToolServer
from agent_server.toolservers.storage import StorageClient
from agent_server.toolservers.transport import run

logger = logging.getLogger(__name__)

GMAIL_BASE_URL = "https://gmail.googleapis.com"
_MESSAGES = "/gmail/v1/users/me/messages"
_SUMMARY_HEADERS = ["From", "Subject", "Date"]


# ── Message helpers ──────────────────────────────────────────────────────────


def decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def encode_message(to: str, subject: str, body: str, cc: str | None = None) -> str:
    """RFC 822 plain-text message, base64url-encoded for the ``raw`` field."""
    lines = [f"To: {to}"]
    if cc:
        lines.append(f"Cc: {cc}")
    lines += [f"Subject: {subject}", "Content-Type: text/plain; charset=utf-8", "", body]
    return base64.urlsafe_b64encode("\r\n".join(lines).encode("utf-8")).decode("ascii").rstrip("=")


def extract_body(payload: dict[str, Any]) -> str:
    """First readable body: the payload's own data, else its first text/plain part."""
    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_base64url(data)
    for part in payload.get("parts") or []:
        part_data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and part_data:
            return decode_base64url(part_data)
    return "(no readable body)"


def _header(message: dict[str, Any], name: str) -> str:
    for header in (message.get("payload") or {}).get("headers") or []:
        if header.get("name") == name:
            return header.get("value", "")
    return ""


def format_summary(message: dict[str, Any]) -> str:
    return (
        f"ID: {message.get('id', '')}\n"
        f"From: {_header(message, 'From')}\n"
        f"Subject: {_header(message, 'Subject')}\n"
        f"Date: {_header(message, 'Date')}\n"
        f"Preview: {message.get('snippet', '')}"
    )


# ── Server ───────────────────────────────────────────────────────────────────


def create_server(
    storage: StorageClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolServer:
    storage = storage or StorageClient.from_env(transport=transport)
    api = BearerApi(
        GMAIL_BASE_URL,
        stored_token_source(storage, "gmail", "Gmail"),
        label="Gmail",
        transport=transport,
    )
    server = ToolServer("gmail")

    async def summarize(ids: list[str]) -> str:
        messages = await asyncio.gather(
            *(
                api.get(f"{_MESSAGES}/{msg_id}", format="metadata", metadataHeaders=_SUMMARY_HEADERS)
                for msg_id in ids
            )
        )
        return "\n\n---\n\n".join(format_summary(m) for m in messages)

    @server.tool(
        "gmail_list_recent",
        "List recent emails from Gmail inbox. Use to check for new messages.",
        {
            "type": "object",
            "properties": {
                "maxResults": {"type": "number", "description": "Number of emails to fetch (default 10, max 50)"},
                "labelIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Filter by labels e.g. ['INBOX', 'UNREAD']",
                },
            },
        },
    )
    async def gmail_list_recent(args: dict[str, Any]) -> str:
        max_results = clamp(args.get("maxResults"), 10, 50)
        labels = args.get("labelIds") if isinstance(args.get("labelIds"), list) else ["INBOX"]
        listing = await api.get(_MESSAGES, maxResults=max_results, labelIds=labels)
        ids = [m["id"] for m in listing.get("messages") or []][:max_results]
        if not ids:
            return "No messages found."
        return await summarize(ids)

    @server.tool(
        "gmail_search",
        "Search Gmail messages using Gmail query syntax (e.g. 'from:boss@company.com is:unread').",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Gmail search query"},
                "maxResults": {"type": "number", "description": "Max results (default 10)"},
            },
            "required": ["query"],
        },
    )
    async def gmail_search(args: dict[str, Any]) -> str:
        max_results = clamp(args.get("maxResults"), 10, 50)
        listing = await api.get(_MESSAGES, q=str(args["query"]), maxResults=max_results)
        ids = [m["id"] for m in listing.get("messages") or []]
        if not ids:
            return "No messages matching that search."
        return await summarize(ids)

    @server.tool(
        "gmail_get_message",
        "Get the full content of a specific email by ID.",
        {
            "type": "object",
            "properties": {"messageId": {"type": "string", "description": "Gmail message ID"}},
            "required": ["messageId"],
        },
    )
    async def gmail_get_message(args: dict[str, Any]) -> str:
        message = await api.get(f"{_MESSAGES}/{args['messageId']}", format="full")
        payload = message.get("payload")
        body = extract_body(payload) if payload else "(no body)"
        return (
            f"From: {_header(message, 'From')}\n"
            f"To: {_header(message, 'To')}\n"
            f"Subject: {_header(message, 'Subject')}\n"
            f"Date: {_header(message, 'Date')}\n\n{body}"
        )

    @server.tool(
        "gmail_send",
        "Send an email via Gmail. Requires explicit user approval before sending.",
        {
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Recipient email address"},
                "subject": {"type": "string", "description": "Email subject"},
                "body": {"type": "string", "description": "Email body (plain text or HTML)"},
                "cc": {"type": "string", "description": "CC recipient(s) optional"},
            },
            "required": ["to", "subject", "body"],
        },
    )
    async def gmail_send(args: dict[str, Any]) -> str:
        raw = encode_message(args["to"], args["subject"], str(args["body"]), args.get("cc"))
        await api.post(f"{_MESSAGES}/send", {"raw": raw})
        logger.info("Sent Gmail message")
        return f'Email sent to {args["to"]} with subject "{args["subject"]}".'

    @server.tool(
        "gmail_create_draft",
        "Create a Gmail draft without sending it.",
        {
            "type": "object",
            "properties": {
                "to": {"type": "string"},
                "subject": {"type": "string"},
                "body": {"type": "string"},
            },
            "required": ["to", "subject", "body"],
        },
    )
    async def gmail_create_draft(args: dict[str, Any]) -> str:
        raw = encode_message(args["to"], args["subject"], str(args["body"]))
        await api.post("/gmail/v1/users/me/drafts", {"message": {"raw": raw}})
        return f'Draft created to {args["to"]} with subject "{args["subject"]}".'

    return server


def main() -> None:
    run(create_server())


if __name__ == "__main__":
    main()
