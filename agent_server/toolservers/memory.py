"""Memory tool server — read/write the user's three-tier memory store.

Tiers: ``persistent`` (always loaded into the system prompt), ``archival``
(looked up on demand), ``session`` (this conversation only).

Run: ``python -m agent_server.toolservers.memory``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agent_server.toolservers.protocol import ToolServer
from agent_server.toolservers.storage import StorageClient
from agent_server.toolservers.transport import run

logger = logging.getLogger(__name__)

TIERS = ["persistent", "archival", "session"]

_TIER_PROPERTY = {
    "type": "string",
    "enum": TIERS,
}


def create_server(
    storage: StorageClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolServer:
    storage = storage or StorageClient.from_env(transport=transport)
    server = ToolServer("memory")

    @server.tool(
        "memory_save",
        "Save a memory about the user. Use this proactively to remember important facts, "
        "preferences, corrections, and project details. Always save when the user corrects "
        "you or shares important personal information.",
        {
            "type": "object",
            "properties": {
                "tier": {
                    **_TIER_PROPERTY,
                    "description": "persistent: always loaded (facts/preferences). "
                    "archival: on-demand (heavy docs). session: this conversation only.",
                },
                "category": {
                    "type": "string",
                    "description": "Category: 'fact', 'preference', 'project', 'correction', 'note'",
                },
                "title": {"type": "string", "description": "Short title for this memory (5-10 words)"},
                "content": {"type": "string", "description": "The memory content to save"},
                "importance": {
                    "type": "number",
                    "description": "Importance 1-10. Corrections=10, major preferences=8-9, facts=5-7, minor=1-4",
                },
            },
            "required": ["tier", "category", "title", "content"],
        },
    )
    async def memory_save(args: dict[str, Any]) -> str:
        tier = args.get("tier")
        if tier not in TIERS:
            raise ValueError(f"Invalid tier: {tier!r}")
        importance = args.get("importance")
        if not isinstance(importance, (int, float)):
            importance = 5
        await storage.mutation(
            "memory:save",
            {
                "userId": storage.user_id,
                "tier": tier,
                "category": str(args.get("category") or "fact"),
                "title": str(args["title"]),
                "content": str(args["content"]),
                "importance": importance,
                "source": "agent",
            },
        )
        logger.info(f"Saved {tier} memory '{args['title']}'")
        return f'Memory saved: "{args["title"]}" ({tier}, importance {importance})'

    @server.tool(
        "memory_search",
        "Search through stored memories. Use this when you need to recall something about the user.",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to search for"},
                "tier": {**_TIER_PROPERTY, "description": "Optional: filter by tier"},
            },
            "required": ["query"],
        },
    )
    async def memory_search(args: dict[str, Any]) -> str:
        query_args: dict[str, Any] = {"userId": storage.user_id, "query": str(args["query"]), "limit": 10}
        if args.get("tier") in TIERS:
            query_args["tier"] = args["tier"]
        results = await storage.query("memory:search", query_args) or []
        if not results:
            return "No memories found for that query."
        return "\n\n".join(
            f"[{m.get('tier')}/{m.get('category')}] **{m.get('title')}**: {m.get('content')}"
            for m in results
        )

    @server.tool(
        "memory_list",
        "List all persistent memories about the user.",
        {
            "type": "object",
            "properties": {
                "tier": {**_TIER_PROPERTY, "description": "Which tier to list (default: persistent)"},
            },
        },
    )
    async def memory_list(args: dict[str, Any]) -> str:
        tier = args.get("tier") if args.get("tier") in TIERS else "persistent"
        results = await storage.query(
            "memory:listByTier", {"userId": storage.user_id, "tier": tier, "limit": 30}
        ) or []
        if not results:
            return f"No {tier} memories found."
        return "\n".join(
            f"• **{m.get('title')}** ({m.get('category')}, importance {m.get('importance')}): {m.get('content')}"
            for m in results
        )

    return server


def main() -> None:
    run(create_server())


if __name__ == "__main__":
    main()
