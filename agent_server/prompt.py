"""System prompt — persona, profile, persistent memories, integrations, guidelines.

Sections that would be empty are omitted entirely, header included.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from agent_server.schemas import MemoryEntry

PERSONA = (
    "You are Jarvis, a personal AI assistant. You are intelligent, proactive, "
    "and deeply personalized."
)

CONNECTOR_LABELS = {
    "gmail": "- **Gmail** — use gmail_list_recent, gmail_search, gmail_get_message, gmail_send, gmail_create_draft",
    "google-calendar": "- **Google Calendar** — use calendar_list_events, calendar_get_agenda, "
    "calendar_find_free_slots, calendar_create_event",
    "github": "- **GitHub** — use github_list_prs, github_list_issues, github_get_pr, github_create_issue, "
    "github_list_my_prs, github_get_repo_activity",
    "outlook": "- **Outlook** — use outlook_list_emails, outlook_search_emails, outlook_get_email, "
    "outlook_send_email, outlook_list_calendar",
}

MEMORY_GUIDELINES = """## Memory Guidelines (IMPORTANT)
- Save memories proactively WITHOUT being asked. If the user tells you something important about themselves, their preferences, projects, or corrections, save it immediately using the memory_save tool.
- When a user corrects you, ALWAYS save the correction as a high-importance persistent memory.
- Save factual information as "fact" category, preferences as "preference", project info as "project", corrections as "correction".
- Importance 1-10: 10 = absolutely critical (corrections, major preferences), 7-9 = very important facts, 4-6 = useful context, 1-3 = minor details."""

TOOL_GUIDELINES = """## Tool Use Guidelines
- Use WebSearch to find current information, news, documentation.
- Use WebFetch to read specific URLs in detail.
- When checking email or calendar, use the appropriate integration tools (gmail, calendar, outlook).
- Be thorough but efficient: use tools to get the information you need, not more.
- Show your work: briefly explain what tools you're using and why."""

PERSONALITY = """## Personality
- Concise by default, detailed when needed.
- Proactive: if you notice something the user should know, mention it.
- Honest about limitations and uncertainty.
- Never sycophantic. Get to the point."""


def profile_section(soul_file: str | None) -> str:
    if not soul_file or not soul_file.strip():
        return ""
    return f"## Your Profile (Soul File)\n\n{soul_file.strip()}"


def memories_section(memories: Iterable[MemoryEntry]) -> str:
    persistent = [m for m in memories if m.tier == "persistent"]
    if not persistent:
        return ""
    # sorted() is stable, so equal importance keeps input order.
    ranked = sorted(persistent, key=lambda m: -m.importance)
    lines = "\n".join(f"**{m.title}** ({m.category}): {m.content}" for m in ranked)
    return f"## What I Know About You\n\n{lines}"


def connectors_section(connectors: Iterable[str]) -> str:
    connectors = list(connectors)
    if not connectors:
        return (
            "## Connected Integrations\n\n"
            "No external integrations are currently connected. You cannot check email, "
            "calendar, or GitHub. Suggest the user connect them in Settings."
        )
    lines = "\n".join(CONNECTOR_LABELS.get(c, f"- {c}") for c in connectors)
    return (
        "## Connected Integrations\n\n"
        "The following external services are connected and available via tools:\n"
        f"{lines}\n\n"
        "If a service is NOT listed above, do not attempt to use its tools; they are not connected."
    )


def clock_section(now: datetime) -> str:
    return (
        f"Today's date: {now.strftime('%A, %B')} {now.day}, {now.year}.\n"
        f"Current time: {now.strftime('%I:%M %p %Z').strip()}."
    )


def build_system_prompt(
    soul_file: str | None,
    memories: Iterable[MemoryEntry],
    connectors: Iterable[str] = (),
    now: datetime | None = None,
) -> str:
    now = now or datetime.now().astimezone()
    sections = [
        PERSONA,
        profile_section(soul_file),
        memories_section(memories),
        connectors_section(connectors),
        MEMORY_GUIDELINES,
        TOOL_GUIDELINES,
        PERSONALITY,
        clock_section(now),
    ]
    return "\n\n".join(s for s in sections if s) + "\n"
