from datetime import datetime, timezone

from agent_server.prompt import build_system_prompt, connectors_section, memories_section
from agent_server.schemas import MemoryEntry

NOW = datetime(2026, 3, 2, 14, 5, tzinfo=timezone.utc)


def memory(title, importance, tier="persistent", category="fact"):
    return MemoryEntry(tier=tier, category=category, title=title, content=f"{title} content", importance=importance)


def test_empty_sections_are_omitted():
    prompt = build_system_prompt(None, [], [], now=NOW)
    assert prompt.startswith("You are Jarvis")
    assert "## Your Profile" not in prompt
    assert "## What I Know About You" not in prompt
    assert "No external integrations are currently connected" in prompt
    assert "Today's date: Monday, March 2, 2026." in prompt
    assert prompt.endswith("\n")


def test_profile_section():
    prompt = build_system_prompt("  Name: Ada\nRole: engineer  ", [], now=NOW)
    assert "## Your Profile (Soul File)\n\nName: Ada\nRole: engineer" in prompt


def test_only_persistent_memories_sorted_by_importance():
    section = memories_section(
        [
            memory("Low", 2),
            memory("Archived", 10, tier="archival"),
            memory("High", 9, category="preference"),
            memory("AlsoLow", 2),
        ]
    )
    assert section == (
        "## What I Know About You\n\n"
        "**High** (preference): High content\n"
        "**Low** (fact): Low content\n"
        "**AlsoLow** (fact): AlsoLow content"
    )


def test_no_persistent_memories_omits_header():
    assert memories_section([memory("Archived", 10, tier="archival")]) == ""


def test_connected_integrations_are_listed():
    section = connectors_section(["gmail", "github"])
    assert "**Gmail**" in section
    assert "**GitHub**" in section
    assert "Outlook" not in section


def test_section_order():
    prompt = build_system_prompt("soul", [memory("Fact", 5)], ["gmail"], now=NOW)
    order = [
        prompt.index("You are Jarvis"),
        prompt.index("## Your Profile"),
        prompt.index("## What I Know About You"),
        prompt.index("## Connected Integrations"),
        prompt.index("## Memory Guidelines"),
        prompt.index("## Tool Use Guidelines"),
        prompt.index("## Personality"),
        prompt.index("Today's date"),
    ]
    assert order == sorted(order)
