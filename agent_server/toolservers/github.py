"""GitHub tool server — pull requests, issues and repository activity via the REST API.

Run: ``python -m agent_server.toolservers.github``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agent_server.toolservers.api import BearerApi, clamp, stored_token_source
from agent_server.toolservers.protocol import ToolServer
from agent_server.toolservers.storage import StorageClient
from agent_server.toolservers.transport import run

logger = logging.getLogger(__name__)

GITHUB_BASE_URL = "https://api.github.com"

_REPO_PROPERTIES = {
    "owner": {"type": "string", "description": "Repository owner"},
    "repo": {"type": "string", "description": "Repository name"},
}


def _day(timestamp: str | None) -> str:
    return (timestamp or "")[:10]


def format_pr(pr: dict[str, Any]) -> str:
    draft = " (draft)" if pr.get("draft") else ""
    return "\n".join(
        [
            f"#{pr.get('number')} — {pr.get('title')}",
            f"Author: {(pr.get('user') or {}).get('login', 'Unknown')} | State: {pr.get('state')}{draft}",
            f"Created: {_day(pr.get('created_at'))} | Updated: {_day(pr.get('updated_at'))}",
            f"URL: {pr.get('html_url')}",
        ]
    )


def format_issue(issue: dict[str, Any]) -> str:
    labels = ", ".join(label.get("name", "") for label in issue.get("labels") or [])
    label_text = f" | Labels: {labels}" if labels else ""
    return "\n".join(
        [
            f"#{issue.get('number')} — {issue.get('title')}",
            f"Author: {(issue.get('user') or {}).get('login', 'Unknown')} | State: {issue.get('state')}{label_text}",
            f"Created: {_day(issue.get('created_at'))}",
            f"URL: {issue.get('html_url')}",
        ]
    )


def create_server(
    storage: StorageClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolServer:
    storage = storage or StorageClient.from_env(transport=transport)
    api = BearerApi(
        GITHUB_BASE_URL,
        stored_token_source(storage, "github", "GitHub"),
        label="GitHub",
        headers={"Accept": "application/vnd.github.v3+json"},
        transport=transport,
    )
    server = ToolServer("github")

    @server.tool(
        "github_list_prs",
        "List open pull requests for a GitHub repository.",
        {
            "type": "object",
            "properties": {
                **_REPO_PROPERTIES,
                "state": {"type": "string", "enum": ["open", "closed", "all"], "description": "PR state (default: open)"},
            },
            "required": ["owner", "repo"],
        },
    )
    async def github_list_prs(args: dict[str, Any]) -> str:
        state = str(args.get("state") or "open")
        prs = await api.get(f"/repos/{args['owner']}/{args['repo']}/pulls", state=state, per_page=20)
        if not prs:
            return f"No {state} pull requests found."
        return "\n\n---\n\n".join(format_pr(pr) for pr in prs)

    @server.tool(
        "github_list_issues",
        "List issues for a GitHub repository.",
        {
            "type": "object",
            "properties": {
                **_REPO_PROPERTIES,
                "state": {"type": "string", "enum": ["open", "closed", "all"], "description": "Issue state (default: open)"},
                "labels": {"type": "string", "description": "Comma-separated list of labels to filter by"},
                "assignee": {"type": "string", "description": "Filter by assignee username"},
            },
            "required": ["owner", "repo"],
        },
    )
    async def github_list_issues(args: dict[str, Any]) -> str:
        state = str(args.get("state") or "open")
        issues = await api.get(
            f"/repos/{args['owner']}/{args['repo']}/issues",
            state=state,
            per_page=20,
            labels=args.get("labels") or None,
            assignee=args.get("assignee") or None,
        )
        # The issues endpoint also returns pull requests.
        issues = [i for i in issues if "pull_request" not in i]
        if not issues:
            return f"No {state} issues found."
        return "\n\n---\n\n".join(format_issue(i) for i in issues)

    @server.tool(
        "github_get_pr",
        "Get details of a specific pull request.",
        {
            "type": "object",
            "properties": {
                **_REPO_PROPERTIES,
                "number": {"type": "number", "description": "PR number"},
            },
            "required": ["owner", "repo", "number"],
        },
    )
    async def github_get_pr(args: dict[str, Any]) -> str:
        base = f"/repos/{args['owner']}/{args['repo']}/pulls/{int(args['number'])}"
        pr = await api.get(base)
        comments = await api.get(f"{base}/comments", per_page=10)
        text = f"{format_pr(pr)}\n\nDescription: {pr.get('body') or '(none)'}"
        if comments:
            text += "\n\nRecent comments:\n" + "\n".join(
                f"  {(c.get('user') or {}).get('login')}: {c.get('body')}" for c in comments
            )
        return text

    @server.tool(
        "github_create_issue",
        "Create a new GitHub issue. Requires user confirmation.",
        {
            "type": "object",
            "properties": {
                **_REPO_PROPERTIES,
                "title": {"type": "string"},
                "body": {"type": "string"},
                "labels": {"type": "array", "items": {"type": "string"}},
                "assignees": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["owner", "repo", "title"],
        },
    )
    async def github_create_issue(args: dict[str, Any]) -> str:
        body = {key: args[key] for key in ("title", "body", "labels", "assignees") if args.get(key) is not None}
        issue = await api.post(f"/repos/{args['owner']}/{args['repo']}/issues", body)
        logger.info(f"Created issue #{issue.get('number')} in {args['owner']}/{args['repo']}")
        return f"Issue created: #{issue.get('number')}\n{issue.get('html_url')}"

    @server.tool(
        "github_get_repo_activity",
        "Get recent activity/events for a GitHub repository.",
        {
            "type": "object",
            "properties": {
                **_REPO_PROPERTIES,
                "perPage": {"type": "number", "description": "Events per page (default 10)"},
            },
            "required": ["owner", "repo"],
        },
    )
    async def github_get_repo_activity(args: dict[str, Any]) -> str:
        events = await api.get(
            f"/repos/{args['owner']}/{args['repo']}/events",
            per_page=clamp(args.get("perPage"), 10, 30),
        )
        if not events:
            return "No recent activity."
        return "\n".join(
            f"{e.get('type')} by {(e.get('actor') or {}).get('login')} at {e.get('created_at', '')}"
            for e in events
        )

    @server.tool(
        "github_list_my_prs",
        "List pull requests assigned to or created by the authenticated user across all repos.",
        {
            "type": "object",
            "properties": {
                "state": {"type": "string", "enum": ["open", "closed"], "description": "PR state (default: open)"},
            },
        },
    )
    async def github_list_my_prs(args: dict[str, Any]) -> str:
        state = str(args.get("state") or "open")
        result = await api.get("/search/issues", q=f"is:pr is:{state} involves:@me", per_page=20)
        items = result.get("items") or []
        if not items:
            return f"No {state} PRs involving you."
        return "\n\n".join(
            f"{pr.get('html_url')}\n#{pr.get('number')} — {pr.get('title')} | {pr.get('state')}"
            for pr in items
        )

    return server


def main() -> None:
    run(create_server())


if __name__ == "__main__":
    main()
