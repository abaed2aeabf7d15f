"""Core web tools — ``WebSearch`` (Tavily) and ``WebFetch`` (httpx + HTML stripping).

Requires: TAVILY_API_KEY environment variable for WebSearch.
"""

from __future__ import annotations

import logging
import os
import re

import httpx
from langchain_core.tools import tool
from tavily import AsyncTavilyClient

from agent_server.tools import register

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT = 15.0
_MAX_FETCH_CHARS = 20_000


def strip_html(html: str) -> str:
    """Very lightweight HTML → plain text."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</li>|</h\d>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"&nbsp;", " ", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n\s*\n+", "\n\n", text)
    return text.strip()


@register
@tool("WebSearch")
async def web_search(query: str) -> str:
    """Search the web and return the top results as formatted text.

    Use this for real-time information, news, recent events, or any
    question that benefits from live web data.

    Args:
        query: The search query string.
    """
    api_key = os.environ.get("TAVILY_API_KEY", "")
    if not api_key:
        return "Error: TAVILY_API_KEY environment variable is not set."

    try:
        client = AsyncTavilyClient(api_key=api_key)
        response = await client.search(query=query, max_results=5, search_depth="basic")
    except Exception as e:
        logger.warning(f"WebSearch failed for {query!r}: {e}")
        return f"Search failed: {e}"

    results = response.get("results", [])
    if not results:
        return f"No results found for: {query}"

    lines = [f"Search results for: {query}\n"]
    for i, r in enumerate(results, 1):
        content = r.get("content", "").strip()
        snippet = content[:300] + "..." if len(content) > 300 else content
        lines.append(f"{i}. {r.get('title', 'Untitled')}\n   URL: {r.get('url', '')}\n   {snippet}\n")
    return "\n".join(lines)


@register
@tool("WebFetch")
async def web_fetch(url: str) -> str:
    """Fetch a web page and return its readable text.

    Args:
        url: An http or https URL.
    """
    if not url.startswith(("http://", "https://")):
        return f"Error: not an http(s) URL: {url}"

    try:
        async with httpx.AsyncClient(follow_redirects=True, timeout=_FETCH_TIMEOUT) as client:
            resp = await client.get(url, headers={"User-Agent": "Mozilla/5.0 (compatible; agent-server)"})
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"WebFetch failed for {url}: {e}")
        return f"Fetch failed: {e}"

    body = resp.text
    if "html" in resp.headers.get("content-type", ""):
        title_m = re.search(r"<title[^>]*>(.*?)</title>", body, re.IGNORECASE | re.DOTALL)
        title = title_m.group(1).strip() if title_m else url
        body = f"# {title}\n\n{strip_html(body)}"
    if len(body) > _MAX_FETCH_CHARS:
        body = body[:_MAX_FETCH_CHARS] + "\n\n[truncated]"
    return body
