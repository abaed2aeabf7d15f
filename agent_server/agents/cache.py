"""Session cache — one checkpointer per ``user:session`` for the graph engine.

Entries expire after the TTL, the oldest are evicted beyond the size cap,
and an entry is replaced when the model or credential behind it changes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from langgraph.checkpoint.memory import MemorySaver

if TYPE_CHECKING:
    from agent_server.auth import AuthConfig

logger = logging.getLogger(__name__)


@dataclass
class GraphSession:
    fingerprint: str
    updated_at: float
    checkpointer: MemorySaver = field(default_factory=MemorySaver)


# Cache: {"user:session": GraphSession}
_sessions: dict[str, GraphSession] = {}


def session_key(user_id: str, session_id: str) -> str:
    return f"{user_id}:{session_id}"


def _fingerprint(auth: AuthConfig, model: str) -> str:
    """Hash mode + model + credential for change detection; keys never stored."""
    key = auth.google_api_key if auth.mode == "gemini" else auth.anthropic_api_key
    data = {
        "mode": auth.mode,
        "model": model,
        "key": hashlib.sha256((key or "").encode()).hexdigest(),
    }
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()[:16]


def get_or_create(
    user_id: str,
    session_id: str,
    auth: AuthConfig,
    model: str,
    *,
    ttl_seconds: float = 1800,
    max_sessions: int = 200,
    now: float | None = None,
) -> GraphSession:
    """Return the live session for this user/session, or start a fresh one."""
    now = time.time() if now is None else now
    prune(ttl_seconds, max_sessions, now=now)

    key = session_key(user_id, session_id)
    fingerprint = _fingerprint(auth, model)
    session = _sessions.get(key)
    if session is not None and session.fingerprint == fingerprint:
        session.updated_at = now
        logger.debug(f"Session cache hit: {key}")
        return session

    if session is not None:
        logger.info(f"Model or credential changed for {key}, starting fresh history")
    session = GraphSession(fingerprint=fingerprint, updated_at=now)
    _sessions[key] = session
    prune(ttl_seconds, max_sessions, now=now)
    return session


def prune(ttl_seconds: float, max_sessions: int, *, now: float | None = None) -> int:
    """Drop expired sessions, then the least recently used beyond the cap."""
    now = time.time() if now is None else now
    expired = [k for k, s in _sessions.items() if now - s.updated_at > ttl_seconds]
    for key in expired:
        del _sessions[key]

    overflow = len(_sessions) - max_sessions
    evicted = 0
    if overflow > 0:
        oldest = sorted(_sessions, key=lambda k: _sessions[k].updated_at)[:overflow]
        for key in oldest:
            del _sessions[key]
        evicted = len(oldest)

    removed = len(expired) + evicted
    if removed:
        logger.info(f"Session cache pruned {removed} session(s)")
    return removed


def invalidate(key: str | None = None) -> None:
    """Clear the cache. If key given, only clear that session."""
    if key:
        _sessions.pop(key, None)
        logger.info(f"Session cache invalidated: {key}")
    else:
        _sessions.clear()
        logger.info("Session cache invalidated: all sessions")


def size() -> int:
    return len(_sessions)
