"""Agent server — FastAPI app exposing chat (SSE), task, status and health routes.

Loads agent-server.yaml (optional) on startup. /api/chat streams the turn's
events live as ``data: <json>\\n\\n`` records; /api/task runs the same turn and
returns only the outcome.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from agent_server.auth import AuthOverrides, get_status_info, resolve, resolve_fallback
from agent_server.config import get_config, load_config
from agent_server.errors import AuthUnavailable, EngineFailure
from agent_server.runtime import run_turn
from agent_server.schemas import (
    ChatRequest,
    ErrorEvent,
    SSEEvent,
    StatusResponse,
    TaskResponse,
    format_sse,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config and report the resolved auth mode on startup."""
    config = load_config()
    try:
        auth = resolve()
        auth_line = f"auth={auth.mode} ({auth.model})"
    except AuthUnavailable:
        auth_line = "auth=unconfigured"
    logger.info(
        f"Agent server started (origins={config.allowed_origins}, "
        f"secret={'enabled' if config.api_secret else 'disabled'}, "
        f"engine={config.engine}, {auth_line})"
    )
    yield
    logger.info("Agent server shutting down")


# Load config early so we can read allowed_origins for CORS middleware.
_boot_config = load_config()

app = FastAPI(title="Agent Server", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------


async def verify_secret(request: Request) -> None:
    """Validate the ``Authorization: Bearer <secret>`` header.
    If no secret is configured, auth is disabled (dev mode).
    """
    config = get_config()
    if not config.api_secret:
        return

    if request.headers.get("Authorization") != f"Bearer {config.api_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _overrides(body: ChatRequest) -> AuthOverrides:
    return AuthOverrides(
        preferred_provider=body.ai_provider,
        preferred_model=body.ai_model,
        anthropic_api_key=body.anthropic_api_key,
        google_api_key=body.google_api_key,
    )


def _connectors(body: ChatRequest) -> list[str]:
    supported = set(get_config().supported_connectors)
    return [c for c in body.connectors if c in supported]


# ---------------------------------------------------------------------------
# Turn endpoints
# ---------------------------------------------------------------------------


@app.post("/api/chat", dependencies=[Depends(verify_secret)])
async def chat(body: ChatRequest):
    """Run one turn and stream its events as Server-Sent Events (SSE)."""
    config = get_config()
    queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()

    async def produce() -> None:
        try:
            overrides = _overrides(body)
            auth = resolve(overrides)
            await run_turn(
                body,
                auth,
                _connectors(body),
                queue.put,
                fallback=resolve_fallback(auth, overrides),
                config=config,
            )
        except AuthUnavailable as e:
            logger.warning(f"Chat rejected for user {body.user_id}: {e}")
            await queue.put(ErrorEvent(error=str(e)))
        except EngineFailure:
            pass  # the error event is already queued
        except Exception as e:
            logger.error(f"Chat setup failed for user {body.user_id}: {e}", exc_info=True)
            await queue.put(ErrorEvent(error=str(e) or "Agent error"))
        finally:
            await queue.put(None)

    async def stream():
        task = asyncio.create_task(produce())
        try:
            while (event := await queue.get()) is not None:
                yield format_sse(event)
        finally:
            if not task.done():
                logger.info(f"Client disconnected, cancelling turn for user {body.user_id}")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/api/task", dependencies=[Depends(verify_secret)])
async def task(body: ChatRequest):
    """Run one turn without streaming (scheduled / proactive runs)."""
    config = get_config()
    events: list[SSEEvent] = []
    try:
        overrides = _overrides(body)
        auth = resolve(overrides)
        result = await run_turn(
            body,
            auth,
            _connectors(body),
            events.append,
            fallback=resolve_fallback(auth, overrides),
            config=config,
        )
    except (AuthUnavailable, EngineFailure) as e:
        return JSONResponse(
            status_code=500,
            content=TaskResponse(success=False, error=str(e) or "Agent error").to_wire(),
        )

    logger.info(f"Task finished for user {body.user_id} ({len(events)} events)")
    return TaskResponse(success=True, response=result.response, session_id=result.session_id).to_wire()


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"ok": True, "timestamp": int(time.time() * 1000)}


@app.get("/api/status", dependencies=[Depends(verify_secret)])
async def status():
    """Which credential and model a request without overrides would use."""
    try:
        info = get_status_info(resolve())
    except AuthUnavailable as e:
        return JSONResponse(
            status_code=503,
            content={"mode": "unconfigured", "model": None, "description": str(e)},
        )
    return StatusResponse(**info).model_dump(by_alias=True)
