"""Auth resolution — picks the credential and model for one request.

Sources, first match wins:
1. explicit provider override ("google" requires a Google key; "anthropic"
   walks the Anthropic chain and may still fall back to Google)
2. explicit Anthropic API key (request override, else ANTHROPIC_API_KEY)
3. local Claude subscription artifacts under the profile directory
4. Google AI key (request override, else any of the alias variables)

Everything here is pure over ``environ`` plus a read-only filesystem probe;
nothing writes to the process environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from agent_server.errors import AuthUnavailable

logger = logging.getLogger(__name__)

AuthMode = Literal["subscription", "api-key", "gemini"]

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

ANTHROPIC_KEY_VAR = "ANTHROPIC_API_KEY"
GOOGLE_KEY_VARS = ("GOOGLE_AI_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY")
ANTHROPIC_MODEL_VARS = ("ANTHROPIC_MODEL",)
GOOGLE_MODEL_VARS = ("GOOGLE_MODEL", "GEMINI_MODEL")
PROFILE_DIR_VAR = "CLAUDE_CONFIG_DIR"

# Files under the profile directory that indicate a logged-in subscription.
CREDENTIAL_FILES = (".credentials.json", "credentials.json")
SESSION_ARTIFACT_DIR = "sessions"

_FAMILY_PREFIX = {"anthropic": "claude-", "google": "gemini-"}
_FAMILY_DEFAULT = {"anthropic": DEFAULT_CLAUDE_MODEL, "google": DEFAULT_GEMINI_MODEL}


@dataclass(frozen=True)
class AuthConfig:
    mode: AuthMode
    model: str
    anthropic_api_key: str | None = None
    google_api_key: str | None = None

    @property
    def provider(self) -> Literal["anthropic", "google"]:
        return "google" if self.mode == "gemini" else "anthropic"

    def __repr__(self) -> str:
        # Keys stay out of logs and tracebacks.
        return f"AuthConfig(mode={self.mode!r}, model={self.model!r})"


@dataclass(frozen=True)
class AuthOverrides:
    """Per-request overrides supplied by the caller."""

    preferred_provider: Literal["anthropic", "google"] | None = None
    preferred_model: str | None = None
    anthropic_api_key: str | None = None
    google_api_key: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _first_env(environ: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def normalize_model(candidate: str | None, provider: Literal["anthropic", "google"]) -> str:
    """Return ``candidate`` if it belongs to the provider's id family, else the default.

    A ``vendor/model`` id has the vendor prefix stripped only when what
    remains is in the family ("anthropic/claude-x" → "claude-x", but
    "openai/gpt-4o" → default).
    """
    prefix = _FAMILY_PREFIX[provider]
    if candidate:
        model = candidate.strip()
        if "/" in model:
            model = model.split("/", 1)[1]
        if model.startswith(prefix):
            return model
        logger.debug(f"Model '{candidate}' is not a {provider} model, using default")
    return _FAMILY_DEFAULT[provider]


def default_profile_dir(environ: Mapping[str, str]) -> Path:
    override = environ.get(PROFILE_DIR_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".claude"


def has_subscription_session(profile_dir: Path) -> bool:
    """True if any recognized, non-empty credential artifact exists.

    Filesystem errors count as "absent".
    """
    try:
        for name in CREDENTIAL_FILES:
            path = profile_dir / name
            if path.is_file() and path.stat().st_size > 0:
                return True
        sessions = profile_dir / SESSION_ARTIFACT_DIR
        if sessions.is_dir() and any(sessions.iterdir()):
            return True
    except OSError as e:
        logger.debug(f"Subscription probe failed under {profile_dir}: {e}")
    return False


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve(
    overrides: AuthOverrides | None = None,
    environ: Mapping[str, str] | None = None,
) -> AuthConfig:
    """Resolve one AuthConfig. Raises AuthUnavailable if nothing resolves."""
    overrides = overrides or AuthOverrides()
    env = os.environ if environ is None else environ

    anthropic_key = overrides.anthropic_api_key or env.get(ANTHROPIC_KEY_VAR) or None
    google_key = overrides.google_api_key or _first_env(env, GOOGLE_KEY_VARS)

    def gemini() -> AuthConfig:
        candidate = overrides.preferred_model or _first_env(env, GOOGLE_MODEL_VARS)
        return AuthConfig(
            mode="gemini",
            model=normalize_model(candidate, "google"),
            google_api_key=google_key,
        )

    if overrides.preferred_provider == "google":
        if google_key:
            return gemini()
        raise AuthUnavailable(
            "Google provider selected, but no Google AI key is configured. "
            "Set GOOGLE_AI_KEY or provide a key in Settings."
        )

    claude_model = normalize_model(
        overrides.preferred_model or _first_env(env, ANTHROPIC_MODEL_VARS), "anthropic"
    )

    if anthropic_key:
        return AuthConfig(mode="api-key", model=claude_model, anthropic_api_key=anthropic_key)

    if has_subscription_session(default_profile_dir(env)):
        return AuthConfig(mode="subscription", model=claude_model)

    if google_key:
        return gemini()

    raise AuthUnavailable(
        "No AI auth configured. Set ANTHROPIC_API_KEY, log in to Claude "
        "(run `claude` CLI), or set GOOGLE_AI_KEY."
    )


def resolve_fallback(
    config: AuthConfig,
    overrides: AuthOverrides | None = None,
    environ: Mapping[str, str] | None = None,
) -> AuthConfig | None:
    """Gemini config to retry with when an Anthropic-family turn fails, if any."""
    if config.mode == "gemini":
        return None
    overrides = overrides or AuthOverrides()
    env = os.environ if environ is None else environ
    google_key = overrides.google_api_key or _first_env(env, GOOGLE_KEY_VARS)
    if not google_key:
        return None
    return AuthConfig(
        mode="gemini",
        model=normalize_model(_first_env(env, GOOGLE_MODEL_VARS), "google"),
        google_api_key=google_key,
    )


def get_agent_env(config: AuthConfig) -> dict[str, str]:
    """Variables the engine invocation needs visible for this config."""
    if config.mode == "api-key" and config.anthropic_api_key:
        return {ANTHROPIC_KEY_VAR: config.anthropic_api_key}
    if config.mode == "gemini" and config.google_api_key:
        return {name: config.google_api_key for name in GOOGLE_KEY_VARS}
    # Subscription mode: the engine reads the local session itself.
    return {}


def get_status_info(config: AuthConfig, environ: Mapping[str, str] | None = None) -> dict:
    """Display-only status for the /api/status endpoint."""
    env = os.environ if environ is None else environ
    if config.mode == "gemini":
        fallback_available = bool(env.get(ANTHROPIC_KEY_VAR)) or has_subscription_session(
            default_profile_dir(env)
        )
    else:
        fallback_available = _first_env(env, GOOGLE_KEY_VARS) is not None

    descriptions = {
        "subscription": "Using Claude subscription (local session)",
        "api-key": "Using Anthropic API key",
        "gemini": f"Using Google Gemini ({config.model})",
    }
    return {
        "mode": config.mode,
        "model": config.model,
        "description": descriptions[config.mode],
        "fallback_available": fallback_available,
    }
