import itertools
import os

import pytest

from agent_server.auth import (
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_GEMINI_MODEL,
    AuthConfig,
    AuthOverrides,
    get_agent_env,
    get_status_info,
    has_subscription_session,
    normalize_model,
    resolve,
    resolve_fallback,
)
from agent_server.errors import AuthUnavailable


@pytest.fixture
def profile(tmp_path):
    path = tmp_path / "profile"
    path.mkdir()
    return path


def logged_in(profile):
    (profile / ".credentials.json").write_text('{"token": "x"}')
    return profile


class TestNormalizeModel:
    def test_keeps_in_family_ids(self):
        assert normalize_model("claude-opus-4-1", "anthropic") == "claude-opus-4-1"
        assert normalize_model("gemini-2.5-pro", "google") == "gemini-2.5-pro"

    def test_strips_vendor_prefix_when_remainder_in_family(self):
        assert normalize_model("anthropic/claude-haiku-4-5", "anthropic") == "claude-haiku-4-5"
        assert normalize_model("google/gemini-2.5-flash", "google") == "gemini-2.5-flash"

    def test_out_of_family_falls_back_to_default(self):
        assert normalize_model("openai/gpt-4o", "anthropic") == DEFAULT_CLAUDE_MODEL
        assert normalize_model("claude-sonnet-4-5", "google") == DEFAULT_GEMINI_MODEL
        assert normalize_model(None, "anthropic") == DEFAULT_CLAUDE_MODEL
        assert normalize_model("", "google") == DEFAULT_GEMINI_MODEL


class TestSubscriptionProbe:
    def test_missing_directory_is_absent(self, tmp_path):
        assert has_subscription_session(tmp_path / "nope") is False

    def test_empty_credential_file_is_absent(self, profile):
        (profile / ".credentials.json").write_text("")
        assert has_subscription_session(profile) is False

    def test_credential_file_is_present(self, profile):
        assert has_subscription_session(logged_in(profile)) is True

    def test_session_artifacts_are_present(self, profile):
        (profile / "sessions").mkdir()
        (profile / "sessions" / "abc.json").write_text("{}")
        assert has_subscription_session(profile) is True


class TestResolve:
    def test_api_key_from_env(self, profile):
        auth = resolve(environ={"ANTHROPIC_API_KEY": "sk-env", "CLAUDE_CONFIG_DIR": str(profile)})
        assert auth.mode == "api-key"
        assert auth.anthropic_api_key == "sk-env"
        assert auth.model == DEFAULT_CLAUDE_MODEL

    def test_request_key_beats_env_key(self, profile):
        auth = resolve(
            AuthOverrides(anthropic_api_key="sk-request"),
            {"ANTHROPIC_API_KEY": "sk-env", "CLAUDE_CONFIG_DIR": str(profile)},
        )
        assert auth.anthropic_api_key == "sk-request"

    def test_api_key_beats_subscription(self, profile):
        env = {"ANTHROPIC_API_KEY": "sk", "CLAUDE_CONFIG_DIR": str(logged_in(profile))}
        assert resolve(environ=env).mode == "api-key"

    def test_subscription_beats_google(self, profile):
        env = {"GOOGLE_AI_KEY": "g", "CLAUDE_CONFIG_DIR": str(logged_in(profile))}
        auth = resolve(environ=env)
        assert auth.mode == "subscription"
        assert auth.anthropic_api_key is None

    def test_google_is_last_resort(self, profile):
        auth = resolve(environ={"GEMINI_API_KEY": "g", "CLAUDE_CONFIG_DIR": str(profile)})
        assert auth.mode == "gemini"
        assert auth.google_api_key == "g"
        assert auth.model == DEFAULT_GEMINI_MODEL

    def test_google_provider_requires_google_key(self, profile):
        env = {"ANTHROPIC_API_KEY": "sk", "CLAUDE_CONFIG_DIR": str(profile)}
        with pytest.raises(AuthUnavailable, match="Google provider selected"):
            resolve(AuthOverrides(preferred_provider="google"), env)

    def test_google_provider_wins_over_anthropic_key(self, profile):
        env = {"ANTHROPIC_API_KEY": "sk", "GOOGLE_API_KEY": "g", "CLAUDE_CONFIG_DIR": str(profile)}
        auth = resolve(AuthOverrides(preferred_provider="google", preferred_model="gemini-2.5-pro"), env)
        assert auth.mode == "gemini"
        assert auth.model == "gemini-2.5-pro"

    def test_anthropic_provider_can_still_fall_to_google(self, profile):
        env = {"GOOGLE_AI_KEY": "g", "CLAUDE_CONFIG_DIR": str(profile)}
        auth = resolve(AuthOverrides(preferred_provider="anthropic"), env)
        assert auth.mode == "gemini"

    def test_model_from_env_is_normalized(self, profile):
        env = {"ANTHROPIC_API_KEY": "sk", "ANTHROPIC_MODEL": "gpt-4o", "CLAUDE_CONFIG_DIR": str(profile)}
        assert resolve(environ=env).model == DEFAULT_CLAUDE_MODEL

    def test_nothing_configured(self, profile):
        with pytest.raises(AuthUnavailable, match="No AI auth configured"):
            resolve(environ={"CLAUDE_CONFIG_DIR": str(profile)})

    def test_resolve_does_not_touch_process_env(self, profile):
        before = dict(os.environ)
        resolve(AuthOverrides(anthropic_api_key="sk-request"), {"CLAUDE_CONFIG_DIR": str(profile)})
        assert dict(os.environ) == before


def expected_mode(api_key, subscription, google_key, provider):
    if provider == "google":
        return "gemini" if google_key else None
    if api_key:
        return "api-key"
    if subscription:
        return "subscription"
    return "gemini" if google_key else None


@pytest.mark.parametrize(
    "api_key, subscription, google_key, provider",
    list(itertools.product([True, False], [True, False], [True, False], [None, "anthropic", "google"])),
)
def test_resolve_matrix(profile, api_key, subscription, google_key, provider):
    env = {"CLAUDE_CONFIG_DIR": str(logged_in(profile) if subscription else profile)}
    if api_key:
        env["ANTHROPIC_API_KEY"] = "sk"
    if google_key:
        env["GOOGLE_AI_KEY"] = "g"
    overrides = AuthOverrides(preferred_provider=provider)

    mode = expected_mode(api_key, subscription, google_key, provider)
    if mode is None:
        with pytest.raises(AuthUnavailable):
            resolve(overrides, env)
        return

    auth = resolve(overrides, env)
    assert auth.mode == mode
    assert auth.anthropic_api_key == ("sk" if mode == "api-key" else None)
    assert auth.google_api_key == ("g" if mode == "gemini" else None)
    assert auth.model == (DEFAULT_GEMINI_MODEL if mode == "gemini" else DEFAULT_CLAUDE_MODEL)


class TestFallbackAndEnv:
    def test_fallback_needs_google_key(self):
        auth = AuthConfig(mode="api-key", model=DEFAULT_CLAUDE_MODEL, anthropic_api_key="sk")
        assert resolve_fallback(auth, environ={}) is None
        fallback = resolve_fallback(auth, environ={"GOOGLE_AI_KEY": "g"})
        assert fallback.mode == "gemini"
        assert fallback.google_api_key == "g"

    def test_gemini_has_no_fallback(self):
        auth = AuthConfig(mode="gemini", model=DEFAULT_GEMINI_MODEL, google_api_key="g")
        assert resolve_fallback(auth, environ={"GOOGLE_AI_KEY": "g"}) is None

    def test_agent_env_per_mode(self):
        assert get_agent_env(AuthConfig(mode="api-key", model="m", anthropic_api_key="sk")) == {
            "ANTHROPIC_API_KEY": "sk"
        }
        gemini_env = get_agent_env(AuthConfig(mode="gemini", model="m", google_api_key="g"))
        assert gemini_env["GOOGLE_AI_KEY"] == "g"
        assert gemini_env["GEMINI_API_KEY"] == "g"
        assert get_agent_env(AuthConfig(mode="subscription", model="m")) == {}

    def test_repr_hides_keys(self):
        auth = AuthConfig(mode="api-key", model="m", anthropic_api_key="sk-secret")
        assert "sk-secret" not in repr(auth)

    def test_status_info(self, profile):
        auth = AuthConfig(mode="api-key", model=DEFAULT_CLAUDE_MODEL, anthropic_api_key="sk")
        info = get_status_info(auth, {"GOOGLE_AI_KEY": "g", "CLAUDE_CONFIG_DIR": str(profile)})
        assert info == {
            "mode": "api-key",
            "model": DEFAULT_CLAUDE_MODEL,
            "description": "Using Anthropic API key",
            "fallback_available": True,
        }
