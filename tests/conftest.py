"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
and automatic API test skipping. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

from pydantic import SecretStr
import pytest

from conduit.config import Config
from conduit.credentials import ProviderCredential
from conduit.providers import GeminiAdapter, GroqAdapter
from conduit.retry import RetryPolicy

GROQ_MODEL = "llama-3.3-70b-versatile"
GEMINI_MODEL = "gemini-2.0-flash"
FAKE_KEY = "sk-test-9f8e7d6c5b4a"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears GROQ_*, GEMINI_* and GOOGLE_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("GROQ_", "GEMINI_", "GOOGLE_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def groq_credential() -> ProviderCredential:
    return ProviderCredential(provider="groq", secret=SecretStr(FAKE_KEY))


@pytest.fixture
def gemini_credential() -> ProviderCredential:
    return ProviderCredential(provider="gemini", secret=SecretStr(FAKE_KEY))


@pytest.fixture
def groq(groq_credential: ProviderCredential) -> GroqAdapter:
    return GroqAdapter(groq_credential)


@pytest.fixture
def gemini(gemini_credential: ProviderCredential) -> GeminiAdapter:
    return GeminiAdapter(gemini_credential)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts, no backoff sleep."""
    return RetryPolicy(max_attempts=3, initial_delay_s=0.0, jitter=False)


@pytest.fixture
def groq_config(fast_retry: RetryPolicy) -> Config:
    return Config(model=GROQ_MODEL, retry=fast_retry, timeout_s=5.0)


@pytest.fixture
def gemini_config(fast_retry: RetryPolicy) -> Config:
    return Config(model=GEMINI_MODEL, retry=fast_retry, timeout_s=5.0)


# =============================================================================
# API Test Configuration
# =============================================================================


@pytest.fixture
def groq_api_key():
    """Return GROQ_API_KEY or skip the test if unavailable."""
    key = os.getenv("GROQ_API_KEY")
    if not key:
        pytest.skip("GROQ_API_KEY not set")
    return key


@pytest.fixture
def gemini_api_key():
    """Return GEMINI_API_KEY or skip the test if unavailable."""
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        pytest.skip("GEMINI_API_KEY not set")
    return key
