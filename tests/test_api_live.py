"""Live provider smoke tests.

Skipped unless ENABLE_API_TESTS=1 and the provider key is set. They make one
small request per provider.
"""

from __future__ import annotations

import pytest

import conduit
from conduit import ChatMessage, ChatRequest, Config, create_adapter

pytestmark = pytest.mark.api

_GROQ_TEST_MODEL = "llama-3.1-8b-instant"
_GEMINI_TEST_MODEL = "gemini-2.0-flash-lite"


def test_groq_adapter_resolves_api_key(groq_api_key: str) -> None:
    adapter = create_adapter("groq")
    assert groq_api_key not in repr(adapter)


@pytest.mark.asyncio
async def test_groq_round_trip(groq_api_key: str) -> None:
    config = Config(model=_GROQ_TEST_MODEL, api_key=groq_api_key)
    request = ChatRequest(
        messages=[ChatMessage.user("Reply with the single word: pong")], max_tokens=8
    )
    response = await conduit.chat(request, "groq", config)
    assert response.text
    assert response.finish_reason in ("stop", "length")


@pytest.mark.asyncio
async def test_gemini_stream_round_trip(gemini_api_key: str) -> None:
    config = Config(model=_GEMINI_TEST_MODEL, api_key=gemini_api_key)
    request = ChatRequest(
        messages=[ChatMessage.user("Count from 1 to 3.")], max_tokens=32
    )
    items = [item async for item in conduit.chat_stream(request, "gemini", config)]
    final = items[-1]
    assert isinstance(final, conduit.ChatResponse)
    assert final.text
