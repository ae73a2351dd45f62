"""Conduit: one request model for chat and tool-calling LLM providers.

Public API:
    - chat(): Send a ChatRequest and get a ChatResponse
    - chat_stream(): Stream chunks, then the assembled ChatResponse
    - stream_chunks(): Stream raw StreamChunk values
    - ask(): Single-turn text convenience
    - create_adapter(): Build a provider adapter by name
    - Config: Configuration dataclass
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from conduit.config import Config
from conduit.errors import (
    AdapterError,
    APIError,
    ConduitError,
    ConfigurationError,
    ConnectionFailed,
    ErrorKind,
    HTTPStatusError,
    MalformedResponse,
    RateLimitError,
    RetriesExhausted,
    StreamInterrupted,
    Timeout,
    TransportError,
    UnsupportedFinishReason,
    ValidationError,
)
from conduit.execute import (
    close_transport,
    execute_chat,
    execute_stream,
    execute_stream_events,
    resolve_adapter,
)
from conduit.providers import GeminiAdapter, GroqAdapter, create_adapter
from conduit.retry import RetryPolicy
from conduit.schema import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ToolCall,
    ToolSpec,
    Usage,
    validate,
)
from conduit.streaming import StreamAssembler, StreamChunk, ToolCallDelta, assemble
from conduit.transport import HttpTransport

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conduit.providers.base import ProviderAdapter
    from conduit.schema import Role

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("conduit-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("conduit").addHandler(logging.NullHandler())


async def chat(
    request: ChatRequest,
    provider: str | ProviderAdapter,
    config: Config,
    *,
    transport: HttpTransport | None = None,
) -> ChatResponse:
    """Send one request and return the normalized response.

    Args:
        request: Messages, tools, and generation parameters.
        provider: Selector name (``"groq"``, ``"gemini"``) or an adapter.
        config: Model, timeout, and retry policy.
        transport: Optional shared transport; otherwise one is created and
            closed for this call.

    Raises:
        ValidationError: The request was rejected before dispatch.
        APIError: A permanent provider failure (first attempt).
        RetriesExhausted: Retryable failures used up the attempt cap.

    Example:
        config = Config(model="llama-3.3-70b-versatile")
        request = ChatRequest(messages=[ChatMessage.user("Hello")])
        response = await chat(request, "groq", config)
        print(response.text)
    """
    adapter = resolve_adapter(provider, config)
    owned = transport is None
    active = transport if transport is not None else HttpTransport()
    try:
        return await execute_chat(request, adapter, config, active)
    finally:
        if owned:
            await close_transport(active)


async def stream_chunks(
    request: ChatRequest,
    provider: str | ProviderAdapter,
    config: Config,
    *,
    transport: HttpTransport | None = None,
) -> AsyncIterator[StreamChunk]:
    """Stream normalized chunks for *request*.

    Feed the chunks to ``assemble`` (or a StreamAssembler) to obtain the
    final response.
    """
    adapter = resolve_adapter(provider, config)
    owned = transport is None
    active = transport if transport is not None else HttpTransport()
    chunks = execute_stream(request, adapter, config, active)
    try:
        async for chunk in chunks:
            yield chunk
    finally:
        await chunks.aclose()
        if owned:
            await close_transport(active)


async def chat_stream(
    request: ChatRequest,
    provider: str | ProviderAdapter,
    config: Config,
    *,
    transport: HttpTransport | None = None,
) -> AsyncIterator[StreamChunk | ChatResponse]:
    """Stream chunks, then yield the assembled ChatResponse as the last item.

    Example:
        async for item in chat_stream(request, "gemini", config):
            if isinstance(item, StreamChunk):
                print(item.text, end="")
            else:
                final = item
    """
    adapter = resolve_adapter(provider, config)
    owned = transport is None
    active = transport if transport is not None else HttpTransport()
    events = execute_stream_events(request, adapter, config, active)
    try:
        async for item in events:
            yield item
    finally:
        await events.aclose()
        if owned:
            await close_transport(active)


async def ask(
    prompt: str,
    provider: str | ProviderAdapter,
    config: Config,
    *,
    role: Role = "user",
    transport: HttpTransport | None = None,
) -> str:
    """Send a single message and return the response text."""
    response = await chat(
        ChatRequest(messages=[ChatMessage(role, prompt)]), provider, config, transport=transport
    )
    return response.text


__all__ = [
    # Entry points
    "chat",
    "chat_stream",
    "stream_chunks",
    "ask",
    "assemble",
    "create_adapter",
    "validate",
    # Core types
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Config",
    "RetryPolicy",
    "StreamAssembler",
    "StreamChunk",
    "ToolCall",
    "ToolCallDelta",
    "ToolSpec",
    "Usage",
    "GroqAdapter",
    "GeminiAdapter",
    "HttpTransport",
    # Errors
    "ConduitError",
    "AdapterError",
    "APIError",
    "ConfigurationError",
    "ConnectionFailed",
    "ErrorKind",
    "HTTPStatusError",
    "MalformedResponse",
    "RateLimitError",
    "RetriesExhausted",
    "StreamInterrupted",
    "Timeout",
    "TransportError",
    "UnsupportedFinishReason",
    "ValidationError",
]
