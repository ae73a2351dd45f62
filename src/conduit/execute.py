"""Dispatch: validate, render, send under retry, then parse or assemble."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING

from conduit.errors import ConnectionFailed, HTTPStatusError, StreamInterrupted
from conduit.providers import create_adapter
from conduit.providers._errors import to_api_error
from conduit.providers._utils import strip_reasoning_markup
from conduit.retry import RetryController
from conduit.schema import validate
from conduit.streaming import StreamAssembler, StreamChunk
from conduit.transport import iter_sse_data

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from conduit.config import Config
    from conduit.providers.base import ProviderAdapter
    from conduit.schema import ChatRequest, ChatResponse
    from conduit.transport import ChunkStream, HttpTransport, WireResponse

logger = logging.getLogger(__name__)


def resolve_adapter(provider: str | ProviderAdapter, config: Config) -> ProviderAdapter:
    """Return *provider* itself, or build the adapter a selector name refers to."""
    if isinstance(provider, str):
        return create_adapter(provider, api_key=config.api_key, base_url=config.base_url)
    return provider


def finalize(response: ChatResponse, config: Config) -> ChatResponse:
    """Apply post-processing requested by *config*."""
    if not config.clean_content or not response.message.content:
        return response
    message = dataclasses.replace(
        response.message, content=strip_reasoning_markup(response.message.content)
    )
    return dataclasses.replace(response, message=message)


async def execute_chat(
    request: ChatRequest,
    adapter: ProviderAdapter,
    config: Config,
    transport: HttpTransport,
) -> ChatResponse:
    """Run one non-streaming request to completion.

    Validation and parse failures are never retried; transport and classified
    provider failures go through the retry controller.
    """
    validate(request)
    wire = adapter.render_request(request, model=config.model)
    logger.debug(
        "Dispatching %s request (model=%s, messages=%d, tools=%d)",
        adapter.name,
        config.model,
        len(request.messages),
        len(request.tools),
    )

    async def attempt() -> WireResponse:
        try:
            return await transport.send(wire, config.timeout_s)
        except HTTPStatusError as e:
            raise to_api_error(adapter, e) from None

    controller = RetryController(config.retry)
    response = await controller.run(attempt)
    if controller.attempts > 1:
        logger.debug("%s request succeeded after %d attempts", adapter.name, controller.attempts)
    return finalize(adapter.parse_response(response), config)


async def execute_stream(
    request: ChatRequest,
    adapter: ProviderAdapter,
    config: Config,
    transport: HttpTransport,
) -> AsyncGenerator[StreamChunk, None]:
    """Yield normalized chunks for one streaming request.

    Only opening the stream is retried. Once data flows, failures surface to
    the caller, and a dropped connection is reported as ``StreamInterrupted``.
    The response is released on exit, including cancellation.
    """
    validate(request)
    wire = adapter.render_request(request, model=config.model, stream=True)
    logger.debug(
        "Opening %s stream (model=%s, messages=%d)",
        adapter.name,
        config.model,
        len(request.messages),
    )

    async def attempt() -> ChunkStream:
        try:
            return await transport.open_stream(wire, config.timeout_s)
        except HTTPStatusError as e:
            raise to_api_error(adapter, e) from None

    stream = await RetryController(config.retry).run(attempt)
    async with stream:
        lines = iter_sse_data(stream.lines())
        while True:
            try:
                data = await anext(lines)
            except StopAsyncIteration:
                return
            except ConnectionFailed as e:
                raise StreamInterrupted(
                    f"{adapter.name} stream dropped before its terminal marker",
                    hint="The connection closed mid-stream; retry the request.",
                ) from e
            chunk = adapter.parse_stream_chunk(data)
            if chunk is None:
                continue
            yield chunk
            if chunk.done:
                return


async def execute_stream_events(
    request: ChatRequest,
    adapter: ProviderAdapter,
    config: Config,
    transport: HttpTransport,
) -> AsyncGenerator[StreamChunk | ChatResponse, None]:
    """Yield every chunk, then the assembled ChatResponse as the last item."""
    assembler = StreamAssembler(provider=adapter.name)
    chunks = execute_stream(request, adapter, config, transport)
    try:
        async for chunk in chunks:
            assembler.feed(chunk)
            yield chunk
    finally:
        await chunks.aclose()
    yield finalize(assembler.finish(), config)


async def close_transport(transport: HttpTransport) -> None:
    """Close an owned transport without masking the primary failure."""
    try:
        await transport.aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Transport cleanup failed: %s", exc)
