"""HTTP transport: one network round trip per call, with a hard timeout.

The transport classifies failures (connection, timeout, HTTP status) but never
looks inside payloads; turning bytes into meaning is the adapter's job.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any, Final

import httpx

from conduit.errors import ConnectionFailed, HTTPStatusError, MalformedResponse, Timeout

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Mapping
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S: Final[float] = 60.0

# Error bodies are kept for classification; cap what a message may quote.
_BODY_PREVIEW_CHARS: Final[int] = 300


@dataclass(frozen=True)
class WireRequest:
    """A fully rendered provider request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    json: dict[str, Any] | None = None
    params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WireResponse:
    """A successful (2xx) provider response, body still undecoded."""

    status_code: int
    headers: Mapping[str, str]
    content: bytes

    def json(self, *, provider: str | None = None) -> Any:
        """Decode the body as JSON, mapping decode failures to MalformedResponse."""
        try:
            return json.loads(self.content)
        except ValueError as e:
            raise MalformedResponse(
                "Response body is not valid JSON", provider=provider
            ) from e


class ChunkStream:
    """An open streaming response yielding text lines.

    Lazy, finite, and not restartable. Always close it (``async with`` or
    ``aclose``) so the connection is released, including on cancellation.
    """

    def __init__(self, response: httpx.Response, *, timeout_s: float) -> None:
        self._response = response
        self._timeout_s = timeout_s
        self._consumed = False

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded lines; each read is bounded by the stream timeout."""
        if self._consumed:
            raise RuntimeError("ChunkStream can only be iterated once")
        self._consumed = True
        iterator = aiter(self._response.aiter_lines())
        while True:
            try:
                async with asyncio.timeout(self._timeout_s):
                    line = await anext(iterator)
            except StopAsyncIteration:
                return
            except TimeoutError as e:
                raise Timeout(
                    f"No stream data within {self._timeout_s}s",
                    timeout_s=self._timeout_s,
                ) from e
            except httpx.TimeoutException as e:
                raise Timeout(
                    f"Stream read timed out after {self._timeout_s}s",
                    timeout_s=self._timeout_s,
                ) from e
            except httpx.TransportError as e:
                raise ConnectionFailed(f"Stream connection failed: {e}") from e
            yield line

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class HttpTransport:
    """Async HTTP client wrapper used by every adapter.

    Safe for concurrent use: it holds no per-request state beyond the pooled
    ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        mount: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Wrap *client*, or create (and own) a client over *mount*.

        A caller-supplied client is shared and left open by ``aclose``.
        """
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(transport=mount)

    async def send(
        self, request: WireRequest, timeout_s: float = DEFAULT_TIMEOUT_S
    ) -> WireResponse:
        """Perform one request and return its 2xx response.

        Raises:
            Timeout: The whole exchange took longer than *timeout_s*.
            ConnectionFailed: The connection failed before a response arrived.
            HTTPStatusError: The provider answered with a non-2xx status.
        """
        try:
            async with asyncio.timeout(timeout_s):
                response = await self._client.request(
                    request.method,
                    request.url,
                    headers=dict(request.headers),
                    json=request.json,
                    params=dict(request.params) or None,
                    timeout=httpx.Timeout(timeout_s),
                )
        except TimeoutError as e:
            raise Timeout(
                f"Request timed out after {timeout_s}s", timeout_s=timeout_s
            ) from e
        except httpx.TimeoutException as e:
            raise Timeout(
                f"Request timed out after {timeout_s}s", timeout_s=timeout_s
            ) from e
        except httpx.TransportError as e:
            raise ConnectionFailed(f"Connection failed: {type(e).__name__}") from e

        if not response.is_success:
            raise _status_error(response.status_code, response.headers, response.content)
        return WireResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def open_stream(
        self, request: WireRequest, timeout_s: float = DEFAULT_TIMEOUT_S
    ) -> ChunkStream:
        """Open a streaming request and return its line source.

        The status line is checked before returning, so HTTP errors surface
        here (and can be retried) rather than mid-stream.
        """
        http_request = self._client.build_request(
            request.method,
            request.url,
            headers=dict(request.headers),
            json=request.json,
            params=dict(request.params) or None,
            timeout=httpx.Timeout(timeout_s),
        )
        try:
            async with asyncio.timeout(timeout_s):
                response = await self._client.send(http_request, stream=True)
        except TimeoutError as e:
            raise Timeout(
                f"Stream open timed out after {timeout_s}s", timeout_s=timeout_s
            ) from e
        except httpx.TimeoutException as e:
            raise Timeout(
                f"Stream open timed out after {timeout_s}s", timeout_s=timeout_s
            ) from e
        except httpx.TransportError as e:
            raise ConnectionFailed(f"Connection failed: {type(e).__name__}") from e

        if not response.is_success:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            raise _status_error(response.status_code, response.headers, body)
        return ChunkStream(response, timeout_s=timeout_s)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def _status_error(
    status_code: int, headers: Mapping[str, str], body: bytes
) -> HTTPStatusError:
    preview = body[:_BODY_PREVIEW_CHARS].decode("utf-8", errors="replace")
    return HTTPStatusError(
        f"HTTP {status_code}: {preview}" if preview else f"HTTP {status_code}",
        status_code=status_code,
        headers=headers,
        body=body,
    )


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Frame server-sent events and yield each event's ``data`` payload.

    Multi-line ``data:`` fields are joined with newlines; comments and other
    fields (``event:``, ``id:``) are ignored. A trailing event without a blank
    line is still dispatched.
    """
    buffer: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name != "data":
            continue
        buffer.append(value[1:] if value.startswith(" ") else value)
    if buffer:
        yield "\n".join(buffer)
