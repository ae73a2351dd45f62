"""Provider adapter protocol: translation between Conduit types and one wire format."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from conduit.errors import ErrorKind
    from conduit.schema import ChatRequest, ChatResponse
    from conduit.streaming import StreamChunk
    from conduit.transport import WireRequest, WireResponse


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by adapters."""

    streaming: bool = True
    tools: bool = True
    system_role: bool = True
    top_k: bool = True
    seed: bool = True


@runtime_checkable
class ProviderAdapter(Protocol):
    """Minimal adapter protocol.

    Adapters are stateless apart from their immutable credential, never retry,
    and never perform I/O themselves.
    """

    @property
    def name(self) -> str:
        """Stable provider identifier, e.g. ``"groq"``."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for this adapter."""
        ...

    def render_request(
        self, request: ChatRequest, *, model: str, stream: bool = False
    ) -> WireRequest:
        """Render a validated request into this provider's wire format."""
        ...

    def parse_response(self, response: WireResponse) -> ChatResponse:
        """Map a complete provider response back into a ChatResponse."""
        ...

    def parse_stream_chunk(self, data: str) -> StreamChunk | None:
        """Map one streamed event payload; ``None`` for events with no content."""
        ...

    def classify_error(
        self, status_code: int, body: Any, headers: Mapping[str, str]
    ) -> ErrorKind:
        """Map a provider error response onto the shared ErrorKind taxonomy."""
        ...

    def retry_after_s(self, body: Any, headers: Mapping[str, str]) -> float | None:
        """Extract a provider retry hint in seconds, if any."""
        ...

    def redact(self, text: str) -> str:
        """Scrub the adapter's credential from *text*."""
        ...
