"""Groq adapter (OpenAI-compatible chat completions)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, Field

from conduit.errors import ErrorKind, MalformedResponse, StreamInterrupted
from conduit.providers._errors import (
    classify_status,
    error_object,
    retry_after_from_headers,
)
from conduit.providers._utils import (
    build_response,
    degrade_finish_reason,
    new_call_id,
    parse_wire,
)
from conduit.providers.base import ProviderCapabilities
from conduit.schema import ToolCall, Usage
from conduit.streaming import StreamChunk, ToolCallDelta
from conduit.transport import WireRequest

if TYPE_CHECKING:
    from collections.abc import Mapping

    from conduit.credentials import ProviderCredential
    from conduit.schema import ChatMessage, ChatRequest, ChatResponse, FinishReason
    from conduit.transport import WireResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: Final[str] = "https://api.groq.com/openai/v1"

_FINISH_REASONS: Final[dict[str, FinishReason]] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
    "content_filter": "content_filter",
}


# --- Wire models (validated at the boundary) ---


class _Usage(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def to_usage(self) -> Usage:
        return Usage(self.prompt_tokens, self.completion_tokens, self.total_tokens)


class _Function(BaseModel):
    name: str
    arguments: str | None = None


class _ToolCall(BaseModel):
    id: str | None = None
    function: _Function


class _Message(BaseModel):
    content: str | None = None
    tool_calls: list[_ToolCall] | None = None


class _Choice(BaseModel):
    message: _Message
    finish_reason: str


class _Completion(BaseModel):
    id: str | None = None
    model: str | None = None
    choices: list[_Choice] = Field(min_length=1)
    usage: _Usage | None = None


class _DeltaFunction(BaseModel):
    name: str | None = None
    arguments: str | None = None


class _DeltaToolCall(BaseModel):
    index: int = 0
    id: str | None = None
    function: _DeltaFunction | None = None


class _Delta(BaseModel):
    content: str | None = None
    tool_calls: list[_DeltaToolCall] | None = None


class _StreamChoice(BaseModel):
    delta: _Delta = Field(default_factory=_Delta)
    finish_reason: str | None = None


class _XGroq(BaseModel):
    usage: _Usage | None = None


class _Chunk(BaseModel):
    id: str | None = None
    model: str | None = None
    choices: list[_StreamChoice] = Field(default_factory=list)
    usage: _Usage | None = None
    x_groq: _XGroq | None = None


class GroqAdapter:
    """Groq chat completions adapter.

    Authentication is a bearer token. ``top_k`` has no Groq equivalent and is
    dropped from rendered requests.
    """

    name = "groq"

    def __init__(
        self, credential: ProviderCredential, *, base_url: str | None = None
    ) -> None:
        """Bind the adapter to a credential and endpoint."""
        self._credential = credential.for_provider(self.name)
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(top_k=False)

    def redact(self, text: str) -> str:
        return self._credential.redact(text)

    def render_request(
        self, request: ChatRequest, *, model: str, stream: bool = False
    ) -> WireRequest:
        """Render an OpenAI-style ``/chat/completions`` payload."""
        body: dict[str, Any] = {
            "model": model,
            "messages": [_render_message(m) for m in request.messages],
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in request.tools
            ]
        if request.tool_choice is not None:
            if request.tool_choice in ("auto", "none", "required"):
                body["tool_choice"] = request.tool_choice
            else:
                body["tool_choice"] = {
                    "type": "function",
                    "function": {"name": request.tool_choice},
                }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_completion_tokens"] = request.max_tokens
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.stop is not None:
            body["stop"] = list(request.stop)
        if request.seed is not None:
            body["seed"] = request.seed
        if request.top_k is not None:
            logger.debug("groq does not support top_k; dropping top_k=%s", request.top_k)
        if stream:
            body["stream"] = True

        return WireRequest(
            method="POST",
            url=f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self._credential.reveal()}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream" if stream else "application/json",
            },
            json=body,
        )

    def parse_response(self, response: WireResponse) -> ChatResponse:
        """Parse a non-streaming completion."""
        wire = parse_wire(_Completion, response.json(provider=self.name), provider=self.name)
        choice = wire.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id or new_call_id(),
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in choice.message.tool_calls or []
        ]
        return build_response(
            provider=self.name,
            text=choice.message.content or "",
            tool_calls=tool_calls,
            finish_reason=degrade_finish_reason(
                choice.finish_reason, _FINISH_REASONS, provider=self.name
            ),
            raw_finish_reason=choice.finish_reason,
            usage=wire.usage.to_usage() if wire.usage else None,
            model=wire.model,
            response_id=wire.id,
        )

    def parse_stream_chunk(self, data: str) -> StreamChunk | None:
        """Parse one SSE ``data`` payload; ``[DONE]`` terminates the stream."""
        if data.strip() == "[DONE]":
            return StreamChunk(done=True)
        try:
            payload = json.loads(data)
        except ValueError as e:
            raise MalformedResponse(
                "groq stream event is not valid JSON", provider=self.name
            ) from e
        error = error_object(payload)
        if error:
            raise StreamInterrupted(
                self.redact(f"groq stream failed: {error.get('message', 'unknown error')}")
            )

        wire = parse_wire(_Chunk, payload, provider=self.name)
        usage_wire = wire.x_groq.usage if wire.x_groq and wire.x_groq.usage else wire.usage
        usage = usage_wire.to_usage() if usage_wire else None
        if not wire.choices:
            if usage is None:
                return None
            return StreamChunk(usage=usage, response_id=wire.id, model=wire.model)

        choice = wire.choices[0]
        deltas = tuple(
            ToolCallDelta(
                index=tc.index,
                call_id=tc.id,
                name=tc.function.name if tc.function else None,
                arguments=(tc.function.arguments or "") if tc.function else "",
            )
            for tc in choice.delta.tool_calls or []
        )
        finish_reason = (
            degrade_finish_reason(choice.finish_reason, _FINISH_REASONS, provider=self.name)
            if choice.finish_reason is not None
            else None
        )
        return StreamChunk(
            text=choice.delta.content or "",
            tool_calls=deltas,
            finish_reason=finish_reason,
            raw_finish_reason=choice.finish_reason,
            usage=usage,
            response_id=wire.id,
            model=wire.model,
        )

    def classify_error(
        self, status_code: int, body: Any, headers: Mapping[str, str]
    ) -> ErrorKind:
        """Map Groq errors; ``insufficient_quota`` is a billing problem, not a rate limit."""
        error = error_object(body)
        markers = {str(error.get("code") or ""), str(error.get("type") or "")}
        if "insufficient_quota" in markers:
            return ErrorKind.PERMANENT
        # 498: flex tier capacity exceeded.
        if status_code in (429, 498) or "rate_limit_exceeded" in markers:
            return ErrorKind.RATE_LIMITED
        return classify_status(status_code)

    def retry_after_s(self, body: Any, headers: Mapping[str, str]) -> float | None:
        return retry_after_from_headers(headers)

    def __repr__(self) -> str:
        return f"GroqAdapter(base_url={self.base_url!r})"


def _render_message(msg: ChatMessage) -> dict[str, Any]:
    wire: dict[str, Any] = {"role": msg.role}
    if msg.role == "assistant" and msg.tool_calls:
        wire["content"] = msg.content or None
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in msg.tool_calls
        ]
    else:
        wire["content"] = msg.content
    if msg.role == "tool":
        wire["tool_call_id"] = msg.tool_call_id
    return wire
