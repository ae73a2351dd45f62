"""Gemini adapter (Generative Language REST API)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from conduit.errors import ErrorKind, MalformedResponse, StreamInterrupted, ValidationError
from conduit.providers._errors import (
    classify_status,
    error_object,
    retry_after_from_headers,
    retry_after_from_retry_info,
)
from conduit.providers._utils import (
    build_response,
    compact_json,
    degrade_finish_reason,
    new_call_id,
    parse_wire,
)
from conduit.providers.base import ProviderCapabilities
from conduit.schema import ToolCall, Usage
from conduit.streaming import StreamChunk, ToolCallDelta
from conduit.transport import WireRequest

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from conduit.credentials import ProviderCredential
    from conduit.schema import ChatMessage, ChatRequest, ChatResponse, FinishReason
    from conduit.transport import WireResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: Final[str] = "https://generativelanguage.googleapis.com/v1beta"

#: Model families served without developer (system) instruction support.
NO_SYSTEM_INSTRUCTION_PREFIXES: Final[tuple[str, ...]] = ("gemma-",)

_FINISH_REASONS: Final[dict[str, FinishReason]] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "IMAGE_SAFETY": "content_filter",
    "MALFORMED_FUNCTION_CALL": "error",
    "OTHER": "error",
    "FINISH_REASON_UNSPECIFIED": "error",
}

_STATUS_KINDS: Final[dict[str, ErrorKind]] = {
    "RESOURCE_EXHAUSTED": ErrorKind.RATE_LIMITED,
    "UNAVAILABLE": ErrorKind.TRANSIENT,
    "INTERNAL": ErrorKind.TRANSIENT,
    "DEADLINE_EXCEEDED": ErrorKind.TRANSIENT,
    "ABORTED": ErrorKind.TRANSIENT,
    "INVALID_ARGUMENT": ErrorKind.PERMANENT,
    "FAILED_PRECONDITION": ErrorKind.PERMANENT,
    "PERMISSION_DENIED": ErrorKind.PERMANENT,
    "UNAUTHENTICATED": ErrorKind.PERMANENT,
    "NOT_FOUND": ErrorKind.PERMANENT,
}


# --- Wire models (validated at the boundary) ---


class _Wire(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )


class _FunctionCall(_Wire):
    id: str | None = None
    name: str
    args: dict[str, Any] | None = None


class _Part(_Wire):
    text: str | None = None
    thought: bool | None = None
    function_call: _FunctionCall | None = None


class _Content(_Wire):
    role: str | None = None
    parts: list[_Part] = []


class _Candidate(_Wire):
    content: _Content | None = None
    finish_reason: str | None = None


class _UsageMetadata(_Wire):
    prompt_token_count: int | None = None
    candidates_token_count: int | None = None
    total_token_count: int | None = None

    def to_usage(self) -> Usage:
        return Usage(
            self.prompt_token_count,
            self.candidates_token_count,
            self.total_token_count,
        )


class _PromptFeedback(_Wire):
    block_reason: str | None = None


class _GenerateResponse(_Wire):
    candidates: list[_Candidate] = []
    usage_metadata: _UsageMetadata | None = None
    prompt_feedback: _PromptFeedback | None = None
    model_version: str | None = None
    response_id: str | None = None


class GeminiAdapter:
    """Google Gemini adapter.

    Role mapping: ``assistant`` becomes ``model``; tool results become
    ``functionResponse`` parts in a ``user`` turn, merged when consecutive.
    System messages become ``systemInstruction``, except for models without
    developer-instruction support or requests with no other turns, where the
    system text is folded into the first user message as a leading text part.
    """

    name = "gemini"

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        base_url: str | None = None,
        system_instruction: bool = True,
    ) -> None:
        """Bind the adapter to a credential and endpoint.

        Args:
            credential: API key sent as ``x-goog-api-key``.
            base_url: Override for the REST root.
            system_instruction: Set False to always fold system messages into
                the first user message.
        """
        self._credential = credential.for_provider(self.name)
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.system_instruction = system_instruction

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(system_role=self.system_instruction)

    def redact(self, text: str) -> str:
        return self._credential.redact(text)

    def supports_system_instruction(self, model: str) -> bool:
        bare = model.removeprefix("models/")
        return self.system_instruction and not bare.startswith(
            NO_SYSTEM_INSTRUCTION_PREFIXES
        )

    def render_request(
        self, request: ChatRequest, *, model: str, stream: bool = False
    ) -> WireRequest:
        """Render a ``generateContent`` (or ``streamGenerateContent``) payload."""
        system_texts = [m.content for m in request.messages if m.role == "system"]
        contents = _render_contents(request.messages)

        body: dict[str, Any] = {"contents": contents}
        if system_texts:
            system_text = "\n\n".join(system_texts)
            if contents and self.supports_system_instruction(model):
                body["systemInstruction"] = {"parts": [{"text": system_text}]}
            else:
                logger.debug("Folding system instruction into first user turn for %s", model)
                _fold_system_text(contents, system_text)

        if request.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": t.parameters,
                        }
                        for t in request.tools
                    ]
                }
            ]
        tool_config = _render_tool_config(request.tool_choice)
        if tool_config is not None:
            body["toolConfig"] = tool_config

        generation: dict[str, Any] = {}
        if request.temperature is not None:
            generation["temperature"] = request.temperature
        if request.top_p is not None:
            generation["topP"] = request.top_p
        if request.top_k is not None:
            generation["topK"] = request.top_k
        if request.max_tokens is not None:
            generation["maxOutputTokens"] = request.max_tokens
        if request.stop is not None:
            generation["stopSequences"] = list(request.stop)
        if request.seed is not None:
            generation["seed"] = request.seed
        if generation:
            body["generationConfig"] = generation

        model_path = model if model.startswith("models/") else f"models/{model}"
        method = "streamGenerateContent" if stream else "generateContent"
        return WireRequest(
            method="POST",
            url=f"{self.base_url}/{model_path}:{method}",
            headers={
                "x-goog-api-key": self._credential.reveal(),
                "Content-Type": "application/json",
            },
            json=body,
            params={"alt": "sse"} if stream else {},
        )

    def parse_response(self, response: WireResponse) -> ChatResponse:
        """Parse a complete ``GenerateContentResponse``."""
        wire = parse_wire(
            _GenerateResponse, response.json(provider=self.name), provider=self.name
        )
        usage = wire.usage_metadata.to_usage() if wire.usage_metadata else None

        if not wire.candidates:
            block_reason = wire.prompt_feedback.block_reason if wire.prompt_feedback else None
            if block_reason:
                return build_response(
                    provider=self.name,
                    text="",
                    tool_calls=(),
                    finish_reason="content_filter",
                    raw_finish_reason=block_reason,
                    usage=usage,
                    model=wire.model_version,
                    response_id=wire.response_id,
                )
            raise MalformedResponse("gemini response has no candidates", provider=self.name)

        candidate = wire.candidates[0]
        if candidate.finish_reason is None:
            raise MalformedResponse(
                "gemini candidate has no finishReason", provider=self.name
            )
        text, tool_calls = _read_parts(candidate)
        return build_response(
            provider=self.name,
            text=text,
            tool_calls=tool_calls,
            finish_reason=degrade_finish_reason(
                candidate.finish_reason, _FINISH_REASONS, provider=self.name
            ),
            raw_finish_reason=candidate.finish_reason,
            usage=usage,
            model=wire.model_version,
            response_id=wire.response_id,
        )

    def parse_stream_chunk(self, data: str) -> StreamChunk | None:
        """Parse one SSE event; each carries a partial ``GenerateContentResponse``.

        Gemini has no end-of-stream sentinel: the event carrying a
        ``finishReason`` is terminal. Function calls arrive whole.
        """
        try:
            payload = json.loads(data)
        except ValueError as e:
            raise MalformedResponse(
                "gemini stream event is not valid JSON", provider=self.name
            ) from e
        error = error_object(payload)
        if error:
            raise StreamInterrupted(
                self.redact(f"gemini stream failed: {error.get('message', 'unknown error')}")
            )

        wire = parse_wire(_GenerateResponse, payload, provider=self.name)
        usage = wire.usage_metadata.to_usage() if wire.usage_metadata else None
        if not wire.candidates:
            block_reason = wire.prompt_feedback.block_reason if wire.prompt_feedback else None
            if block_reason:
                return StreamChunk(
                    finish_reason="content_filter",
                    raw_finish_reason=block_reason,
                    usage=usage,
                    model=wire.model_version,
                    response_id=wire.response_id,
                )
            if usage is None:
                return None
            return StreamChunk(usage=usage, model=wire.model_version)

        candidate = wire.candidates[0]
        text, calls = _read_parts(candidate)
        finish_reason = (
            degrade_finish_reason(candidate.finish_reason, _FINISH_REASONS, provider=self.name)
            if candidate.finish_reason is not None
            else None
        )
        return StreamChunk(
            text=text,
            tool_calls=tuple(
                ToolCallDelta(call_id=c.id, name=c.name, arguments=c.arguments)
                for c in calls
            ),
            finish_reason=finish_reason,
            raw_finish_reason=candidate.finish_reason,
            usage=usage,
            response_id=wire.response_id,
            model=wire.model_version,
        )

    def classify_error(
        self, status_code: int, body: Any, headers: Mapping[str, str]
    ) -> ErrorKind:
        """Map Google RPC status names, falling back to the HTTP code."""
        status = error_object(body).get("status")
        if isinstance(status, str) and status in _STATUS_KINDS:
            return _STATUS_KINDS[status]
        return classify_status(status_code)

    def retry_after_s(self, body: Any, headers: Mapping[str, str]) -> float | None:
        retry_info = retry_after_from_retry_info(body)
        if retry_info is not None:
            return retry_info
        return retry_after_from_headers(headers)

    def __repr__(self) -> str:
        return f"GeminiAdapter(base_url={self.base_url!r})"


def _render_contents(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    call_names: dict[str, str] = {}
    last_was_tool = False

    for i, msg in enumerate(messages):
        if msg.role == "system":
            continue
        if msg.role == "tool":
            call_id = msg.tool_call_id or ""
            part = {
                "functionResponse": {
                    "id": call_id,
                    "name": call_names.get(call_id, "unknown_tool"),
                    "response": _tool_response_payload(msg.content),
                }
            }
            if last_was_tool:
                # Gemini expects all responses for one model turn in one content.
                contents[-1]["parts"].append(part)
            else:
                contents.append({"role": "user", "parts": [part]})
            last_was_tool = True
            continue

        last_was_tool = False
        parts: list[dict[str, Any]] = []
        if msg.content:
            parts.append({"text": msg.content})
        for call in msg.tool_calls:
            call_names[call.id] = call.name
            parts.append(
                {
                    "functionCall": {
                        "id": call.id,
                        "name": call.name,
                        "args": _call_args(call, i),
                    }
                }
            )
        contents.append(
            {"role": "model" if msg.role == "assistant" else "user", "parts": parts}
        )
    return contents


def _fold_system_text(contents: list[dict[str, Any]], system_text: str) -> None:
    for content in contents:
        is_tool_turn = any("functionResponse" in p for p in content["parts"])
        if content["role"] == "user" and not is_tool_turn:
            content["parts"].insert(0, {"text": f"{system_text}\n\n"})
            return
    contents.insert(0, {"role": "user", "parts": [{"text": system_text}]})


def _tool_response_payload(content: str) -> dict[str, Any]:
    try:
        parsed = json.loads(content)
    except ValueError:
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def _call_args(call: ToolCall, index: int) -> dict[str, Any]:
    try:
        args = call.loads()
    except ValueError as e:
        raise ValidationError(
            f"Tool call {call.id!r} arguments are not valid JSON",
            field=f"messages[{index}].tool_calls",
        ) from e
    if not isinstance(args, dict):
        raise ValidationError(
            f"Tool call {call.id!r} arguments must be a JSON object for gemini",
            field=f"messages[{index}].tool_calls",
        )
    return args


def _render_tool_config(choice: str | None) -> dict[str, Any] | None:
    if choice is None:
        return None
    if choice in ("auto", "none"):
        return {"functionCallingConfig": {"mode": choice.upper()}}
    if choice == "required":
        return {"functionCallingConfig": {"mode": "ANY"}}
    return {
        "functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [choice]}
    }


def _read_parts(candidate: _Candidate) -> tuple[str, list[ToolCall]]:
    text: list[str] = []
    calls: list[ToolCall] = []
    for part in candidate.content.parts if candidate.content else []:
        if part.function_call is not None:
            fc = part.function_call
            calls.append(
                ToolCall(
                    id=fc.id or new_call_id(),
                    name=fc.name,
                    arguments=compact_json(fc.args or {}),
                )
            )
        elif part.text and not part.thought:
            text.append(part.text)
    return "".join(text), calls
