"""Shared utilities for adapter implementations."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar
import uuid

import pydantic

from conduit.errors import MalformedResponse, UnsupportedFinishReason
from conduit.schema import ChatMessage, ChatResponse, FinishReason, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

M = TypeVar("M", bound=pydantic.BaseModel)

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_CODE_FENCE_RE = re.compile(r"```\s*([\s\S]*?)\s*```")
_THINK_RE = re.compile(r"<think>[\s\S]*?</think>")


def new_call_id() -> str:
    """Synthesize a tool call id for providers that do not assign one."""
    return f"call_{uuid.uuid4().hex[:12]}"


def compact_json(value: Any) -> str:
    """Serialize tool arguments the way OpenAI-style providers emit them."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_wire(model: type[M], payload: Any, *, provider: str) -> M:
    """Validate a decoded payload against a wire model.

    Raises:
        MalformedResponse: Required fields are missing or mistyped.
    """
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors()[:3]
        )
        raise MalformedResponse(
            f"{provider} response is malformed ({fields})", provider=provider
        ) from e


def build_response(
    *,
    provider: str,
    text: str,
    tool_calls: Sequence[ToolCall],
    finish_reason: FinishReason,
    raw_finish_reason: str | None,
    usage: Usage | None,
    model: str | None,
    response_id: str | None,
) -> ChatResponse:
    """Assemble a ChatResponse and enforce the tool-call invariants.

    Providers that report ``stop`` alongside function calls are normalized to
    ``tool_calls``; a ``tool_calls`` finish without calls is malformed.
    """
    for call in tool_calls:
        if not call.name:
            raise MalformedResponse(
                f"{provider} returned a tool call without a name", provider=provider
            )
    if tool_calls and finish_reason == "stop":
        finish_reason = "tool_calls"
    if finish_reason == "tool_calls" and not tool_calls:
        raise MalformedResponse(
            f"{provider} reported tool_calls but returned none", provider=provider
        )
    return ChatResponse(
        message=ChatMessage.assistant(text, tuple(tool_calls)),
        finish_reason=finish_reason,
        usage=usage,
        model=model,
        provider=provider,
        response_id=response_id,
        raw_finish_reason=raw_finish_reason,
    )


def strip_reasoning_markup(text: str) -> str:
    """Remove code fences and ``<think>`` blocks from model output.

    A result that is itself a JSON string literal is unwrapped; other JSON is
    re-serialized compactly. Plain text is returned trimmed.
    """
    cleaned = _JSON_FENCE_RE.sub(r"\1", text)
    cleaned = _CODE_FENCE_RE.sub(r"\1", cleaned)
    cleaned = _THINK_RE.sub("", cleaned).strip()
    try:
        value = json.loads(cleaned)
    except ValueError:
        return cleaned
    if isinstance(value, str):
        return value
    return compact_json(value)


def map_finish_reason(
    raw: str, table: Mapping[str, FinishReason], *, provider: str
) -> FinishReason:
    """Translate a provider finish code.

    Raises:
        UnsupportedFinishReason: The code is not in *table*.
    """
    try:
        return table[raw]
    except KeyError:
        raise UnsupportedFinishReason(raw, provider=provider) from None


def degrade_finish_reason(
    raw: str, table: Mapping[str, FinishReason], *, provider: str
) -> FinishReason:
    """Like ``map_finish_reason`` but unknown codes become ``error``."""
    try:
        return map_finish_reason(raw, table, provider=provider)
    except UnsupportedFinishReason as e:
        logger.warning("%s from %s; reporting finish reason 'error'", e, provider)
        return "error"
