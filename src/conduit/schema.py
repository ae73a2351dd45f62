"""Provider-agnostic request and response models.

Everything here is a frozen value object. ``validate`` is the single gate a
request passes through before any adapter sees it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
import re
from typing import Any, Final, Literal, get_args

from conduit.errors import ValidationError

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "tool_calls", "length", "content_filter", "error"]
ToolChoiceMode = Literal["auto", "none", "required"]

ROLES: Final[frozenset[str]] = frozenset(get_args(Role))
FINISH_REASONS: Final[frozenset[str]] = frozenset(get_args(FinishReason))
TOOL_CHOICE_MODES: Final[frozenset[str]] = frozenset(get_args(ToolChoiceMode))

# Intersection of what the supported providers accept for function names.
_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

MAX_STOP_SEQUENCES: Final[int] = 4

#: Supported ranges as (low, high, low_inclusive); ``None`` means unbounded.
PARAMETER_RANGES: Final[dict[str, tuple[float | None, float | None, bool]]] = {
    "temperature": (0.0, 2.0, True),
    "top_p": (0.0, 1.0, False),
    "top_k": (1, None, True),
    "max_tokens": (1, None, True),
    "seed": (0, None, True),
}


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the raw JSON text the provider produced. It is validated
    by whoever executes the tool, not here.
    """

    id: str
    name: str
    arguments: str = "{}"

    def loads(self) -> Any:
        """Parse the argument payload."""
        return json.loads(self.arguments) if self.arguments else {}


@dataclass(frozen=True)
class ChatMessage:
    """One conversational turn."""

    role: Role
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls("system", content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls("user", content)

    @classmethod
    def assistant(
        cls, content: str = "", tool_calls: tuple[ToolCall, ...] | list[ToolCall] = ()
    ) -> ChatMessage:
        return cls("assistant", content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> ChatMessage:
        return cls("tool", content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class ToolSpec:
    """A function the model may call, described with a JSON-schema object."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_mcp(cls, tool: dict[str, Any]) -> ToolSpec:
        """Convert an MCP tool listing entry (``name``/``description``/``inputSchema``).

        Raises:
            ValidationError: When the tool has no description; models pick
                tools by description, so an undocumented tool is rejected.
        """
        name = str(tool.get("name") or "")
        description = tool.get("description")
        if not description:
            raise ValidationError(
                f"Tool description is missing for tool {name!r}",
                field="description",
            )
        schema = tool.get("inputSchema") or tool.get("input_schema") or {}
        parameters: dict[str, Any] = {
            "type": schema.get("type", "object"),
            "properties": schema.get("properties", {}),
        }
        required = schema.get("required")
        if isinstance(required, list):
            parameters["required"] = [r for r in required if isinstance(r, str)]
        return cls(name=name, description=str(description), parameters=parameters)


@dataclass(frozen=True)
class ChatRequest:
    """Ordered messages, available tools, and generation parameters."""

    messages: tuple[ChatMessage, ...]
    tools: tuple[ToolSpec, ...] = ()
    tool_choice: ToolChoiceMode | str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: tuple[str, ...] | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "tools", tuple(self.tools))
        if self.stop is not None and not isinstance(self.stop, tuple):
            stop = (self.stop,) if isinstance(self.stop, str) else tuple(self.stop)
            object.__setattr__(self, "stop", stop)


@dataclass(frozen=True)
class Usage:
    """Token counters; providers may omit any of them."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class ChatResponse:
    """A finalized, provider-independent response."""

    message: ChatMessage
    finish_reason: FinishReason
    usage: Usage | None = None
    model: str | None = None
    provider: str | None = None
    response_id: str | None = None
    raw_finish_reason: str | None = None

    @property
    def text(self) -> str:
        return self.message.content

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return self.message.tool_calls


def validate(request: ChatRequest) -> None:
    """Check a request for well-formedness.

    Args:
        request: The request to check.

    Raises:
        ValidationError: On the first violation found. ``field`` names the
            offending location, e.g. ``messages[3].tool_call_id``.
    """
    if not request.messages:
        raise ValidationError(
            "Request has no messages", field="messages", hint="Add at least one message."
        )

    tool_names = _validate_tools(request.tools)
    _validate_tool_choice(request.tool_choice, tool_names)
    _validate_parameters(request)
    _validate_messages(request.messages)


def _validate_messages(messages: tuple[ChatMessage, ...]) -> None:
    seen_non_system = False
    # Calls requested by the latest assistant turn that have not been answered.
    outstanding: dict[str, ToolCall] = {}
    answered: set[str] = set()
    previous_role: str | None = None

    for i, msg in enumerate(messages):
        loc = f"messages[{i}]"
        if msg.role not in ROLES:
            raise ValidationError(f"Unknown role {msg.role!r}", field=f"{loc}.role")
        if not isinstance(msg.content, str):
            raise ValidationError("Message content must be a string", field=f"{loc}.content")

        if msg.role == "system":
            if seen_non_system:
                raise ValidationError(
                    "System messages must precede all other messages",
                    field=f"{loc}.role",
                )
        else:
            seen_non_system = True

        if msg.tool_calls and msg.role != "assistant":
            raise ValidationError(
                "Only assistant messages may carry tool calls",
                field=f"{loc}.tool_calls",
            )
        if msg.tool_call_id is not None and msg.role != "tool":
            raise ValidationError(
                "Only tool messages may carry a tool_call_id",
                field=f"{loc}.tool_call_id",
            )

        if msg.role in ("system", "user") and not msg.content.strip():
            raise ValidationError(f"{msg.role} message is empty", field=f"{loc}.content")

        if msg.role == "assistant":
            if not msg.content and not msg.tool_calls:
                raise ValidationError(
                    "Assistant message needs content or tool calls",
                    field=f"{loc}.content",
                )
            outstanding = {}
            answered = set()
            for j, call in enumerate(msg.tool_calls):
                if not call.id:
                    raise ValidationError(
                        "Tool call id is empty", field=f"{loc}.tool_calls[{j}].id"
                    )
                if not call.name:
                    raise ValidationError(
                        "Tool call name is empty", field=f"{loc}.tool_calls[{j}].name"
                    )
                if call.id in outstanding:
                    raise ValidationError(
                        f"Duplicate tool call id {call.id!r}",
                        field=f"{loc}.tool_calls[{j}].id",
                    )
                outstanding[call.id] = call

        elif msg.role == "tool":
            if not msg.tool_call_id:
                raise ValidationError(
                    "Tool message requires tool_call_id", field=f"{loc}.tool_call_id"
                )
            if previous_role not in ("assistant", "tool"):
                raise ValidationError(
                    "Tool message must follow an assistant turn that requested tools",
                    field=f"{loc}.role",
                )
            if msg.tool_call_id in answered:
                raise ValidationError(
                    f"Tool call {msg.tool_call_id!r} was already answered",
                    field=f"{loc}.tool_call_id",
                )
            if msg.tool_call_id not in outstanding:
                raise ValidationError(
                    f"Tool call {msg.tool_call_id!r} does not match any call "
                    "from the preceding assistant turn",
                    field=f"{loc}.tool_call_id",
                )
            answered.add(msg.tool_call_id)

        else:
            outstanding = {}
            answered = set()

        previous_role = msg.role


def _validate_tools(tools: tuple[ToolSpec, ...]) -> set[str]:
    names: set[str] = set()
    for i, tool in enumerate(tools):
        loc = f"tools[{i}]"
        if not isinstance(tool.name, str) or not _TOOL_NAME_RE.fullmatch(tool.name):
            raise ValidationError(
                f"Invalid tool name {tool.name!r}",
                field=f"{loc}.name",
                hint="Use 1-64 characters from [A-Za-z0-9_-].",
            )
        if tool.name in names:
            raise ValidationError(f"Duplicate tool name {tool.name!r}", field=f"{loc}.name")
        names.add(tool.name)
        params = tool.parameters
        if not isinstance(params, dict) or params.get("type", "object") != "object":
            raise ValidationError(
                "Tool parameters must be a JSON-schema object",
                field=f"{loc}.parameters",
            )
    return names


def _validate_tool_choice(choice: str | None, tool_names: set[str]) -> None:
    if choice is None or choice == "none":
        return
    if not tool_names:
        raise ValidationError("tool_choice given without tools", field="tool_choice")
    if choice in TOOL_CHOICE_MODES or choice in tool_names:
        return
    raise ValidationError(f"tool_choice names unknown tool {choice!r}", field="tool_choice")


def _validate_parameters(request: ChatRequest) -> None:
    for name, (low, high, low_inclusive) in PARAMETER_RANGES.items():
        value = getattr(request, name)
        if value is None:
            continue
        integral = name in ("top_k", "max_tokens", "seed")
        if isinstance(value, bool) or not isinstance(value, int if integral else (int, float)):
            raise ValidationError(f"{name} has the wrong type", field=name)
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"{name} must be a finite number", field=name)
        too_low = low is not None and (value < low if low_inclusive else value <= low)
        too_high = high is not None and value > high
        if too_low or too_high:
            bracket = "[" if low_inclusive else "("
            raise ValidationError(
                f"{name}={value} is out of range {bracket}{low}, {high if high is not None else 'inf'}]",
                field=name,
            )

    if request.stop is not None:
        if len(request.stop) > MAX_STOP_SEQUENCES:
            raise ValidationError(
                f"At most {MAX_STOP_SEQUENCES} stop sequences are supported",
                field="stop",
            )
        if any(not isinstance(s, str) or not s for s in request.stop):
            raise ValidationError("Stop sequences must be non-empty strings", field="stop")
