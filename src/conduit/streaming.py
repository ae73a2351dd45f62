"""Reassembly of streamed responses.

Streaming is a fold: every provider chunk is normalized into a ``StreamChunk``
and fed to a ``StreamAssembler``, which yields exactly one ChatResponse once
the stream has terminated properly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from conduit.errors import StreamInterrupted
from conduit.schema import ChatMessage, ChatResponse, FinishReason, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterable


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call.

    The opening fragment carries ``call_id`` and ``name``; continuations may
    identify their call by ``call_id`` or only by ``index``.
    """

    index: int | None = None
    call_id: str | None = None
    name: str | None = None
    arguments: str = ""

    @property
    def opens_call(self) -> bool:
        return bool(self.call_id and self.name)


@dataclass(frozen=True)
class StreamChunk:
    """One normalized increment of a streamed response."""

    text: str = ""
    tool_calls: tuple[ToolCallDelta, ...] = ()
    finish_reason: FinishReason | None = None
    raw_finish_reason: str | None = None
    usage: Usage | None = None
    #: Explicit end-of-stream marker (e.g. ``[DONE]``).
    done: bool = False
    response_id: str | None = None
    model: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.done or self.finish_reason is not None


@dataclass
class _PendingCall:
    id: str
    name: str
    index: int | None
    fragments: list[str] = field(default_factory=list)


class StreamAssembler:
    """Folds StreamChunks into a single ChatResponse.

    Not thread-safe and not reusable; create one per stream.
    """

    def __init__(self, *, provider: str | None = None) -> None:
        self.provider = provider
        self._text: list[str] = []
        self._calls: list[_PendingCall] = []
        self._by_id: dict[str, _PendingCall] = {}
        self._by_index: dict[int, _PendingCall] = {}
        self._finish_reason: FinishReason | None = None
        self._raw_finish_reason: str | None = None
        self._usage: Usage | None = None
        self._response_id: str | None = None
        self._model: str | None = None
        self._terminated = False
        self._finished = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    def feed(self, chunk: StreamChunk) -> None:
        """Fold one chunk into the pending response.

        Raises:
            StreamInterrupted: When a tool-call fragment violates ordering.
        """
        if self._finished:
            raise RuntimeError("StreamAssembler already finished")
        if chunk.text:
            self._text.append(chunk.text)
        for delta in chunk.tool_calls:
            self._feed_tool_delta(delta)
        if chunk.finish_reason is not None:
            self._finish_reason = chunk.finish_reason
            self._raw_finish_reason = chunk.raw_finish_reason
        if chunk.usage is not None:
            # Providers report cumulative counters; the latest one wins.
            self._usage = chunk.usage
        self._response_id = chunk.response_id or self._response_id
        self._model = chunk.model or self._model
        if chunk.is_terminal:
            self._terminated = True

    def finish(self) -> ChatResponse:
        """Return the assembled response.

        Raises:
            StreamInterrupted: If no terminal marker was seen.
        """
        self._finished = True
        if not self._terminated:
            raise StreamInterrupted(
                "Stream ended without a terminal marker",
                hint="The connection was likely dropped; retry the request.",
            )

        tool_calls = tuple(
            ToolCall(id=c.id, name=c.name, arguments="".join(c.fragments))
            for c in self._calls
        )
        finish_reason = self._finish_reason
        if tool_calls and finish_reason in (None, "stop"):
            finish_reason = "tool_calls"
        elif finish_reason is None:
            finish_reason = "stop"
        elif finish_reason == "tool_calls" and not tool_calls:
            raise StreamInterrupted(
                "Stream reported tool_calls but no tool call was received"
            )

        return ChatResponse(
            message=ChatMessage.assistant("".join(self._text), tool_calls),
            finish_reason=finish_reason,
            usage=self._usage,
            model=self._model,
            provider=self.provider,
            response_id=self._response_id,
            raw_finish_reason=self._raw_finish_reason,
        )

    def _feed_tool_delta(self, delta: ToolCallDelta) -> None:
        if delta.opens_call:
            call_id, name = str(delta.call_id), str(delta.name)
            if call_id in self._by_id:
                raise StreamInterrupted(
                    f"Duplicate opening fragment for tool call {call_id!r}"
                )
            if delta.index is not None and delta.index in self._by_index:
                raise StreamInterrupted(
                    f"Tool call index {delta.index} was opened twice"
                )
            call = _PendingCall(id=call_id, name=name, index=delta.index)
            self._calls.append(call)
            self._by_id[call.id] = call
            if call.index is not None:
                self._by_index[call.index] = call
            if delta.arguments:
                call.fragments.append(delta.arguments)
            return

        if delta.call_id is not None:
            pending = self._by_id.get(delta.call_id)
        elif delta.index is not None:
            pending = self._by_index.get(delta.index)
        else:
            pending = None
        if pending is None:
            key = delta.call_id if delta.call_id is not None else f"#{delta.index}"
            raise StreamInterrupted(
                f"Tool call fragment for {key} arrived before its opening fragment"
            )
        if pending is not self._calls[-1]:
            raise StreamInterrupted(
                f"Tool call fragment for {pending.id!r} arrived out of order"
            )
        if delta.arguments:
            pending.fragments.append(delta.arguments)


async def assemble(
    chunks: AsyncIterable[StreamChunk], *, provider: str | None = None
) -> ChatResponse:
    """Consume *chunks* completely and return the final response."""
    assembler = StreamAssembler(provider=provider)
    async for chunk in chunks:
        assembler.feed(chunk)
    return assembler.finish()
