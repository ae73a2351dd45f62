"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: provider behavior is simulated at the
HTTP boundary with ``httpx.MockTransport`` so adapters, transport, and retry
run for real.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any

import httpx

from conduit.transport import HttpTransport

Step = httpx.Response | BaseException


@dataclass
class ScriptedServer:
    """Replays a scripted sequence of responses/exceptions, one per request.

    Once the script is exhausted the last step is repeated.
    """

    script: list[Step] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        # Repeated steps get a fresh response object.
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)

    def transport(self) -> HttpTransport:
        return HttpTransport(mount=httpx.MockTransport(self.handler))

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


def sse_response(*events: dict[str, Any] | str, status_code: int = 200) -> httpx.Response:
    """Build a ``text/event-stream`` response from JSON events (or raw strings)."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content="".join(lines).encode(),
    )


def groq_completion(
    content: str | None = "ok",
    *,
    finish_reason: str = "stop",
    tool_calls: list[dict[str, Any]] | None = None,
    response_id: str = "chatcmpl-1",
) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "id": response_id,
        "object": "chat.completion",
        "model": "llama-3.3-70b-versatile",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10},
    }


def gemini_response(
    *parts: dict[str, Any],
    finish_reason: str | None = "STOP",
) -> dict[str, Any]:
    candidate: dict[str, Any] = {"content": {"role": "model", "parts": list(parts)}}
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    return {
        "candidates": [candidate],
        "usageMetadata": {
            "promptTokenCount": 5,
            "candidatesTokenCount": 2,
            "totalTokenCount": 7,
        },
        "modelVersion": "gemini-2.0-flash",
        "responseId": "resp-1",
    }


def error_response(
    status_code: int,
    message: str = "boom",
    *,
    code: str | None = None,
    status: str | None = None,
    headers: dict[str, str] | None = None,
    details: list[dict[str, Any]] | None = None,
) -> httpx.Response:
    error: dict[str, Any] = {"message": message}
    if code is not None:
        error["code"] = code
    if status is not None:
        error["status"] = status
    if details is not None:
        error["details"] = details
    return httpx.Response(status_code, json={"error": error}, headers=headers)
