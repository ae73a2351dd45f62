"""Shared provider-side error helpers.

Adapters classify HTTP failures into ErrorKind and attach retry metadata via
APIError so the retry controller stays bounded and deterministic.
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
import json
import re
import time
from typing import TYPE_CHECKING, Any

from conduit.errors import APIError, ErrorKind, HTTPStatusError, RateLimitError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from conduit.providers.base import ProviderAdapter

_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")

_TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 409, 500, 502, 503, 504})


def decode_error_body(body: bytes) -> Any:
    """Best-effort JSON decode of an error body; raw text when it is not JSON."""
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def error_object(body: Any) -> dict[str, Any]:
    """Return the ``error`` object most providers nest their details in."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error
    return {}


def classify_status(status_code: int) -> ErrorKind:
    """Provider-neutral fallback classification by HTTP status."""
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def retry_after_from_headers(headers: Mapping[str, str]) -> float | None:
    """Parse ``Retry-After`` as delta-seconds or an HTTP date."""
    raw: Any = None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            raw = value
            break
    if not isinstance(raw, str) or not raw.strip():
        return None
    raw = raw.strip()
    try:
        seconds = float(raw)
    except ValueError:
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        seconds = when.timestamp() - time.time()
        return max(0.0, seconds)
    return seconds if seconds >= 0 else None


def retry_after_from_retry_info(body: Any) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    Gemini error bodies look like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}

    The ``retryDelay`` value is a protobuf Duration string (e.g. ``"8s"``,
    ``"8.352104981s"``).
    """
    detail_list: Any = error_object(body).get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def _auth_hint(provider: str, status_code: int, message: str) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    lower = message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in lower or "api_key" in lower)
    ):
        env_var = f"{provider.upper()}_API_KEY"
        return f"Check credentials/permissions (try setting {env_var} or api_key=...)."
    return None


def to_api_error(adapter: ProviderAdapter, exc: HTTPStatusError) -> APIError:
    """Classify a transport-level status error into an APIError.

    The message is scrubbed of the adapter's credential; error bodies sometimes
    echo request details back.
    """
    body = decode_error_body(exc.body)
    kind = adapter.classify_error(exc.status_code, body, exc.headers)
    retry_after = adapter.retry_after_s(body, exc.headers)

    detail = error_object(body).get("message")
    if not isinstance(detail, str) or not detail:
        detail = body if isinstance(body, str) else ""
    message = adapter.redact(
        f"{adapter.name} request failed (status={exc.status_code})"
        + (f": {detail[:300]}" if detail else "")
    )

    err_cls: type[APIError] = (
        RateLimitError if kind is ErrorKind.RATE_LIMITED else APIError
    )
    return err_cls(
        message,
        kind=kind,
        hint=_auth_hint(adapter.name, exc.status_code, message),
        status_code=exc.status_code,
        retry_after_s=retry_after,
        provider=adapter.name,
    )
