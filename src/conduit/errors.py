"""Exception hierarchy for Conduit."""

from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping


class ConduitError(Exception):
    """Base exception for all Conduit errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ConduitError):
    """Configuration validation or resolution failed."""


class ValidationError(ConduitError):
    """A ChatRequest was rejected before dispatch.

    Never retried: the request itself is at fault.
    """

    def __init__(
        self, message: str, *, field: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.field = field


class AdapterError(ConduitError):
    """A provider returned something the adapter cannot map."""

    def __init__(
        self, message: str, *, provider: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider


class MalformedResponse(AdapterError):
    """Required fields are missing or mistyped in a provider payload."""


class UnsupportedFinishReason(AdapterError):
    """The provider reported a finish reason this layer does not recognize."""

    def __init__(
        self, reason: str, *, provider: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(
            f"Unsupported finish reason: {reason!r}", provider=provider, hint=hint
        )
        self.reason = reason


class TransportError(ConduitError):
    """Network-level failure; payload semantics are not interpreted."""


class ConnectionFailed(TransportError):
    """The connection could not be established or was dropped."""


class Timeout(TransportError):
    """The request did not complete within the configured timeout."""

    def __init__(self, message: str, *, timeout_s: float | None = None) -> None:
        super().__init__(message)
        self.timeout_s = timeout_s


class HTTPStatusError(TransportError):
    """The provider answered with a non-2xx status code."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body


class ErrorKind(enum.Enum):
    """Classification consumed by the retry controller."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.PERMANENT


class APIError(ConduitError):
    """Provider call failed with a classified HTTP error.

    Adapters attach the classification and retry metadata so the retry
    controller can decide without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        hint: str | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class RateLimitError(APIError):
    """Rate limit or capacity exceeded."""


@dataclass(frozen=True)
class AttemptRecord:
    """One attempt observed by the retry controller."""

    attempt: int
    kind: ErrorKind | None
    status_code: int | None = None
    delay_s: float | None = None
    error: str | None = None


class RetriesExhausted(ConduitError):
    """The attempt cap was reached; wraps the last observed error."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_error: BaseException,
        history: tuple[AttemptRecord, ...] = (),
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.attempts = attempts
        self.last_error = last_error
        self.history = history

    @property
    def last_status_code(self) -> int | None:
        return getattr(self.last_error, "status_code", None)


class StreamInterrupted(ConduitError):
    """A stream ended early or violated the chunk protocol."""


def error_kind(exc: BaseException) -> ErrorKind:
    """Classify any exception for retry purposes.

    Classified provider errors keep their kind, transport failures without a
    status are transient, and everything else is permanent.
    """
    if isinstance(exc, APIError):
        return exc.kind
    if isinstance(exc, (ConnectionFailed, Timeout)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def describe(exc: BaseException) -> dict[str, Any]:
    """Return a log-friendly summary of an error (no payloads, no secrets)."""
    return {
        "type": type(exc).__name__,
        "kind": error_kind(exc).value,
        "status_code": getattr(exc, "status_code", None),
        "provider": getattr(exc, "provider", None),
    }

