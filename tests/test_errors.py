from __future__ import annotations

import pytest

from conduit.errors import (
    AdapterError,
    APIError,
    AttemptRecord,
    ConduitError,
    ConnectionFailed,
    ErrorKind,
    HTTPStatusError,
    MalformedResponse,
    RateLimitError,
    RetriesExhausted,
    Timeout,
    TransportError,
    UnsupportedFinishReason,
    ValidationError,
    describe,
    error_kind,
)

pytestmark = pytest.mark.unit


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        kind=ErrorKind.RATE_LIMITED,
        hint="slow down",
        status_code=429,
        retry_after_s=2.0,
        provider="groq",
    )

    assert str(err) == "boom"
    assert err.hint == "slow down"
    assert err.retryable is True
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.provider == "groq"


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail", kind=ErrorKind.PERMANENT)
    assert err.hint is None
    assert err.retryable is False
    assert err.status_code is None
    assert err.retry_after_s is None
    assert err.provider is None


def test_subclass_hierarchy() -> None:
    """Every library error is catchable as ConduitError."""
    assert issubclass(RateLimitError, APIError)
    assert issubclass(MalformedResponse, AdapterError)
    assert issubclass(UnsupportedFinishReason, AdapterError)
    for cls in (ConnectionFailed, Timeout, HTTPStatusError):
        assert issubclass(cls, TransportError)
    for cls in (APIError, AdapterError, TransportError, ValidationError, RetriesExhausted):
        assert issubclass(cls, ConduitError)


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (APIError("x", kind=ErrorKind.TRANSIENT), ErrorKind.TRANSIENT),
        (RateLimitError("x", kind=ErrorKind.RATE_LIMITED), ErrorKind.RATE_LIMITED),
        (ConnectionFailed("reset"), ErrorKind.TRANSIENT),
        (Timeout("slow", timeout_s=1.0), ErrorKind.TRANSIENT),
        (HTTPStatusError("HTTP 500", status_code=500), ErrorKind.PERMANENT),
        (ValidationError("bad"), ErrorKind.PERMANENT),
        (MalformedResponse("bad"), ErrorKind.PERMANENT),
        (ValueError("bug"), ErrorKind.PERMANENT),
    ],
)
def test_error_kind_classification(exc: BaseException, kind: ErrorKind) -> None:
    assert error_kind(exc) is kind


def test_unsupported_finish_reason_names_the_code() -> None:
    err = UnsupportedFinishReason("NEW_THING", provider="gemini")
    assert err.reason == "NEW_THING"
    assert "NEW_THING" in str(err)
    assert err.provider == "gemini"


def test_retries_exhausted_exposes_last_status() -> None:
    last = APIError("busy", kind=ErrorKind.TRANSIENT, status_code=503)
    history = (AttemptRecord(attempt=1, kind=ErrorKind.TRANSIENT, status_code=503),)
    err = RetriesExhausted("gave up", attempts=1, last_error=last, history=history)

    assert err.last_status_code == 503
    assert err.history == history


def test_describe_omits_message_text() -> None:
    err = APIError("contains secret", kind=ErrorKind.PERMANENT, status_code=401, provider="groq")
    summary = describe(err)
    assert summary == {
        "type": "APIError",
        "kind": "permanent",
        "status_code": 401,
        "provider": "groq",
    }
