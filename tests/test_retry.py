"""Retry controller: attempt accounting, delay policy, and error contracts."""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from conduit.errors import (
    APIError,
    ConnectionFailed,
    ErrorKind,
    RateLimitError,
    RetriesExhausted,
    ValidationError,
)
from conduit.retry import (
    RetryController,
    RetryPolicy,
    RetryState,
    compute_backoff_delay,
)

pytestmark = pytest.mark.unit


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)


def _rate_limited(retry_after_s: float | None = None) -> RateLimitError:
    return RateLimitError(
        "slow down",
        kind=ErrorKind.RATE_LIMITED,
        status_code=429,
        retry_after_s=retry_after_s,
    )


def _scripted(*outcomes: object):
    calls = {"n": 0}
    items = list(outcomes)

    async def factory() -> object:
        calls["n"] += 1
        item = items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    return factory, calls


@given(n=st.integers(min_value=1, max_value=6))
@settings(max_examples=10, deadline=None, derandomize=True)
def test_succeeds_on_attempt_n_after_rate_limits(n: int) -> None:
    """Property: N-1 rate-limited failures then success takes exactly N attempts."""
    recorder = _Recorder()
    factory, calls = _scripted(*[_rate_limited() for _ in range(n - 1)], "ok")
    controller = RetryController(
        RetryPolicy(max_attempts=n, jitter=False), sleep=recorder.sleep
    )

    result = asyncio.run(controller.run(factory))

    assert result == "ok"
    assert calls["n"] == n
    assert controller.attempts == n
    assert controller.state is RetryState.SUCCEEDED
    assert len(recorder.delays) == n - 1


@pytest.mark.asyncio
async def test_permanent_error_is_attempted_once_and_reraised() -> None:
    err = APIError("bad key", kind=ErrorKind.PERMANENT, status_code=401)
    factory, calls = _scripted(err)
    controller = RetryController(RetryPolicy(max_attempts=5), sleep=_Recorder().sleep)

    with pytest.raises(APIError) as exc:
        await controller.run(factory)

    assert exc.value is err
    assert calls["n"] == 1
    assert controller.state is RetryState.EXHAUSTED


@pytest.mark.asyncio
async def test_unclassified_exceptions_are_not_retried() -> None:
    factory, calls = _scripted(ValidationError("nope"))
    controller = RetryController(RetryPolicy(), sleep=_Recorder().sleep)

    with pytest.raises(ValidationError):
        await controller.run(factory)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error_with_history() -> None:
    recorder = _Recorder()
    last = ConnectionFailed("reset")
    factory, calls = _scripted(_rate_limited(), ConnectionFailed("refused"), last)
    controller = RetryController(
        RetryPolicy(max_attempts=3, initial_delay_s=1.0, jitter=False),
        sleep=recorder.sleep,
    )

    with pytest.raises(RetriesExhausted) as exc:
        await controller.run(factory)

    err = exc.value
    assert calls["n"] == 3
    assert err.attempts == 3
    assert err.last_error is last
    assert err.__cause__ is last
    assert [r.kind for r in err.history] == [
        ErrorKind.RATE_LIMITED,
        ErrorKind.TRANSIENT,
        ErrorKind.TRANSIENT,
    ]
    assert [r.delay_s for r in err.history] == [1.0, 2.0, None]
    assert err.history[0].status_code == 429
    assert recorder.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_after_hint_overrides_backoff() -> None:
    recorder = _Recorder()
    factory, _ = _scripted(_rate_limited(retry_after_s=7.0), "ok")
    controller = RetryController(
        RetryPolicy(initial_delay_s=0.5, jitter=False), sleep=recorder.sleep
    )

    assert await controller.run(factory) == "ok"
    assert recorder.delays == [7.0]


@pytest.mark.asyncio
async def test_retry_after_hint_is_clamped() -> None:
    recorder = _Recorder()
    factory, _ = _scripted(_rate_limited(retry_after_s=3600.0), "ok")
    controller = RetryController(
        RetryPolicy(max_retry_after_s=30.0), sleep=recorder.sleep
    )

    await controller.run(factory)
    assert recorder.delays == [30.0]


@pytest.mark.asyncio
async def test_backoff_sleep_is_cancellable() -> None:
    async def always_busy() -> None:
        raise _rate_limited()

    controller = RetryController(RetryPolicy(initial_delay_s=30.0, jitter=False))
    task = asyncio.create_task(controller.run(always_busy))
    await asyncio.sleep(0.01)
    assert controller.state is RetryState.BACKING_OFF

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert controller.attempts == 1


@pytest.mark.asyncio
async def test_cancellation_is_never_retried() -> None:
    calls = {"n": 0}

    async def cancelled() -> None:
        calls["n"] += 1
        raise asyncio.CancelledError

    controller = RetryController(RetryPolicy(max_attempts=5), sleep=_Recorder().sleep)
    with pytest.raises(asyncio.CancelledError):
        await controller.run(cancelled)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_controller_is_single_use() -> None:
    factory, _ = _scripted("ok")
    controller = RetryController(RetryPolicy())
    await controller.run(factory)
    with pytest.raises(RuntimeError):
        await controller.run(factory)


def test_backoff_grows_and_caps() -> None:
    policy = RetryPolicy(initial_delay_s=1.0, backoff_multiplier=2.0, max_delay_s=5.0, jitter=False)
    delays = [compute_backoff_delay(policy, retry_index=i) for i in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_full_jitter_scales_base_delay() -> None:
    policy = RetryPolicy(initial_delay_s=2.0, jitter=True)
    assert compute_backoff_delay(policy, retry_index=1, rand=lambda: 0.25) == 0.5
    assert compute_backoff_delay(policy, retry_index=1, rand=lambda: 0.0) == 0.0
