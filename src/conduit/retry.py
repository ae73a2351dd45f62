"""Async retry with explicit state and error contracts.

Design goals:
- Explicit state (policy + per-request controller)
- Retry decisions come from ErrorKind, never from message text
- The backoff delay is a cancellable suspension
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from conduit.errors import (
    AttemptRecord,
    ErrorKind,
    RetriesExhausted,
    describe,
    error_kind,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 3
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 8.0
    jitter: bool = True  # "full jitter" when enabled
    #: Upper bound applied to provider retry-after hints.
    max_retry_after_s: float = 60.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_retry_after_s < 0:
            raise ValueError("RetryPolicy.max_retry_after_s must be >= 0")


class RetryState(enum.Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def compute_backoff_delay(
    policy: RetryPolicy,
    *,
    retry_index: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return the sleep before retry number *retry_index* (1-based)."""
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return rand() * base


class RetryController:
    """Drives one request through the retry state machine.

    Instances are per request and must not be shared between calls.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        classify: Callable[[BaseException], ErrorKind] = error_kind,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy
        self.state = RetryState.ATTEMPTING
        self.attempts = 0
        self.history: list[AttemptRecord] = []
        self._classify = classify
        self._sleep = sleep
        self._rand = rand

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Run *factory* until it succeeds or the policy gives up.

        Raises:
            RetriesExhausted: When retryable failures used up every attempt.
            Exception: The original error, unchanged, for permanent failures.
        """
        if self.state is not RetryState.ATTEMPTING:
            raise RuntimeError(f"RetryController already {self.state.value}")

        while True:
            self.attempts += 1
            try:
                result = await factory()
            except Exception as exc:
                kind = self._classify(exc)
                if kind is ErrorKind.PERMANENT:
                    self._record(kind, exc, delay=None)
                    self.state = RetryState.EXHAUSTED
                    raise

                if self.attempts >= self.policy.max_attempts:
                    self._record(kind, exc, delay=None)
                    self.state = RetryState.EXHAUSTED
                    raise RetriesExhausted(
                        f"Gave up after {self.attempts} attempt(s): {exc}",
                        attempts=self.attempts,
                        last_error=exc,
                        history=tuple(self.history),
                        hint=getattr(exc, "hint", None),
                    ) from exc

                delay = self._next_delay(exc)
                self._record(kind, exc, delay=delay)
                self.state = RetryState.BACKING_OFF
                logger.warning(
                    "Retrying in %.2fs (attempt %d/%d, %s)",
                    delay,
                    self.attempts,
                    self.policy.max_attempts,
                    describe(exc),
                )
                if delay > 0:
                    await self._sleep(delay)
                self.state = RetryState.ATTEMPTING
            else:
                self.state = RetryState.SUCCEEDED
                return result

    def _next_delay(self, exc: BaseException) -> float:
        retry_after = getattr(exc, "retry_after_s", None)
        if isinstance(retry_after, (int, float)) and retry_after >= 0:
            return min(float(retry_after), self.policy.max_retry_after_s)
        return compute_backoff_delay(
            self.policy, retry_index=self.attempts, rand=self._rand
        )

    def _record(self, kind: ErrorKind, exc: BaseException, *, delay: float | None) -> None:
        self.history.append(
            AttemptRecord(
                attempt=self.attempts,
                kind=kind,
                status_code=getattr(exc, "status_code", None),
                delay_s=delay,
                error=type(exc).__name__,
            )
        )
