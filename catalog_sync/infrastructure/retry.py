"""
Retry policy shared by every call site that talks to a remote system.

One ``RetryPolicy`` is built per call site (page fetch, total-count probe,
entity writes, rollup statements) and drives tenacity with the site's attempt
ceiling, backoff shape, and retryable-error predicate. Exhausting the ceiling
re-raises the last underlying exception so callers can wrap it with context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Backoff = Literal["fixed", "exponential"]


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt ceiling plus backoff for one call site.

    Attributes
    ----------
    max_attempts : int
        Total attempts including the first call.
    base_delay : float
        Delay before the second attempt, in seconds.
    max_delay : float
        Upper bound for exponential delays.
    backoff : {"fixed", "exponential"}
        Fixed waits ``base_delay`` every time; exponential doubles it per attempt.
    jitter : bool
        Randomize exponential waits (full jitter).
    retry_on : tuple of exception types
        Exceptions considered transient. Narrowed further by ``is_transient``.
    is_transient : callable
        Predicate applied to exceptions matching ``retry_on``.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    backoff: Backoff = "exponential"
    jitter: bool = False
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    is_transient: Callable[[BaseException], bool] = field(default=_always, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def _wait(self) -> wait_base:
        if self.backoff == "fixed":
            return wait_fixed(self.base_delay)
        if self.jitter:
            return wait_random_exponential(multiplier=self.base_delay, max=self.max_delay)
        return wait_exponential(multiplier=self.base_delay, min=self.base_delay, max=self.max_delay)

    def _should_retry(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on) and self.is_transient(exc)

    def retrying(self, label: str) -> AsyncRetrying:
        """Build a tenacity controller that logs each retry under ``label``."""

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            log.warning(
                f"[RETRY] {label} failed (attempt {state.attempt_number}/{self.max_attempts})",
                extra={
                    "label": label,
                    "attempt": state.attempt_number,
                    "max_attempts": self.max_attempts,
                    "sleep_seconds": round(state.next_action.sleep, 3) if state.next_action else 0,
                    "error": repr(exc),
                },
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception(self._should_retry),
            before_sleep=_before_sleep,
            reraise=True,
        )

    async def call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under this policy and return its result."""
        async for attempt in self.retrying(label):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryPolicy", "Backoff"]
