"""Retry/backoff decisions for failed attempts."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RequeueForRetry:
    delay_seconds: float


@dataclass(frozen=True)
class DeadLetter:
    reason: str


RetryDecision = RequeueForRetry | DeadLetter


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by a maximum delay and attempt count.

    ``max_attempts`` counts every claim, so the default of 4 allows three
    retries after the first attempt. Retryability is decided by the caller;
    the policy never looks at the error itself.
    """

    base_delay: float = 2.0
    max_delay: float = 300.0
    max_attempts: int = 4

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt_count: int) -> float:
        exponent = max(attempt_count - 1, 0)
        # Cap the exponent so huge attempt counts cannot overflow.
        if exponent > 62:
            return self.max_delay
        return min(self.base_delay * (2**exponent), self.max_delay)

    def decide(
        self, attempt_count: int, retryable: bool, max_attempts: int | None = None
    ) -> RetryDecision:
        ceiling = max_attempts if max_attempts is not None else self.max_attempts
        if not retryable:
            return DeadLetter(reason="permanent failure")
        if attempt_count >= ceiling:
            return DeadLetter(reason=f"retry budget exhausted after {attempt_count} attempts")
        return RequeueForRetry(delay_seconds=self.delay_for(attempt_count))
