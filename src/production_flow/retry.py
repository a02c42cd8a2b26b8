"""Outer retry policy for whole submit-and-poll cycles."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from .errors import GenerationError, PersistenceError, ResultFormatError
from .models.job import JobKind

MODERATION_PATTERNS: tuple[str, ...] = (
    "flagged as sensitive",
    "e005",
    "content policy",
    "safety",
    "moderation",
    "inappropriate",
    "violates",
)

TRANSIENT_PATTERNS: tuple[str, ...] = (
    "429",
    "503",
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "service unavailable",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    initial_delay: float = 5.0
    multiplier: float = 1.5
    jitter: float = 0.2
    retryable_patterns: tuple[str, ...] = field(default=MODERATION_PATTERNS + TRANSIENT_PATTERNS)

    def is_retryable(self, exc: BaseException) -> bool:
        """Check whether a failed attempt may be resubmitted."""
        if isinstance(exc, (ResultFormatError, PersistenceError)):
            return False
        if not isinstance(exc, GenerationError):
            return False
        if not self.retryable_patterns:
            return True
        message = str(exc).lower()
        return any(pattern in message for pattern in self.retryable_patterns)

    def should_retry(self, attempt: int, exc: BaseException) -> bool:
        return attempt < self.max_attempts and self.is_retryable(exc)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based), with ±jitter/2 spread."""
        base = self.initial_delay * (self.multiplier ** (attempt - 1))
        spread = base * self.jitter * (random.random() - 0.5)
        return max(0.0, base + spread)


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)


def default_policies(*, max_attempts: int = 3, initial_delay: float = 5.0) -> dict[JobKind, RetryPolicy]:
    """Kinds that resubmit on retryable failure; everything else runs once."""
    outer = RetryPolicy(max_attempts=max_attempts, initial_delay=initial_delay)
    return {
        JobKind.video: outer,
        JobKind.trailer: outer,
    }


__all__ = [
    "MODERATION_PATTERNS",
    "RetryPolicy",
    "SINGLE_ATTEMPT",
    "TRANSIENT_PATTERNS",
    "default_policies",
]
