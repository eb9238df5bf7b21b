"""Exponential backoff schedule.

`BackoffPolicy` is immutable and shared by every call made through a client.
Each logical call (a retried request, or one stream's reconnect loop) owns
its own `RetryState`; the two never share counters.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay schedule: min(min_delay * factor**attempt [+ jitter], max_delay).

    Attributes:
        min_delay: Delay before the first retry, in seconds. Must be > 0.
        max_delay: Upper bound for any single delay, in seconds.
        factor: Growth per attempt. Must be >= 1.0.
        jitter: Add a uniform random amount in [0, computed) to each delay.
        max_attempts: Total attempts allowed (first try included), or None
            for unbounded. Unbounded retrying relies on the caller cancelling.
    """

    min_delay: float = 15.0
    max_delay: float = 120.0
    factor: float = 2.0
    jitter: bool = True
    max_attempts: int | None = 4

    def __post_init__(self) -> None:
        if self.min_delay <= 0:
            raise ValueError(f"min_delay must be > 0, got {self.min_delay}")
        if self.factor < 1.0:
            raise ValueError(f"factor must be >= 1.0, got {self.factor}")
        if self.max_delay < self.min_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= min_delay ({self.min_delay})"
            )
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 or None, got {self.max_attempts}")

    def next_delay(self, attempt: int) -> float:
        """Delay to wait after the given zero-based attempt failed."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        try:
            computed = self.min_delay * self.factor**attempt
        except OverflowError:
            return self.max_delay
        if computed >= self.max_delay:
            return self.max_delay
        if self.jitter:
            computed += random.uniform(0, computed)
        return min(computed, self.max_delay)

    def has_attempts_left(self, state: RetryState) -> bool:
        """Whether another attempt may follow the one `state` is on."""
        if self.max_attempts is None:
            return True
        return state.attempt + 1 < self.max_attempts

    def with_min_delay(self, min_delay: float) -> BackoffPolicy:
        """Copy with a new starting delay (max_delay raised if needed)."""
        return replace(self, min_delay=min_delay, max_delay=max(self.max_delay, min_delay))

    def with_max_attempts(self, max_attempts: int | None) -> BackoffPolicy:
        """Copy with a different attempt bound."""
        return replace(self, max_attempts=max_attempts)


@dataclass
class RetryState:
    """Per-call retry bookkeeping. Never shared between calls."""

    attempt: int = 0
    last_delay: float | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        """Seconds since the call started."""
        return time.monotonic() - self.started_at

    def advance(self, delay: float) -> None:
        """Record a wait and move to the next attempt."""
        self.last_delay = delay
        self.attempt += 1

    def reset(self) -> None:
        """Start counting attempts from zero again."""
        self.attempt = 0
        self.last_delay = None
