"""Bounded exponential backoff for completion requests."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Iterator


@dataclass(frozen=True, slots=True)
class Attempt:
    """One planned request: its 1-based number and the wait before it."""

    number: int
    delay: float


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Finite, restartable sequence of attempts.

    The first attempt is immediate. Retry ``n`` waits
    ``base_delay * 2 ** (n - 1)`` plus a random jitter in ``[0, max_jitter]``.
    Delays never decrease, even when the jitter of an earlier retry was larger.
    """

    max_attempts: int = 3
    base_delay: float = 0.8
    max_jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_jitter < 0:
            raise ValueError("delays must be >= 0")

    def attempts(self, rng: Callable[[], float] = random.random) -> Iterator[Attempt]:
        """Yield every attempt of a fresh request."""
        previous = 0.0
        yield Attempt(number=1, delay=0.0)
        for retry in range(1, self.max_attempts):
            delay = self.base_delay * (2 ** (retry - 1)) + rng() * self.max_jitter
            previous = max(previous, delay)
            yield Attempt(number=retry + 1, delay=previous)
