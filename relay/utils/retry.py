"""
Retry Utilities

Retry policy and backoff calculation for resilient Conversions API delivery.
"""

import random
from dataclasses import dataclass
from typing import Literal

BackoffStrategy = Literal["none", "fixed", "exponential"]


def calculate_backoff(
    attempt: int,
    base: float = 2,
    max_backoff: float = 32,
    strategy: BackoffStrategy = "exponential",
) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: Current retry attempt (0-indexed)
        base: Base delay in seconds (and exponential growth base factor)
        max_backoff: Maximum backoff time in seconds
        strategy: "none", "fixed" or "exponential"

    Returns:
        Backoff delay in seconds
    """
    if strategy == "none":
        return 0.0
    if strategy == "fixed":
        return float(min(base, max_backoff))
    backoff = min(base * (2**attempt), max_backoff)
    return float(backoff)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy for outbound delivery.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff: Delay strategy between attempts
        backoff_base: Base delay in seconds
        backoff_max: Cap on a single delay in seconds
        jitter: Randomize each delay within [0, delay]
    """

    max_attempts: int = 3
    backoff: BackoffStrategy = "exponential"
    backoff_base: float = 0.5
    backoff_max: float = 4.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (0-indexed)"""
        delay = calculate_backoff(
            attempt, self.backoff_base, self.backoff_max, self.backoff
        )
        if self.jitter and delay > 0:
            return random.uniform(0, delay)
        return delay

    def total_backoff_seconds(self) -> float:
        """Worst-case sum of delays between attempts (jitter only shortens them)"""
        return sum(
            calculate_backoff(attempt, self.backoff_base, self.backoff_max, self.backoff)
            for attempt in range(self.max_attempts - 1)
        )

    def max_blocking_seconds(self, timeout: float) -> float:
        """Upper bound on how long one delivery can hold the request open"""
        return self.max_attempts * timeout + self.total_backoff_seconds()
