"""
Retry pacing for item state reads.

Reads are the only engine call that is safe to repeat blindly after a
transient store error; mutations report `Transient` and let the caller
check the item state instead.
"""

import random


def calculate_backoff(
    attempt: int, base: float = 0.05, max_delay: float = 1.0, jitter: float = 0.025
) -> float:
    """
    Delay before retry number `attempt` (0-indexed).

    Doubles from `base` up to `max_delay`, then shifts by a uniform
    amount in [-jitter, jitter] so concurrent readers spread out.
    The result is clamped at zero.
    """
    delay = min(base * (2**attempt), max_delay) + random.uniform(-jitter, jitter)
    return max(0.0, delay)


class RandomizedBackoff:
    """Retry budget for one read: hands out delays until max_attempts are used."""

    def __init__(
        self,
        max_attempts: int = 3,
        base: float = 0.05,
        max_delay: float = 1.0,
        jitter: float = 0.025,
    ):
        self.max_attempts = max_attempts
        self.base = base
        self.max_delay = max_delay
        self.jitter = jitter
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next(self) -> float:
        delay = calculate_backoff(self.attempt, self.base, self.max_delay, self.jitter)
        self.attempt += 1
        return delay

    def reset(self):
        self.attempt = 0
