"""
Backoff — deterministic delay schedule.
"""

from __future__ import annotations

from fiatrails.config import RetryPolicy


def backoff(attempt: int, policy: RetryPolicy) -> int:
    """
    Delay in ms before retry number attempt (0-based).

    Monotonically non-decreasing, capped at max_delay_ms, no jitter.

        691, 1382, 2764, 5528, 11056, 22112, 30000, 30000, ...
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    return min(policy.initial_delay_ms * policy.multiplier**attempt, policy.max_delay_ms)


def schedule(policy: RetryPolicy, attempts: int | None = None) -> list[int]:
    """The first attempts delays (default: policy.max_attempts)."""
    count = policy.max_attempts if attempts is None else attempts
    return [backoff(n, policy) for n in range(count)]


__all__ = ("backoff", "schedule")
