"""
Core types for fiatrails.

Re-exports from kungfu + clock helpers shared by every component.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], int]
"""Returns the current time as epoch milliseconds."""


def system_clock() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(slots=True)
class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and by replay tooling that needs deterministic timestamps.
    """

    now_ms: int = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Clock
    "Clock",
    "system_clock",
    "ManualClock",
)
