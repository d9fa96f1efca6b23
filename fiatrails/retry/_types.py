"""
Retry types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class OperationKind(Enum):
    """Ledger operations the scheduler knows how to re-issue."""

    SUBMIT = "submit"
    EXECUTE = "execute"
    REFUND = "refund"


@dataclass(frozen=True, slots=True)
class RetryItem:
    """
    One pending retryable operation.

    Invariant: attempt < max_attempts while the item exists.
    """

    id: int
    intent_id: str
    operation: OperationKind
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    next_retry_at: int
    created_at: int
    last_error: str | None = None


class Disposition(Enum):
    """What happened to an item after one sweep."""

    SUCCEEDED = auto()
    RESCHEDULED = auto()
    DEAD_LETTERED = auto()
    CLAIM_LOST = auto()  # Another sweeper moved the item first


@dataclass(slots=True)
class SweepReport:
    """Counts per disposition for one sweep."""

    counts: dict[Disposition, int] = field(default_factory=dict)

    def add(self, disposition: Disposition) -> None:
        self.counts[disposition] = self.counts.get(disposition, 0) + 1

    @property
    def processed(self) -> int:
        return sum(self.counts.values())

    @property
    def succeeded(self) -> int:
        return self.counts.get(Disposition.SUCCEEDED, 0)

    @property
    def rescheduled(self) -> int:
        return self.counts.get(Disposition.RESCHEDULED, 0)

    @property
    def dead_lettered(self) -> int:
        return self.counts.get(Disposition.DEAD_LETTERED, 0)


__all__ = ("OperationKind", "RetryItem", "Disposition", "SweepReport")
