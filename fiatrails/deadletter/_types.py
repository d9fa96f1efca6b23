"""
Dead-letter types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from fiatrails.retry import OperationKind


@dataclass(frozen=True, slots=True)
class DeadLetterEntry:
    """Terminal copy of an exhausted retry item."""

    id: int
    operation: OperationKind
    intent_id: str
    payload: dict[str, Any]
    attempts: int
    last_error: str | None
    created_at: int
    failed_at: int
    replayed_at: int | None = None

    def to_record(self) -> dict[str, Any]:
        """Persisted record shape handed to operators."""
        return {
            "operation": self.operation.value,
            "intentId": self.intent_id,
            "payload": self.payload,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "createdAt": self.created_at,
            "failedAt": self.failed_at,
        }


class ReplayOutcome(Enum):
    SUCCEEDED = auto()
    REQUEUED = auto()  # Transient again; back in the retry queue as a new item


__all__ = ("DeadLetterEntry", "ReplayOutcome")
