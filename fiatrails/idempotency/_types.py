"""
Idempotency types — stored record and the three answers begin() can give.
"""

from __future__ import annotations

from dataclasses import dataclass


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Record — Stored State
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    """
    One caller-supplied key.

    Lifecycle:
        inserted (in flight) → completed once → purged after expires_at

    Note: request_fingerprint is stored for audit only. A reused key with a
    different body gets the first response replayed.
    """

    key: str
    request_fingerprint: str
    response_status: int | None
    response_body: str | None
    created_at: int
    completed_at: int | None
    expires_at: int

    @property
    def in_flight(self) -> bool:
        return self.completed_at is None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at


# ═══════════════════════════════════════════════════════════════════════════════
# Begin Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Fresh:
    """First sight: this caller owns the key and must complete it."""

    key: str


@dataclass(frozen=True, slots=True)
class InFlight:
    """Another caller is processing this key. Answer 409, do not reprocess."""

    key: str


@dataclass(frozen=True, slots=True)
class Completed:
    """Replay status and body exactly as first recorded."""

    key: str
    status: int
    body: str


type BeginOutcome = Fresh | InFlight | Completed


__all__ = (
    "IdempotencyRecord",
    "Fresh",
    "InFlight",
    "Completed",
    "BeginOutcome",
)
