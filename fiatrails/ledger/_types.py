"""
Ledger types — what crosses the ledger boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# Intent Status — shared by the ledger and the coordinator
# ═══════════════════════════════════════════════════════════════════════════════


class IntentStatus(Enum):
    """
    Status of a mint intent.

    Lifecycle:
        PENDING → EXECUTED
                → REFUNDED
    Each transition happens at most once.
    """

    PENDING = "pending"
    EXECUTED = "executed"
    REFUNDED = "refunded"

    @property
    def is_final(self) -> bool:
        return self is not IntentStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════════════
# Boundary payloads
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LedgerIntent:
    """Everything the ledger needs to lock custody for one intent."""

    intent_id: str
    user: str
    amount: int
    target_class: str
    external_reference: str
    submitted_at: int


@dataclass(frozen=True, slots=True)
class LedgerReceipt:
    """Proof the ledger applied a state change."""

    intent_id: str
    tx_hash: str


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    Entry of the ledger's append-only event log.

    intent_id, user and target_class are lookup keys; amount and
    external_reference are data.
    """

    name: str  # IntentSubmitted | MintExecuted | MintRefunded
    intent_id: str
    user: str
    target_class: str
    amount: int
    external_reference: str
    reason: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Errors raised by ledger clients
# ═══════════════════════════════════════════════════════════════════════════════


class LedgerError(Exception):
    """Base class for ledger failures."""


class LedgerUnavailable(LedgerError):
    """Connection failure or timeout. The side effect may or may not have landed."""


class LedgerRejected(LedgerError):
    """The ledger refused the call. Deterministic: retrying will not help."""

    DUPLICATE_INTENT = "DUPLICATE_INTENT"
    INTENT_NOT_FOUND = "INTENT_NOT_FOUND"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"
    NOT_COMPLIANT = "NOT_COMPLIANT"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


__all__ = (
    "IntentStatus",
    "LedgerIntent",
    "LedgerReceipt",
    "LedgerEvent",
    "LedgerError",
    "LedgerUnavailable",
    "LedgerRejected",
)
