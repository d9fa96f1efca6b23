"""
Intent model and coordinator outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from fiatrails.ledger import IntentStatus, LedgerIntent, LedgerReceipt
from fiatrails.retry import OperationKind


# ═══════════════════════════════════════════════════════════════════════════════
# Intent
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Intent:
    """
    One fiat → ledger conversion attempt.

    Status moves PENDING → EXECUTED or PENDING → REFUNDED, once.
    Rows are never deleted.
    """

    intent_id: str
    user: str
    amount: int
    target_class: str
    external_reference: str
    submitted_at: int  # epoch seconds
    status: IntentStatus = IntentStatus.PENDING
    refund_reason: str | None = None
    finalized_at: int | None = None

    def with_status(
        self,
        status: IntentStatus,
        finalized_at: int,
        refund_reason: str | None = None,
    ) -> Intent:
        return replace(
            self,
            status=status,
            finalized_at=finalized_at,
            refund_reason=refund_reason,
        )

    def to_ledger(self) -> LedgerIntent:
        return LedgerIntent(
            intent_id=self.intent_id,
            user=self.user,
            amount=self.amount,
            target_class=self.target_class,
            external_reference=self.external_reference,
            submitted_at=self.submitted_at,
        )

    def to_json(self) -> dict[str, Any]:
        # Amount as string: smallest-unit values exceed JSON-safe integers
        return {
            "intentId": self.intent_id,
            "userAddress": self.user,
            "amount": str(self.amount),
            "countryCode": self.target_class,
            "txRef": self.external_reference,
            "submittedAt": self.submitted_at,
            "status": self.status.value,
            "refundReason": self.refund_reason,
            "finalizedAt": self.finalized_at,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Created:
    intent: Intent


@dataclass(frozen=True, slots=True)
class Executed:
    intent: Intent
    receipt: LedgerReceipt


@dataclass(frozen=True, slots=True)
class Refunded:
    intent: Intent
    receipt: LedgerReceipt


@dataclass(frozen=True, slots=True)
class Queued:
    """Ledger call failed transiently and now belongs to the retry scheduler."""

    intent_id: str
    operation: OperationKind


type SubmitOutcome = Created | Queued
type ExecuteOutcome = Executed | Queued
type RefundOutcome = Refunded | Queued


__all__ = (
    "Intent",
    "Created",
    "Executed",
    "Refunded",
    "Queued",
    "SubmitOutcome",
    "ExecuteOutcome",
    "RefundOutcome",
)
