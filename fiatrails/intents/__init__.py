"""
Intent coordinator and state machine.

    coordinator = Coordinator(repo, ledger, compliance, retry_queue, settings)

    match await coordinator.submit("0xabc", 10**18, "KES", "MPESA-123"):
        case Ok(Created(intent)):
            ...  # 201
        case Ok(Queued()):
            ...  # 202, the retry scheduler owns it now
        case Error(err):
            ...  # err.kind decides the status

    await coordinator.confirm(external_reference="MPESA-123")

Lifecycle:
    PENDING → EXECUTED   (confirm / execute, compliance checked at this point)
            → REFUNDED   (refund)
"""

from fiatrails.intents._types import (
    Intent,
    Created,
    Executed,
    Refunded,
    Queued,
    SubmitOutcome,
    ExecuteOutcome,
    RefundOutcome,
)
from fiatrails.intents._repo import IntentRepository
from fiatrails.intents._coordinator import (
    DAY_SECONDS,
    Coordinator,
    derive_intent_id,
    classify_ledger_error,
)

__all__ = (
    "Intent",
    "Created",
    "Executed",
    "Refunded",
    "Queued",
    "SubmitOutcome",
    "ExecuteOutcome",
    "RefundOutcome",
    "IntentRepository",
    "DAY_SECONDS",
    "Coordinator",
    "derive_intent_id",
    "classify_ledger_error",
)
