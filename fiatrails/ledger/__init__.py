"""
Ledger boundary — the custody contract the coordinator drives.

The coordinator only ever sees a LedgerClient:

    from fiatrails.ledger import MemoryLedger, LedgerIntent

    ledger = MemoryLedger()
    await ledger.submit(LedgerIntent(...))
    await ledger.execute(intent_id)

Errors:
    LedgerUnavailable  — timeout / connection; the call may have landed
    LedgerRejected     — deterministic refusal, see .code

The ledger is the on-chain half of a two-state-machine design. Its status
is authoritative; the coordinator re-reads it before finalizing.
"""

from fiatrails.ledger._types import (
    IntentStatus,
    LedgerIntent,
    LedgerReceipt,
    LedgerEvent,
    LedgerError,
    LedgerUnavailable,
    LedgerRejected,
)
from fiatrails.ledger._client import LedgerClient
from fiatrails.ledger._memory import MemoryLedger

__all__ = (
    "IntentStatus",
    "LedgerIntent",
    "LedgerReceipt",
    "LedgerEvent",
    "LedgerError",
    "LedgerUnavailable",
    "LedgerRejected",
    "LedgerClient",
    "MemoryLedger",
)
