"""
Ledger client protocol.

The coordinator receives a LedgerClient by injection. There is no shared
provider or signer at module level, so tests swap in MemoryLedger freely.
"""

from __future__ import annotations

from typing import Protocol

from fiatrails.ledger._types import IntentStatus, LedgerIntent, LedgerReceipt


class LedgerClient(Protocol):
    """
    Custody ledger (escrow contract) seen from the coordinator.

    Every method may raise LedgerUnavailable (transient) or
    LedgerRejected (deterministic). The ledger guards its own status:
    a second execute/refund of one intent is rejected ALREADY_FINALIZED.
    """

    async def submit(self, intent: LedgerIntent) -> str:
        """Lock custody for intent. Returns the ledger's intent id."""
        ...

    async def execute(self, intent_id: str) -> LedgerReceipt:
        """Release custody as a mint to the intent's user."""
        ...

    async def refund(self, intent_id: str, reason: str) -> LedgerReceipt:
        """Return custody to the intent's user."""
        ...

    async def get_status(self, intent_id: str) -> IntentStatus | None:
        """Ledger-side status, None if the ledger never saw the intent."""
        ...

    async def ping(self) -> None:
        """Raise LedgerUnavailable if the ledger cannot be reached."""
        ...


__all__ = ("LedgerClient",)
