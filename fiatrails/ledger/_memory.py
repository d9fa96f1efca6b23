"""
In-memory ledger — custody, balances and the event log in one process.

Behaves like the escrow contract: it keeps its own status per intent and
rejects a second execute/refund with ALREADY_FINALIZED, whatever the
coordinator believes. Fault injection makes the transient paths testable:

    ledger = MemoryLedger()
    ledger.fail_next(2, "execute")   # next two execute calls time out
    ledger.lose_next_reply(1)        # next call applies, then "times out"
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter
from dataclasses import dataclass, field

from fiatrails.ledger._types import (
    IntentStatus,
    LedgerEvent,
    LedgerIntent,
    LedgerReceipt,
    LedgerRejected,
    LedgerUnavailable,
)


@dataclass(slots=True)
class _Custody:
    intent: LedgerIntent
    status: IntentStatus = IntentStatus.PENDING


@dataclass
class MemoryLedger:
    """
    Ledger double with real custody accounting.

    custody  — amount locked per user, awaiting execute/refund
    balances — minted amount per user
    refunded — amount returned per user
    """

    custody: Counter[str] = field(default_factory=Counter)
    balances: Counter[str] = field(default_factory=Counter)
    refunded: Counter[str] = field(default_factory=Counter)
    events: list[LedgerEvent] = field(default_factory=list)
    calls: Counter[str] = field(default_factory=Counter)

    _intents: dict[str, _Custody] = field(default_factory=dict)
    _failures: Counter[str] = field(default_factory=Counter)
    _lost_replies: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    # ═══════════════════════════════════════════════════════════════════════════
    # Fault injection
    # ═══════════════════════════════════════════════════════════════════════════

    def fail_next(self, count: int = 1, *operations: str) -> None:
        """Make the next count calls of each operation (default: all) raise LedgerUnavailable."""
        for op in operations or ("submit", "execute", "refund", "get_status", "ping"):
            self._failures[op] += count

    def lose_next_reply(self, count: int = 1) -> None:
        """Apply the next count mutating calls, then raise LedgerUnavailable anyway."""
        self._lost_replies += count

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            raise LedgerUnavailable(f"ledger {operation} timed out")

    def _maybe_lose_reply(self, operation: str) -> None:
        if self._lost_replies > 0:
            self._lost_replies -= 1
            raise LedgerUnavailable(f"ledger {operation} reply lost")

    # ═══════════════════════════════════════════════════════════════════════════
    # LedgerClient
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit(self, intent: LedgerIntent) -> str:
        async with self._lock:
            self._maybe_fail("submit")
            if intent.intent_id in self._intents:
                raise LedgerRejected(
                    LedgerRejected.DUPLICATE_INTENT,
                    f"intent {intent.intent_id} already submitted",
                )
            self._intents[intent.intent_id] = _Custody(intent)
            self.custody[intent.user] += intent.amount
            self._emit("IntentSubmitted", intent)
            self._maybe_lose_reply("submit")
            return intent.intent_id

    async def execute(self, intent_id: str) -> LedgerReceipt:
        async with self._lock:
            self._maybe_fail("execute")
            held = self._finalizable(intent_id)
            held.status = IntentStatus.EXECUTED
            self.custody[held.intent.user] -= held.intent.amount
            self.balances[held.intent.user] += held.intent.amount
            self._emit("MintExecuted", held.intent)
            self._maybe_lose_reply("execute")
            return LedgerReceipt(intent_id, _tx_hash("execute", intent_id))

    async def refund(self, intent_id: str, reason: str) -> LedgerReceipt:
        async with self._lock:
            self._maybe_fail("refund")
            held = self._finalizable(intent_id)
            held.status = IntentStatus.REFUNDED
            self.custody[held.intent.user] -= held.intent.amount
            self.refunded[held.intent.user] += held.intent.amount
            self._emit("MintRefunded", held.intent, reason)
            self._maybe_lose_reply("refund")
            return LedgerReceipt(intent_id, _tx_hash("refund", intent_id))

    async def get_status(self, intent_id: str) -> IntentStatus | None:
        self._maybe_fail("get_status")
        held = self._intents.get(intent_id)
        return None if held is None else held.status

    async def ping(self) -> None:
        self._maybe_fail("ping")

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    def _finalizable(self, intent_id: str) -> _Custody:
        held = self._intents.get(intent_id)
        if held is None:
            raise LedgerRejected(
                LedgerRejected.INTENT_NOT_FOUND, f"intent {intent_id} not found"
            )
        if held.status.is_final:
            raise LedgerRejected(
                LedgerRejected.ALREADY_FINALIZED,
                f"intent {intent_id} already {held.status.value}",
            )
        return held

    def _emit(self, name: str, intent: LedgerIntent, reason: str | None = None) -> None:
        self.events.append(
            LedgerEvent(
                name=name,
                intent_id=intent.intent_id,
                user=intent.user,
                target_class=intent.target_class,
                amount=intent.amount,
                external_reference=intent.external_reference,
                reason=reason,
            )
        )

    def events_for(self, intent_id: str) -> list[LedgerEvent]:
        return [e for e in self.events if e.intent_id == intent_id]


def _tx_hash(operation: str, intent_id: str) -> str:
    return "0x" + hashlib.sha256(f"{operation}:{intent_id}".encode()).hexdigest()


__all__ = ("MemoryLedger",)
