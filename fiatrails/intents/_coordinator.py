"""
Intent coordinator — submit → confirm → execute / refund.

Exactly-once rests on two things only:
- the deterministic intent_id, inserted once (duplicate → DUPLICATE_INTENT)
- the PENDING guard, enforced by a conditional UPDATE locally and by the
  ledger's own status check remotely

Ledger status is authoritative. Before finalizing, the coordinator reads
it and reconciles the local row, so a ledger call whose reply was lost is
never repeated as a second credit.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from combinators import lift as L

from fiatrails._types import Clock, Result, Ok, Error, system_clock
from fiatrails.compliance import ComplianceGate
from fiatrails.config import Settings
from fiatrails.errors import (
    MintError,
    MintErrors,
    TerminalOperationError,
    TransientInfraError,
)
from fiatrails.intents._repo import IntentRepository
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
from fiatrails.ledger import (
    IntentStatus,
    LedgerClient,
    LedgerReceipt,
    LedgerRejected,
    LedgerUnavailable,
)
from fiatrails.retry import OperationKind, RetryQueue

logger = structlog.get_logger(component="coordinator")

DAY_SECONDS = 86_400


def derive_intent_id(user: str, external_reference: str, submitted_at: int) -> str:
    """0x-prefixed sha256 over user|reference|submitted_at."""
    digest = hashlib.sha256(f"{user}|{external_reference}|{submitted_at}".encode()).hexdigest()
    return "0x" + digest


def classify_ledger_error(e: Exception, intent_id: str) -> MintError:
    """Map a ledger exception onto the error taxonomy."""
    match e:
        case LedgerRejected(code=LedgerRejected.DUPLICATE_INTENT):
            return MintErrors.duplicate_intent(intent_id)
        case LedgerRejected(code=LedgerRejected.ALREADY_FINALIZED):
            return MintErrors.already_finalized(intent_id)
        case LedgerRejected(code=LedgerRejected.NOT_COMPLIANT):
            return MintErrors.not_compliant(intent_id)
        case LedgerRejected(code=LedgerRejected.INTENT_NOT_FOUND):
            # Submit may still be queued; the intent shows up later
            return MintErrors.transient(f"Intent {intent_id} not yet on ledger", e)
        case LedgerRejected():
            return MintErrors.ledger_mismatch(f"Ledger rejected {intent_id}: {e}")
        case LedgerUnavailable() | TimeoutError() | OSError():
            return MintErrors.transient(f"Ledger unavailable: {str(e) or type(e).__name__}", e)
        case _:
            return MintErrors.transient(f"Unexpected ledger failure: {e!r}", e)


class Coordinator:
    """Orchestrates the intent state machine against ledger and compliance."""

    def __init__(
        self,
        repo: IntentRepository,
        ledger: LedgerClient,
        compliance: ComplianceGate,
        queue: RetryQueue,
        settings: Settings,
        clock: Clock = system_clock,
    ) -> None:
        self._repo = repo
        self._ledger = ledger
        self._compliance = compliance
        self._queue = queue
        self._settings = settings
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Submit
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit(
        self,
        user: str,
        amount: int,
        target_class: str,
        external_reference: str,
        submitted_at: int | None = None,
    ) -> Result[SubmitOutcome, MintError]:
        """Validate, persist PENDING, lock custody on the ledger."""
        s = self._settings
        if not user or not external_reference:
            return Error(MintErrors.invalid_request("userAddress and txRef are required"))
        if amount <= 0:
            return Error(MintErrors.invalid_request("amount must be positive"))
        if not s.min_mint_amount <= amount <= s.max_mint_amount:
            return Error(
                MintErrors.invalid_request(
                    f"amount must be within {s.min_mint_amount}..{s.max_mint_amount}"
                )
            )
        if target_class != s.target_class:
            return Error(
                MintErrors.invalid_request(f"countryCode must be {s.target_class}")
            )

        at = self._clock() // 1000 if submitted_at is None else submitted_at
        already = await self._repo.submitted_since(user, at - DAY_SECONDS)
        if already + amount > s.daily_mint_limit:
            logger.warning("daily_limit_exceeded", user=user, amount=amount, already=already)
            return Error(MintErrors.invalid_request("Daily mint limit exceeded"))

        intent = Intent(
            intent_id=derive_intent_id(user, external_reference, at),
            user=user,
            amount=amount,
            target_class=target_class,
            external_reference=external_reference,
            submitted_at=at,
        )
        if not await self._repo.insert(intent):
            logger.warning(
                "duplicate_intent",
                intent_id=intent.intent_id,
                user=user,
                external_reference=external_reference,
            )
            return Error(MintErrors.duplicate_intent(intent.intent_id))

        logger.info(
            "intent_submitted",
            intent_id=intent.intent_id,
            user=user,
            amount=amount,
            target_class=target_class,
        )

        match await self._submit_to_ledger(intent):
            case Ok(_):
                return Ok(Created(intent))
            case Error(err) if err.is_transient:
                return Ok(await self._enqueue(intent.intent_id, OperationKind.SUBMIT, err))
            case Error(err):
                logger.error("ledger_submit_rejected", intent_id=intent.intent_id, error=err.message)
                return Error(err)

    async def _submit_to_ledger(self, intent: Intent) -> Result[str, MintError]:
        match await self._ledger_call(intent.intent_id, lambda: self._ledger.submit(intent.to_ledger())):
            case Error(MintError(code="duplicate_intent")):
                # Deterministic id: the ledger already holds this exact intent
                return Ok(intent.intent_id)
            case Error(err) if not err.is_transient and err.code != "already_finalized":
                await self._release_rejected(intent, err)
                return Error(err)
            case other:
                return other

    async def _release_rejected(self, intent: Intent, err: MintError) -> None:
        """The ledger never took custody: close the row so it stops counting toward limits."""
        reason = f"ledger rejected submit: {err.message}"
        if await self._repo.transition(intent.intent_id, IntentStatus.REFUNDED, self._clock(), reason):
            logger.warning("rejected_intent_released", intent_id=intent.intent_id, error=err.message)

    # ═══════════════════════════════════════════════════════════════════════════
    # Confirm / Execute
    # ═══════════════════════════════════════════════════════════════════════════

    async def confirm(
        self,
        intent_id: str | None = None,
        external_reference: str | None = None,
    ) -> Result[ExecuteOutcome, MintError]:
        """Payment confirmed: resolve the intent and execute it."""
        if intent_id:
            intent = await self._repo.get(intent_id)
        elif external_reference:
            intent = await self._repo.find_by_reference(external_reference)
        else:
            return Error(MintErrors.invalid_request("intentId or txRef is required"))

        if intent is None:
            return Error(MintErrors.intent_not_found(intent_id or external_reference or ""))
        if intent.status.is_final:
            logger.warning(
                "confirm_already_finalized",
                intent_id=intent.intent_id,
                status=intent.status.value,
            )
            return Error(MintErrors.already_finalized(intent.intent_id))

        return await self.execute(intent.intent_id)

    async def execute(self, intent_id: str) -> Result[ExecuteOutcome, MintError]:
        intent = await self._repo.get(intent_id)
        if intent is None:
            return Error(MintErrors.intent_not_found(intent_id))
        if intent.status.is_final:
            return Error(MintErrors.already_finalized(intent_id))

        match await self._execute(intent):
            case Ok(executed):
                return Ok(executed)
            case Error(err) if err.is_transient:
                return Ok(await self._enqueue(intent_id, OperationKind.EXECUTE, err))
            case Error(err):
                return Error(err)

    async def _execute(self, intent: Intent) -> Result[Executed, MintError]:
        match await self._ledger_status(intent):
            case Error(err):
                return Error(err)
            case Ok(_):
                pass

        # Compliance is evaluated now, not at submission
        if not await self._compliance.is_compliant(intent.user):
            logger.info("compliance_rejected", intent_id=intent.intent_id, user=intent.user)
            return Error(MintErrors.not_compliant(intent.user))

        match await self._ledger_call(intent.intent_id, lambda: self._ledger.execute(intent.intent_id)):
            case Ok(receipt):
                return await self._finalize(intent, IntentStatus.EXECUTED, receipt, None)
            case Error(MintError(code="already_finalized")):
                return await self._reconcile_after_rejection(intent)
            case Error(err):
                return Error(err)

    # ═══════════════════════════════════════════════════════════════════════════
    # Refund
    # ═══════════════════════════════════════════════════════════════════════════

    async def refund(self, intent_id: str, reason: str) -> Result[RefundOutcome, MintError]:
        if not reason:
            return Error(MintErrors.invalid_request("reason is required"))
        intent = await self._repo.get(intent_id)
        if intent is None:
            return Error(MintErrors.intent_not_found(intent_id))
        if intent.status.is_final:
            return Error(MintErrors.already_finalized(intent_id))

        match await self._refund(intent, reason):
            case Ok(refunded):
                return Ok(refunded)
            case Error(err) if err.is_transient:
                return Ok(await self._enqueue(intent_id, OperationKind.REFUND, err, reason=reason))
            case Error(err):
                return Error(err)

    async def _refund(self, intent: Intent, reason: str) -> Result[Refunded, MintError]:
        match await self._ledger_status(intent):
            case Error(err):
                return Error(err)
            case Ok(_):
                pass

        match await self._ledger_call(
            intent.intent_id, lambda: self._ledger.refund(intent.intent_id, reason)
        ):
            case Ok(receipt):
                return await self._finalize(intent, IntentStatus.REFUNDED, receipt, reason)
            case Error(MintError(code="already_finalized")):
                return await self._reconcile_after_rejection(intent)
            case Error(err):
                return Error(err)

    # ═══════════════════════════════════════════════════════════════════════════
    # Retry entry point
    # ═══════════════════════════════════════════════════════════════════════════

    async def retry_operation(self, operation: OperationKind, payload: dict[str, Any]) -> None:
        """
        Re-issue one queued operation.

        Returns when the work is done, including when the status guard shows
        it already happened. Raises TransientInfraError to be retried later,
        TerminalOperationError when retrying cannot help.
        """
        intent_id = payload.get("intentId", "")
        intent = await self._repo.get(intent_id)
        if intent is None:
            raise TerminalOperationError(MintErrors.intent_not_found(intent_id))

        result: Result[Any, MintError]
        match operation:
            case OperationKind.SUBMIT if intent.status.is_final:
                return
            case OperationKind.SUBMIT:
                result = await self._submit_to_ledger(intent)
            case OperationKind.EXECUTE if intent.status.is_final:
                return
            case OperationKind.EXECUTE:
                result = await self._execute(intent)
            case OperationKind.REFUND if intent.status.is_final:
                return
            case OperationKind.REFUND:
                result = await self._refund(intent, payload.get("reason") or "refund")

        match result:
            case Ok(_):
                logger.info("retry_operation_done", intent_id=intent_id, operation=operation.value)
            case Error(err) if err.is_transient:
                raise TransientInfraError(err)
            case Error(MintError(code="already_finalized")):
                logger.info(
                    "retry_operation_already_done",
                    intent_id=intent_id,
                    operation=operation.value,
                )
            case Error(err):
                raise TerminalOperationError(err)

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    async def _ledger_call[T](
        self,
        intent_id: str,
        call: Callable[[], Awaitable[T]],
    ) -> Result[T, MintError]:
        """Run one ledger call under the RPC timeout, errors classified."""
        timeout = self._settings.rpc_timeout.total_seconds()

        async def bounded() -> T:
            async with asyncio.timeout(timeout):
                return await call()

        return await L.catching_async(
            bounded,
            on_error=lambda e: classify_ledger_error(e, intent_id),
        )

    async def _ledger_status(self, intent: Intent) -> Result[IntentStatus, MintError]:
        """
        Ledger status for a locally PENDING intent.

        A ledger-side finalization is copied into the local row and reported
        as ALREADY_FINALIZED. An intent the ledger never saw is transient.
        """
        match await self._ledger_call(intent.intent_id, lambda: self._ledger.get_status(intent.intent_id)):
            case Error(err):
                return Error(err)
            case Ok(None):
                return Error(MintErrors.transient(f"Intent {intent.intent_id} not yet on ledger"))
            case Ok(IntentStatus.PENDING):
                return Ok(IntentStatus.PENDING)
            case Ok(status):
                await self._reconcile(intent, status)
                return Error(MintErrors.already_finalized(intent.intent_id))

    async def _reconcile_after_rejection(self, intent: Intent) -> Result[Any, MintError]:
        match await self._ledger_call(intent.intent_id, lambda: self._ledger.get_status(intent.intent_id)):
            case Ok(status) if status is not None and status.is_final:
                await self._reconcile(intent, status)
            case _:
                pass
        return Error(MintErrors.already_finalized(intent.intent_id))

    async def _reconcile(self, intent: Intent, status: IntentStatus) -> None:
        if await self._repo.transition(intent.intent_id, status, self._clock()):
            logger.warning(
                "intent_reconciled",
                intent_id=intent.intent_id,
                status=status.value,
            )

    async def _finalize(
        self,
        intent: Intent,
        status: IntentStatus,
        receipt: LedgerReceipt,
        reason: str | None,
    ) -> Result[Any, MintError]:
        now = self._clock()
        if not await self._repo.transition(intent.intent_id, status, now, reason):
            logger.warning(
                "finalize_lost_race",
                intent_id=intent.intent_id,
                status=status.value,
            )
            return Error(MintErrors.already_finalized(intent.intent_id))

        final = intent.with_status(status, now, reason)
        logger.info(
            "intent_finalized",
            intent_id=intent.intent_id,
            status=status.value,
            tx_hash=receipt.tx_hash,
        )
        if status is IntentStatus.EXECUTED:
            return Ok(Executed(final, receipt))
        return Ok(Refunded(final, receipt))

    async def _enqueue(
        self,
        intent_id: str,
        operation: OperationKind,
        error: MintError,
        **extra: str,
    ) -> Queued:
        await self._queue.enqueue(intent_id, operation, {"intentId": intent_id, **extra}, error.message)
        return Queued(intent_id, operation)


__all__ = ("Coordinator", "derive_intent_id", "classify_ledger_error", "DAY_SECONDS")
