"""
fiatrails — fiat payment confirmations to ledger mints, at most once.

Components (leaves first):
    ledger       — custody contract boundary (LedgerClient, MemoryLedger)
    compliance   — eligibility gate over per-user records
    auth         — HMAC envelope for client and webhook channels
    idempotency  — begin / complete by caller-supplied key
    intents      — submit → confirm → execute / refund
    retry        — backoff schedule, durable queue, sweeper
    deadletter   — terminal archive with operator replay
    api          — FastAPI routes wiring it all together

Quick start:
    from fiatrails import Settings, build_services
    from fiatrails.ledger import MemoryLedger

    settings = Settings().with_secrets(client="c-secret", webhook="w-secret")
    services = await build_services(settings, ledger=MemoryLedger())

    match await services.coordinator.submit("0xabc", 10**18, "KES", "MPESA-1"):
        case Ok(Created(intent)):
            await services.coordinator.confirm(intent.intent_id)
"""

from fiatrails._types import (
    Result,
    Ok,
    Error,
    LazyCoroResult,
    Clock,
    system_clock,
    ManualClock,
)
from fiatrails.config import RetryPolicy, Settings
from fiatrails.errors import (
    ErrorKind,
    MintError,
    MintErrors,
    TransientInfraError,
    TerminalOperationError,
)
from fiatrails.services import Services, build_services

__all__ = (
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    "Clock",
    "system_clock",
    "ManualClock",
    "RetryPolicy",
    "Settings",
    "ErrorKind",
    "MintError",
    "MintErrors",
    "TransientInfraError",
    "TerminalOperationError",
    "Services",
    "build_services",
)
