"""
Idempotency — deduplicate inbound requests by caller-supplied key.

    keys = IdempotencyKeys(IdempotencyStore(session_factory), window_ms=86_400_000)

    match await keys.begin("order-42", fingerprint(body)):
        case Ok(Fresh()):
            async with keys.completion("order-42") as slot:
                ...
                await slot.complete(201, '{"intentId":"0x..."}')
        case Ok(InFlight()):
            ...  # 409, caller retries later
        case Ok(Completed(status=status, body=body)):
            ...  # replay exactly

Guarantees:
- One record per key (primary key). Of two concurrent first-sight
  callers, one gets Fresh and the other InFlight.
- completion() always records an outcome, so no key stays in flight.
- Expired keys are purged by sweep_expired() and may then be reused.

Decision logic lives in a nodnod graph (_graph.py).
"""

from fiatrails.idempotency._types import (
    IdempotencyRecord,
    Fresh,
    InFlight,
    Completed,
    BeginOutcome,
)
from fiatrails.idempotency._store import IdempotencyStore
from fiatrails.idempotency._graph import BeginRequest, begin_idempotent
from fiatrails.idempotency._service import (
    INTERNAL_ERROR_STATUS,
    INTERNAL_ERROR_BODY,
    IdempotencyKeys,
    Slot,
    fingerprint,
)

__all__ = (
    "IdempotencyRecord",
    "Fresh",
    "InFlight",
    "Completed",
    "BeginOutcome",
    "IdempotencyStore",
    "BeginRequest",
    "begin_idempotent",
    "INTERNAL_ERROR_STATUS",
    "INTERNAL_ERROR_BODY",
    "IdempotencyKeys",
    "Slot",
    "fingerprint",
)
