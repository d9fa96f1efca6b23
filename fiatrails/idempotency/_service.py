"""
Idempotency keys — begin / complete / sweep with a completion guarantee.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog

from fiatrails._types import Clock, Result, Ok, Error, system_clock
from fiatrails.errors import MintError
from fiatrails.idempotency._graph import BeginRequest, begin_idempotent
from fiatrails.idempotency._store import IdempotencyStore
from fiatrails.idempotency._types import BeginOutcome, IdempotencyRecord

logger = structlog.get_logger(component="idempotency")


INTERNAL_ERROR_STATUS = 500
INTERNAL_ERROR_BODY = json.dumps(
    {"error": "internal_error", "message": "Internal server error"},
    separators=(",", ":"),
)


def fingerprint(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


@dataclass(slots=True)
class Slot:
    """Handle on a Fresh key. complete() may be called once."""

    key: str
    _keys: IdempotencyKeys
    completed: bool = field(default=False)

    async def complete(self, status: int, body: str) -> Result[bool, MintError]:
        result = await self._keys.complete(self.key, status, body)
        self.completed = True
        return result


class IdempotencyKeys:
    """
    Deduplicates inbound requests by caller-supplied key.

    Example:
        match await keys.begin(key, fingerprint(body)):
            case Ok(Fresh()):
                async with keys.completion(key) as slot:
                    response = await handle()
                    await slot.complete(response.status_code, response.body.decode())
            case Ok(InFlight()):
                ...  # 409
            case Ok(Completed(status=status, body=body)):
                ...  # replay
    """

    def __init__(
        self,
        store: IdempotencyStore,
        *,
        window_ms: int,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._window_ms = window_ms
        self._clock = clock

    async def begin(self, key: str, request_fingerprint: str) -> Result[BeginOutcome, MintError]:
        outcome = await begin_idempotent(
            BeginRequest(
                key=key,
                fingerprint=request_fingerprint,
                store=self._store,
                now_ms=self._clock(),
                ttl_ms=self._window_ms,
            )
        )
        match outcome:
            case Ok(decided):
                logger.debug("idempotency_begin", key=key, outcome=type(decided).__name__)
            case Error(err):
                logger.error("idempotency_store_failed", key=key, error=err.message)
        return outcome

    async def complete(self, key: str, status: int, body: str) -> Result[bool, MintError]:
        result = await self._store.complete(key, status, body, self._clock())
        match result:
            case Ok(False):
                logger.warning("idempotency_complete_ignored", key=key, status=status)
            case Error(err):
                logger.error("idempotency_store_failed", key=key, error=err.message)
            case _:
                pass
        return result

    async def sweep_expired(self) -> Result[int, MintError]:
        result = await self._store.sweep_expired(self._clock())
        match result:
            case Ok(count) if count:
                logger.info("idempotency_keys_purged", count=count)
            case Error(err):
                logger.error("idempotency_sweep_failed", error=err.message)
            case _:
                pass
        return result

    async def get(self, key: str) -> Result[IdempotencyRecord | None, MintError]:
        return await self._store.get(key)

    @asynccontextmanager
    async def completion(self, key: str) -> AsyncIterator[Slot]:
        """
        Guarantees the key leaves the in-flight state.

        If the block raises, or exits without slot.complete(), a generic
        500 is recorded and the exception (if any) propagates.
        """
        slot = Slot(key=key, _keys=self)
        try:
            yield slot
        except BaseException:
            if not slot.completed:
                logger.error("idempotency_handler_crashed", key=key)
                await self.complete(key, INTERNAL_ERROR_STATUS, INTERNAL_ERROR_BODY)
            raise
        if not slot.completed:
            logger.error("idempotency_not_completed", key=key)
            await self.complete(key, INTERNAL_ERROR_STATUS, INTERNAL_ERROR_BODY)


__all__ = (
    "INTERNAL_ERROR_STATUS",
    "INTERNAL_ERROR_BODY",
    "IdempotencyKeys",
    "Slot",
    "fingerprint",
)
