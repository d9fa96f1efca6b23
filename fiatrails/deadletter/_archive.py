"""
Dead-letter archive — terminal sink, append-only.

Nothing here replays automatically. replay() is an operator action that
pushes the stored payload through the same entry point live retries use,
so the intent's status guard still applies.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fiatrails._types import Clock, Result, Ok, Error, system_clock
from fiatrails.db import DeadLetterTable
from fiatrails.deadletter._types import DeadLetterEntry, ReplayOutcome
from fiatrails.errors import (
    MintError,
    MintErrors,
    TerminalOperationError,
    TransientInfraError,
)
from fiatrails.retry import OperationKind, RetryHandler, RetryQueue

logger = structlog.get_logger(component="deadletter")


def _to_entry(row: DeadLetterTable) -> DeadLetterEntry:
    return DeadLetterEntry(
        id=row.id,
        operation=OperationKind(row.operation),
        intent_id=row.intent_id,
        payload=json.loads(row.payload),
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=row.created_at,
        failed_at=row.failed_at,
        replayed_at=row.replayed_at,
    )


class DeadLetterArchive:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def append(
        self,
        operation: OperationKind,
        intent_id: str,
        payload: dict[str, Any],
        attempts: int,
        last_error: str | None,
        created_at: int | None = None,
    ) -> DeadLetterEntry:
        now = self._clock()
        row = DeadLetterTable(
            operation=operation.value,
            intent_id=intent_id,
            payload=json.dumps(payload, sort_keys=True),
            attempts=attempts,
            last_error=last_error,
            created_at=now if created_at is None else created_at,
            failed_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

        logger.error(
            "dead_letter_appended",
            intent_id=intent_id,
            operation=operation.value,
            attempts=attempts,
            error=last_error,
        )
        return _to_entry(row)

    async def list(self, limit: int = 100, intent_id: str | None = None) -> list[DeadLetterEntry]:
        """Newest first."""
        stmt = select(DeadLetterTable).order_by(DeadLetterTable.id.desc()).limit(limit)
        if intent_id is not None:
            stmt = stmt.where(DeadLetterTable.intent_id == intent_id)
        async with self._session_factory() as session:
            rows = await session.scalars(stmt)
            return [_to_entry(row) for row in rows]

    async def get(self, entry_id: int) -> DeadLetterEntry | None:
        async with self._session_factory() as session:
            row = await session.get(DeadLetterTable, entry_id)
            return None if row is None else _to_entry(row)

    async def depth(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(DeadLetterTable))
            return count or 0

    async def replay(
        self,
        entry_id: int,
        handler: RetryHandler,
        queue: RetryQueue,
    ) -> Result[ReplayOutcome, MintError]:
        """
        Re-submit one entry through handler.

        The entry stays in the archive with replayed_at stamped. A transient
        failure re-enters the retry queue as a brand-new item.
        """
        entry = await self.get(entry_id)
        if entry is None:
            return Error(MintErrors.dead_letter_not_found(entry_id))

        logger.info(
            "dead_letter_replay_started",
            entry_id=entry_id,
            intent_id=entry.intent_id,
            operation=entry.operation.value,
        )
        try:
            await handler(entry.operation, entry.payload)
        except TransientInfraError as e:
            await self._stamp(entry_id)
            await queue.enqueue(entry.intent_id, entry.operation, entry.payload, e.error.message)
            return Ok(ReplayOutcome.REQUEUED)
        except TerminalOperationError as e:
            await self._stamp(entry_id)
            logger.error(
                "dead_letter_replay_failed",
                entry_id=entry_id,
                intent_id=entry.intent_id,
                error=e.error.message,
            )
            return Error(e.error)

        await self._stamp(entry_id)
        logger.info("dead_letter_replayed", entry_id=entry_id, intent_id=entry.intent_id)
        return Ok(ReplayOutcome.SUCCEEDED)

    async def _stamp(self, entry_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(DeadLetterTable)
                .where(DeadLetterTable.id == entry_id)
                .values(replayed_at=self._clock())
            )
            await session.commit()


__all__ = ("DeadLetterArchive",)
