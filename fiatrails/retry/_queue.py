"""
Retry queue — durable schedule of ledger calls that failed transiently.

Claiming uses the attempt counter: every state change is an
UPDATE/DELETE conditioned on the attempt value the sweeper saw, so two
sweepers can never both move one item.
"""

from __future__ import annotations

import json
from typing import Any, cast

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fiatrails._types import Clock, system_clock
from fiatrails.config import RetryPolicy
from fiatrails.db import DeadLetterTable, RetryTable
from fiatrails.errors import MintError, MintErrors
from fiatrails.retry._backoff import backoff
from fiatrails.retry._types import Disposition, OperationKind, RetryItem

logger = structlog.get_logger(component="retry")


def _to_item(row: RetryTable) -> RetryItem:
    return RetryItem(
        id=row.id,
        intent_id=row.intent_id,
        operation=OperationKind(row.operation),
        payload=json.loads(row.payload),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        next_retry_at=row.next_retry_at,
        created_at=row.created_at,
        last_error=row.last_error,
    )


class RetryQueue:
    """Active retry items, one row each."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: RetryPolicy,
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self._policy = policy
        self._clock = clock

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def enqueue(
        self,
        intent_id: str,
        operation: OperationKind,
        payload: dict[str, Any],
        last_error: str | None = None,
    ) -> RetryItem:
        """Schedule attempt 0 at now + backoff(0)."""
        now = self._clock()
        row = RetryTable(
            intent_id=intent_id,
            operation=operation.value,
            payload=json.dumps(payload, sort_keys=True),
            attempt=0,
            max_attempts=self._policy.max_attempts,
            next_retry_at=now + backoff(0, self._policy),
            created_at=now,
            last_error=last_error,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

        logger.info(
            "retry_enqueued",
            intent_id=intent_id,
            operation=operation.value,
            next_retry_at=row.next_retry_at,
            error=last_error,
        )
        return _to_item(row)

    async def due(self, limit: int) -> list[RetryItem]:
        """Items whose time has come, earliest first."""
        now = self._clock()
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(RetryTable)
                .where(
                    RetryTable.next_retry_at <= now,
                    RetryTable.attempt < RetryTable.max_attempts,
                )
                .order_by(RetryTable.next_retry_at, RetryTable.id)
                .limit(limit)
            )
            return [_to_item(row) for row in rows]

    async def get(self, item_id: int) -> RetryItem | None:
        async with self._session_factory() as session:
            row = await session.get(RetryTable, item_id)
            return None if row is None else _to_item(row)

    async def list_for_intent(self, intent_id: str) -> list[RetryItem]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(RetryTable)
                .where(RetryTable.intent_id == intent_id)
                .order_by(RetryTable.id)
            )
            return [_to_item(row) for row in rows]

    async def depth(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(RetryTable))
            return count or 0

    async def mark_succeeded(self, item: RetryItem) -> Disposition:
        async with self._session_factory() as session:
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    delete(RetryTable).where(
                        RetryTable.id == item.id,
                        RetryTable.attempt == item.attempt,
                    )
                ),
            )
            await session.commit()

        if cursor.rowcount == 0:
            return Disposition.CLAIM_LOST
        logger.info(
            "retry_succeeded",
            intent_id=item.intent_id,
            operation=item.operation.value,
            attempt=item.attempt + 1,
        )
        return Disposition.SUCCEEDED

    async def mark_failed(self, item: RetryItem, error: str) -> Disposition:
        """
        Count one more failed attempt.

        Reschedules at now + backoff(attempt) while attempt < max_attempts,
        otherwise moves the item to the dead-letter archive.
        """
        attempt = item.attempt + 1
        if attempt >= item.max_attempts:
            return await self._promote(
                item, attempt, error, MintErrors.exhausted(item.intent_id, attempt)
            )

        next_retry_at = self._clock() + backoff(attempt, self._policy)
        async with self._session_factory() as session:
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    update(RetryTable)
                    .where(
                        RetryTable.id == item.id,
                        RetryTable.attempt == item.attempt,
                    )
                    .values(
                        attempt=attempt,
                        last_error=error,
                        next_retry_at=next_retry_at,
                    )
                ),
            )
            await session.commit()

        if cursor.rowcount == 0:
            return Disposition.CLAIM_LOST
        logger.warning(
            "retry_rescheduled",
            intent_id=item.intent_id,
            operation=item.operation.value,
            attempt=attempt,
            next_retry_at=next_retry_at,
            error=error,
        )
        return Disposition.RESCHEDULED

    async def mark_terminal(self, item: RetryItem, error: str) -> Disposition:
        """Dead-letter now: the failure is a decision no retry can change."""
        return await self._promote(item, item.attempt + 1, error)

    async def _promote(
        self,
        item: RetryItem,
        attempts: int,
        error: str,
        exhausted: MintError | None = None,
    ) -> Disposition:
        now = self._clock()
        async with self._session_factory() as session:
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    delete(RetryTable).where(
                        RetryTable.id == item.id,
                        RetryTable.attempt == item.attempt,
                    )
                ),
            )
            if cursor.rowcount == 0:
                await session.rollback()
                return Disposition.CLAIM_LOST

            # Same transaction: the item is never both active and dead-lettered
            session.add(
                DeadLetterTable(
                    operation=item.operation.value,
                    intent_id=item.intent_id,
                    payload=json.dumps(item.payload, sort_keys=True),
                    attempts=attempts,
                    last_error=error,
                    created_at=item.created_at,
                    failed_at=now,
                )
            )
            await session.commit()

        logger.error(
            "dead_letter_promoted",
            intent_id=item.intent_id,
            operation=item.operation.value,
            attempts=attempts,
            error=error,
            code=exhausted.code if exhausted else "terminal_failure",
            reason=exhausted.message if exhausted else error,
        )
        return Disposition.DEAD_LETTERED


__all__ = ("RetryQueue",)
