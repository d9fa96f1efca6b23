"""
Intent repository — the local half of the two cooperating state machines.
"""

from __future__ import annotations

from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fiatrails.db import IntentTable, insert_ignore
from fiatrails.intents._types import Intent
from fiatrails.ledger import IntentStatus


def _to_intent(row: IntentTable) -> Intent:
    return Intent(
        intent_id=row.intent_id,
        user=row.user,
        amount=int(row.amount),
        target_class=row.target_class,
        external_reference=row.external_reference,
        submitted_at=row.submitted_at,
        status=IntentStatus(row.status),
        refund_reason=row.refund_reason,
        finalized_at=row.finalized_at,
    )


class IntentRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, intent: Intent) -> bool:
        """Insert a new PENDING intent. False if the id already exists."""
        async with self._session_factory() as session:
            stmt = insert_ignore(
                session,
                IntentTable,
                {
                    "intent_id": intent.intent_id,
                    "user": intent.user,
                    "amount": str(intent.amount),
                    "target_class": intent.target_class,
                    "external_reference": intent.external_reference,
                    "submitted_at": intent.submitted_at,
                    "status": IntentStatus.PENDING.value,
                },
                conflict=["intent_id"],
            )
            cursor = cast(CursorResult[Any], await session.execute(stmt))
            await session.commit()
            return cursor.rowcount > 0

    async def get(self, intent_id: str) -> Intent | None:
        async with self._session_factory() as session:
            row = await session.get(IntentTable, intent_id)
            return None if row is None else _to_intent(row)

    async def find_by_reference(self, external_reference: str) -> Intent | None:
        """Pending intent for the reference if any, else the latest one."""
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(IntentTable)
                    .where(IntentTable.external_reference == external_reference)
                    .order_by(IntentTable.submitted_at.desc())
                )
            ).all()
        if not rows:
            return None
        pending = [r for r in rows if r.status == IntentStatus.PENDING.value]
        return _to_intent(pending[0] if pending else rows[0])

    async def transition(
        self,
        intent_id: str,
        to: IntentStatus,
        finalized_at: int,
        refund_reason: str | None = None,
    ) -> bool:
        """
        Compare-and-set PENDING → to.

        One UPDATE conditioned on status; of two racing callers only one
        sees rowcount 1.
        """
        async with self._session_factory() as session:
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    update(IntentTable)
                    .where(
                        IntentTable.intent_id == intent_id,
                        IntentTable.status == IntentStatus.PENDING.value,
                    )
                    .values(
                        status=to.value,
                        finalized_at=finalized_at,
                        refund_reason=refund_reason,
                    )
                ),
            )
            await session.commit()
            return cursor.rowcount > 0

    async def submitted_since(self, user: str, since: int) -> int:
        """Sum of non-refunded amounts the user submitted at or after since (seconds)."""
        async with self._session_factory() as session:
            amounts = await session.scalars(
                select(IntentTable.amount).where(
                    IntentTable.user == user,
                    IntentTable.submitted_at >= since,
                    IntentTable.status != IntentStatus.REFUNDED.value,
                )
            )
            return sum(int(a) for a in amounts)

    async def list_for_user(self, user: str, limit: int = 100) -> list[Intent]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(IntentTable)
                .where(IntentTable.user == user)
                .order_by(IntentTable.submitted_at.desc())
                .limit(limit)
            )
            return [_to_intent(row) for row in rows]


__all__ = ("IntentRepository",)
