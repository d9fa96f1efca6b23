"""
Idempotency store — SQLAlchemy-backed, Result-returning.

The key column is the primary key; first-sight inserts use
INSERT ... ON CONFLICT DO NOTHING so exactly one concurrent caller wins.
"""

from __future__ import annotations

from typing import Any, cast

from sqlalchemy import delete, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fiatrails._types import Result, Ok, Error
from fiatrails.db import IdempotencyKeyTable, insert_ignore
from fiatrails.errors import MintError, MintErrors
from fiatrails.idempotency._types import IdempotencyRecord


def _to_record(row: IdempotencyKeyTable) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row.key,
        request_fingerprint=row.request_fingerprint,
        response_status=row.response_status,
        response_body=row.response_body,
        created_at=row.created_at,
        completed_at=row.completed_at,
        expires_at=row.expires_at,
    )


class IdempotencyStore:
    """
    Persistence for idempotency records.

    All methods return Result; storage failures become STORE_ERROR.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Result[IdempotencyRecord | None, MintError]:
        """Fetch the record, expired or not. Ok(None) if absent."""
        try:
            async with self._session_factory() as session:
                row = await session.get(IdempotencyKeyTable, key)
                return Ok(None if row is None else _to_record(row))
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error(f"Failed to read key {key}", e))

    async def insert_pending(
        self,
        key: str,
        fingerprint: str,
        now_ms: int,
        expires_at: int,
    ) -> Result[bool, MintError]:
        """Insert an in-flight record. Ok(False) if the key already exists."""
        try:
            async with self._session_factory() as session:
                stmt = insert_ignore(
                    session,
                    IdempotencyKeyTable,
                    {
                        "key": key,
                        "request_fingerprint": fingerprint,
                        "created_at": now_ms,
                        "expires_at": expires_at,
                    },
                    conflict=["key"],
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error(f"Failed to insert key {key}", e))

    async def purge_expired_key(self, key: str, now_ms: int) -> Result[bool, MintError]:
        """Delete key only if it has expired. A live key is never touched."""
        try:
            async with self._session_factory() as session:
                cursor = cast(
                    CursorResult[Any],
                    await session.execute(
                        delete(IdempotencyKeyTable).where(
                            IdempotencyKeyTable.key == key,
                            IdempotencyKeyTable.expires_at <= now_ms,
                        )
                    ),
                )
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error(f"Failed to purge key {key}", e))

    async def complete(
        self,
        key: str,
        status: int,
        body: str,
        now_ms: int,
    ) -> Result[bool, MintError]:
        """Record the response once. Ok(False) if the key was not in flight."""
        try:
            async with self._session_factory() as session:
                cursor = cast(
                    CursorResult[Any],
                    await session.execute(
                        update(IdempotencyKeyTable)
                        .where(
                            IdempotencyKeyTable.key == key,
                            IdempotencyKeyTable.completed_at.is_(None),
                        )
                        .values(
                            response_status=status,
                            response_body=body,
                            completed_at=now_ms,
                        )
                    ),
                )
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error(f"Failed to complete key {key}", e))

    async def sweep_expired(self, now_ms: int) -> Result[int, MintError]:
        """Delete every record past expires_at. Returns how many went."""
        try:
            async with self._session_factory() as session:
                cursor = cast(
                    CursorResult[Any],
                    await session.execute(
                        delete(IdempotencyKeyTable).where(
                            IdempotencyKeyTable.expires_at <= now_ms
                        )
                    ),
                )
                await session.commit()
                return Ok(cursor.rowcount)
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error("Failed to sweep idempotency keys", e))


__all__ = ("IdempotencyStore",)
