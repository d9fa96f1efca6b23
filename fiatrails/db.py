"""
Database layer — SQLAlchemy tables and session factory.

Every row the pipeline writes lives here. Two constraints carry the whole
concurrency story:

- idempotency_keys.key is the primary key, so exactly one first-sight
  insert wins.
- intents.status only changes through a single UPDATE conditioned on
  status = 'pending'.
"""

from pathlib import Path
from typing import Any

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, Index, make_url
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Tables
# ═══════════════════════════════════════════════════════════════════════════════


class IntentTable(Base):
    """
    Local view of every mint intent. Append-only: rows are never deleted.

    Note: amount is a decimal string, smallest-unit values overflow BIGINT.
    """

    __tablename__ = "intents"

    intent_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    user: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    target_class: Mapped[str] = mapped_column(String(16), nullable=False)
    external_reference: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    submitted_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch seconds
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    finalized_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class ComplianceTable(Base):
    """Per-user compliance record, written only by officers."""

    __tablename__ = "compliance_records"

    user: Mapped[str] = mapped_column(String(128), primary_key=True)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    attestation_ref: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_updated: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(128), nullable=False)


class IdempotencyKeyTable(Base):
    """
    One row per caller-supplied key.

    completed_at IS NULL means in flight.
    """

    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


class RetryTable(Base):
    """Active retry items. Deleted on success or on dead-letter promotion."""

    __tablename__ = "retry_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    intent_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    next_retry_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_retry_next", "next_retry_at"),)


class DeadLetterTable(Base):
    """Exhausted operations. Only replayed_at is ever updated."""

    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    intent_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    failed_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    replayed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def insert_ignore(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict: list[str],
) -> Any:
    """
    INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    rowcount of the executed statement is 1 if inserted, 0 if the row existed.
    """
    match session.get_bind().dialect.name:
        case "sqlite":
            stmt = sqlite_insert(model)
        case "postgresql":
            stmt = pg_insert(model)
        case other:
            raise NotImplementedError(f"insert_ignore not supported for {other}")
    return stmt.values(**values).on_conflict_do_nothing(index_elements=conflict)


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create tables and return (session_factory, engine)."""
    parsed = make_url(url)
    if parsed.database in (None, "", ":memory:"):
        # Every session must see the same in-memory database.
        engine = create_async_engine(url, echo=False, poolclass=StaticPool)
    else:
        if parsed.get_backend_name() == "sqlite":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


__all__ = (
    "Base",
    "IntentTable",
    "ComplianceTable",
    "IdempotencyKeyTable",
    "RetryTable",
    "DeadLetterTable",
    "insert_ignore",
    "create_database",
)
