"""
Service wiring — every component built once from Settings.

    services = await build_services(settings, ledger=MemoryLedger())
    ...
    await services.close()

Nothing here is global: the ledger client, clock and session factory are
passed in, so tests build as many independent stacks as they like.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fiatrails._types import Clock, system_clock
from fiatrails.compliance import ComplianceGate
from fiatrails.config import Settings
from fiatrails.db import create_database
from fiatrails.deadletter import DeadLetterArchive
from fiatrails.idempotency import IdempotencyKeys, IdempotencyStore
from fiatrails.intents import Coordinator, IntentRepository
from fiatrails.ledger import LedgerClient, MemoryLedger
from fiatrails.retry import RetryQueue, RetrySweeper


@dataclass(frozen=True, slots=True)
class Services:
    settings: Settings
    clock: Clock
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    ledger: LedgerClient
    compliance: ComplianceGate
    idempotency: IdempotencyKeys
    intents: IntentRepository
    retry_queue: RetryQueue
    dead_letters: DeadLetterArchive
    coordinator: Coordinator
    retry_sweeper: RetrySweeper

    async def close(self) -> None:
        await self.engine.dispose()


async def build_services(
    settings: Settings,
    ledger: LedgerClient | None = None,
    clock: Clock = system_clock,
) -> Services:
    """Validate settings, create tables, wire components."""
    settings.validate()
    session_factory, engine = await create_database(settings.database_url)

    ledger = MemoryLedger() if ledger is None else ledger
    compliance = ComplianceGate(
        session_factory,
        max_risk_score=settings.max_risk_score,
        officers=settings.compliance_officers,
        clock=clock,
    )
    idempotency = IdempotencyKeys(
        IdempotencyStore(session_factory),
        window_ms=int(settings.idempotency_window.total_seconds() * 1000),
        clock=clock,
    )
    intents = IntentRepository(session_factory)
    retry_queue = RetryQueue(session_factory, settings.retry, clock)
    coordinator = Coordinator(intents, ledger, compliance, retry_queue, settings, clock)

    return Services(
        settings=settings,
        clock=clock,
        engine=engine,
        session_factory=session_factory,
        ledger=ledger,
        compliance=compliance,
        idempotency=idempotency,
        intents=intents,
        retry_queue=retry_queue,
        dead_letters=DeadLetterArchive(session_factory, clock),
        coordinator=coordinator,
        retry_sweeper=RetrySweeper(
            retry_queue,
            coordinator.retry_operation,
            batch_size=settings.retry_batch_size,
        ),
    )


__all__ = ("Services", "build_services")
