"""
Compliance gate — eligibility over the per-user record.

Reads always hit storage. A user who finishes KYC after depositing is
served at confirmation time.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fiatrails._types import Clock, Result, Ok, Error, system_clock
from fiatrails.compliance._types import ComplianceRecord, Officer
from fiatrails.db import ComplianceTable
from fiatrails.errors import MintError, MintErrors

logger = structlog.get_logger(component="compliance")


def evaluate(record: ComplianceRecord | None, max_risk_score: int) -> bool:
    """
    verified → risk_score ≤ max_risk_score → attestation present.

    Cheapest check first; no record means not onboarded yet.
    """
    if record is None:
        return False
    return (
        record.verified
        and record.risk_score <= max_risk_score
        and record.attestation_present
    )


def _to_record(row: ComplianceTable) -> ComplianceRecord:
    return ComplianceRecord(
        user=row.user,
        risk_score=row.risk_score,
        attestation_ref=row.attestation_ref,
        verified=row.verified,
        last_updated=row.last_updated,
        updated_by=row.updated_by,
    )


class ComplianceGate:
    """Answers "is this user eligible right now"."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_risk_score: int,
        officers: frozenset[str],
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self._max_risk_score = max_risk_score
        self._officers = officers
        self._clock = clock

    async def get_record(self, user: str) -> ComplianceRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ComplianceTable, user)
            return None if row is None else _to_record(row)

    async def is_compliant(self, user: str) -> bool:
        return evaluate(await self.get_record(user), self._max_risk_score)

    async def update_user(
        self,
        user: str,
        risk_score: int,
        attestation_ref: str,
        verified: bool,
        officer: Officer | None,
    ) -> Result[ComplianceRecord, MintError]:
        """Create or replace the user's record. Officers only."""
        if officer is None or officer.name not in self._officers:
            logger.warning(
                "compliance_update_denied",
                user=user,
                officer=None if officer is None else officer.name,
            )
            return Error(MintErrors.not_officer(None if officer is None else officer.name))
        if not user:
            return Error(MintErrors.invalid_request("user is required"))
        if not 0 <= risk_score <= 100:
            return Error(MintErrors.invalid_risk_score(risk_score))

        record = ComplianceRecord(
            user=user,
            risk_score=risk_score,
            attestation_ref=attestation_ref,
            verified=verified,
            last_updated=self._clock(),
            updated_by=officer.name,
        )
        try:
            async with self._session_factory() as session:
                await session.merge(
                    ComplianceTable(
                        user=record.user,
                        risk_score=record.risk_score,
                        attestation_ref=record.attestation_ref,
                        verified=record.verified,
                        last_updated=record.last_updated,
                        updated_by=record.updated_by,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            return Error(MintErrors.store_error("Failed to write compliance record", e))

        logger.info(
            "compliance_updated",
            user=user,
            risk_score=risk_score,
            verified=verified,
            officer=officer.name,
        )
        return Ok(record)

    async def list_records(self, limit: int = 100) -> list[ComplianceRecord]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(ComplianceTable).order_by(ComplianceTable.user).limit(limit)
            )
            return [_to_record(row) for row in rows]


__all__ = ("ComplianceGate", "evaluate")
