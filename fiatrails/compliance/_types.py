"""
Compliance types.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ComplianceRecord:
    """
    Per-user eligibility record.

    attestation_ref points at off-chain compliance documentation; an empty
    reference means no attestation.
    """

    user: str
    risk_score: int
    attestation_ref: str
    verified: bool
    last_updated: int
    updated_by: str

    @property
    def attestation_present(self) -> bool:
        return bool(self.attestation_ref.strip())


@dataclass(frozen=True, slots=True)
class Officer:
    """
    Capability to write compliance records.

    Holding an Officer is not enough: its name must also be listed in
    Settings.compliance_officers.
    """

    name: str


__all__ = ("ComplianceRecord", "Officer")
