"""
Compliance gate.

    gate = ComplianceGate(session_factory, max_risk_score=70, officers=frozenset({"alice"}))

    await gate.update_user("0xabc", 35, "ipfs://kyc/0xabc", True, Officer("alice"))
    await gate.is_compliant("0xabc")   # True

isCompliant = verified ∧ risk_score ≤ max_risk_score ∧ attestation present.
Unknown users are simply not compliant; that is not an error.
"""

from fiatrails.compliance._types import ComplianceRecord, Officer
from fiatrails.compliance._gate import ComplianceGate, evaluate

__all__ = (
    "ComplianceRecord",
    "Officer",
    "ComplianceGate",
    "evaluate",
)
