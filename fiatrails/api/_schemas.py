"""
Request bodies — pydantic models that turn into domain calls.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fiatrails.api._errors import ApiError
from fiatrails.compliance import ComplianceRecord
from fiatrails.errors import MintErrors


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


def _parse_amount(value: Any) -> int:
    # Decimal strings carry smallest-unit values past float precision
    if isinstance(value, bool):
        raise ValueError("amount must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise ValueError("amount must be an integer or a decimal string")


class MintIntentIn(_Body):
    user_address: str = Field(alias="userAddress", min_length=1)
    amount: int
    country_code: str = Field(alias="countryCode", min_length=1)
    tx_ref: str = Field(alias="txRef", min_length=1)

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> int:
        return _parse_amount(value)


class PaymentCallbackIn(_Body):
    intent_id: str | None = Field(default=None, alias="intentId")
    tx_ref: str | None = Field(default=None, alias="txRef")
    user_address: str | None = Field(default=None, alias="userAddress")
    amount: str | int | None = None


class RefundIn(_Body):
    reason: str = Field(min_length=1)


class ComplianceIn(_Body):
    risk_score: int = Field(alias="riskScore")
    attestation_ref: str = Field(default="", alias="attestationRef")
    verified: bool = False


def compliance_json(record: ComplianceRecord) -> dict[str, Any]:
    return {
        "user": record.user,
        "riskScore": record.risk_score,
        "attestationRef": record.attestation_ref,
        "attestationPresent": record.attestation_present,
        "verified": record.verified,
        "lastUpdated": record.last_updated,
        "updatedBy": record.updated_by,
    }


def parse[M: BaseModel](model: type[M], body: bytes) -> M:
    """Validate a raw JSON body or raise a 400."""
    try:
        return model.model_validate_json(body or b"{}")
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise ApiError(MintErrors.invalid_request(f"{where}: {first.get('msg', 'invalid')}")) from e


__all__ = (
    "MintIntentIn",
    "PaymentCallbackIn",
    "RefundIn",
    "ComplianceIn",
    "compliance_json",
    "parse",
)
