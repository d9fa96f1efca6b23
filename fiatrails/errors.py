"""
Error taxonomy.

Fallible operations return Result[T, MintError]. The kind decides how the
failure travels: only TRANSIENT_INFRA crosses into the retry scheduler,
everything else is resolved inside the original request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any


# ═══════════════════════════════════════════════════════════════════════════════
# Error Kind
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(Enum):
    """Kinds of mint pipeline errors."""

    VALIDATION = auto()  # Malformed input, never retried
    AUTH = auto()  # Bad signature / stale timestamp / missing capability
    NOT_FOUND = auto()  # Unknown intent or dead-letter entry
    CONFLICT = auto()  # Idempotency key in flight
    COMPLIANCE_REJECTION = auto()  # User ineligible, terminal decision
    INTEGRITY_VIOLATION = auto()  # Duplicate intent / already finalized
    TRANSIENT_INFRA = auto()  # Ledger timeout or connection failure
    TERMINAL_EXHAUSTION = auto()  # Retries exhausted, dead-lettered
    STORE_ERROR = auto()  # Local storage failure


@dataclass(frozen=True, slots=True)
class MintError:
    """
    Pipeline error.

    code is the stable machine-readable identifier sent to clients,
    message is for humans. cause keeps the underlying exception, if any.
    """

    kind: ErrorKind
    code: str
    message: str
    cause: Any | None = None

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_INFRA


class MintErrors:
    """Named constructors for every error the pipeline produces."""

    @staticmethod
    def invalid_request(msg: str) -> MintError:
        return MintError(ErrorKind.VALIDATION, "invalid_request", msg)

    @staticmethod
    def invalid_risk_score(score: int) -> MintError:
        return MintError(
            ErrorKind.VALIDATION,
            "invalid_risk_score",
            f"Risk score must be within 0..100, got {score}",
        )

    @staticmethod
    def unauthorized() -> MintError:
        # One message for every auth failure.
        return MintError(ErrorKind.AUTH, "unauthorized", "unauthorized")

    @staticmethod
    def not_officer(name: str | None) -> MintError:
        return MintError(
            ErrorKind.AUTH,
            "not_officer",
            f"{name or 'anonymous'} may not update compliance records",
        )

    @staticmethod
    def not_operator(name: str | None) -> MintError:
        return MintError(
            ErrorKind.AUTH,
            "not_operator",
            f"{name or 'anonymous'} may not perform operator actions",
        )

    @staticmethod
    def intent_not_found(ref: str) -> MintError:
        return MintError(ErrorKind.NOT_FOUND, "intent_not_found", f"Intent not found: {ref}")

    @staticmethod
    def dead_letter_not_found(entry_id: int) -> MintError:
        return MintError(
            ErrorKind.NOT_FOUND,
            "dead_letter_not_found",
            f"Dead-letter entry not found: {entry_id}",
        )

    @staticmethod
    def key_in_flight(key: str) -> MintError:
        return MintError(
            ErrorKind.CONFLICT,
            "request_in_progress",
            f"Request with idempotency key {key} is already in progress",
        )

    @staticmethod
    def not_compliant(user: str) -> MintError:
        return MintError(
            ErrorKind.COMPLIANCE_REJECTION,
            "not_compliant",
            f"User {user} is not compliant",
        )

    @staticmethod
    def duplicate_intent(intent_id: str) -> MintError:
        return MintError(
            ErrorKind.INTEGRITY_VIOLATION,
            "duplicate_intent",
            f"Intent already exists: {intent_id}",
        )

    @staticmethod
    def already_finalized(intent_id: str) -> MintError:
        return MintError(
            ErrorKind.INTEGRITY_VIOLATION,
            "already_finalized",
            f"Intent already finalized: {intent_id}",
        )

    @staticmethod
    def ledger_mismatch(msg: str) -> MintError:
        return MintError(ErrorKind.INTEGRITY_VIOLATION, "ledger_mismatch", msg)

    @staticmethod
    def transient(msg: str, cause: Exception | None = None) -> MintError:
        return MintError(ErrorKind.TRANSIENT_INFRA, "ledger_unavailable", msg, cause)

    @staticmethod
    def exhausted(intent_id: str, attempts: int) -> MintError:
        return MintError(
            ErrorKind.TERMINAL_EXHAUSTION,
            "retries_exhausted",
            f"Gave up on {intent_id} after {attempts} attempts",
        )

    @staticmethod
    def store_error(msg: str, cause: Exception | None = None) -> MintError:
        return MintError(ErrorKind.STORE_ERROR, "store_error", msg, cause)


# ═══════════════════════════════════════════════════════════════════════════════
# Retry pipeline exceptions
# ═══════════════════════════════════════════════════════════════════════════════


class TransientInfraError(Exception):
    """Raised by a retried operation that hit another transient fault."""

    def __init__(self, error: MintError) -> None:
        super().__init__(error.message)
        self.error = error


class TerminalOperationError(Exception):
    """Raised by a retried operation whose failure no retry can change."""

    def __init__(self, error: MintError) -> None:
        super().__init__(error.message)
        self.error = error


__all__ = (
    "ErrorKind",
    "MintError",
    "MintErrors",
    "TransientInfraError",
    "TerminalOperationError",
)
