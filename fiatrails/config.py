"""
Configuration — immutable settings with fluent overrides.

    settings = (
        Settings.from_env()
        .with_retry(RetryPolicy(max_attempts=4))
        .with_database_url("sqlite+aiosqlite:///./data/fiatrails.db")
    )

Note: Immutable — each with_* returns a new Settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from collections.abc import Mapping


# ═══════════════════════════════════════════════════════════════════════════════
# Retry Policy
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Backoff schedule for ledger calls that failed transiently.

    delay(attempt) = min(initial_delay_ms * multiplier ** attempt, max_delay_ms)

    No jitter: stuck operations enqueued together retry in lockstep.
    """

    max_attempts: int = 4
    initial_delay_ms: int = 691
    multiplier: int = 2
    max_delay_ms: int = 30_000


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settings:
    """Service configuration."""

    database_url: str = "sqlite+aiosqlite:///./data/fiatrails.db"
    target_class: str = "KES"

    # Per-channel MAC secrets. Distinct so one leak does not open both doors.
    client_secret: str = ""
    webhook_secret: str = ""

    compliance_officers: frozenset[str] = field(default_factory=frozenset)
    max_risk_score: int = 70

    # May refund intents and work the dead-letter archive
    operators: frozenset[str] = field(default_factory=frozenset)

    # Smallest unit, 18 decimals
    min_mint_amount: int = 10**18
    max_mint_amount: int = 10**21
    daily_mint_limit: int = 10**22

    retry: RetryPolicy = RetryPolicy()
    rpc_timeout: timedelta = timedelta(seconds=20)
    auth_window: timedelta = timedelta(minutes=5)
    idempotency_window: timedelta = timedelta(hours=24)

    retry_interval: timedelta = timedelta(seconds=5)
    retry_batch_size: int = 10
    cleanup_interval: timedelta = timedelta(hours=1)

    log_level: str = "INFO"
    log_json: bool = False

    def with_database_url(self, url: str) -> Settings:
        return replace(self, database_url=url)

    def with_secrets(self, *, client: str, webhook: str) -> Settings:
        return replace(self, client_secret=client, webhook_secret=webhook)

    def with_officers(self, *names: str) -> Settings:
        return replace(self, compliance_officers=frozenset(names))

    def with_operators(self, *names: str) -> Settings:
        return replace(self, operators=frozenset(names))

    def with_retry(self, policy: RetryPolicy) -> Settings:
        return replace(self, retry=policy)

    def with_limits(
        self,
        *,
        min_amount: int | None = None,
        max_amount: int | None = None,
        daily: int | None = None,
    ) -> Settings:
        return replace(
            self,
            min_mint_amount=self.min_mint_amount if min_amount is None else min_amount,
            max_mint_amount=self.max_mint_amount if max_amount is None else max_amount,
            daily_mint_limit=self.daily_mint_limit if daily is None else daily,
        )

    def with_max_risk_score(self, score: int) -> Settings:
        return replace(self, max_risk_score=score)

    def with_rpc_timeout(self, *, seconds: float) -> Settings:
        return replace(self, rpc_timeout=timedelta(seconds=seconds))

    def validate(self) -> None:
        """Raise ValueError listing every missing or inconsistent value."""
        problems: list[str] = []
        if not self.client_secret:
            problems.append("client_secret")
        if not self.webhook_secret:
            problems.append("webhook_secret")
        if self.client_secret and self.client_secret == self.webhook_secret:
            problems.append("client_secret and webhook_secret must differ")
        if not 0 <= self.max_risk_score <= 100:
            problems.append("max_risk_score must be within 0..100")
        if self.min_mint_amount > self.max_mint_amount:
            problems.append("min_mint_amount exceeds max_mint_amount")
        if self.retry.max_attempts < 1:
            problems.append("retry.max_attempts must be positive")
        if problems:
            raise ValueError(f"Invalid configuration: {', '.join(problems)}")

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        prefix: str = "FIATRAILS_",
    ) -> Settings:
        """
        Load settings from environment variables.

        Example:
            FIATRAILS_CLIENT_SECRET=... FIATRAILS_WEBHOOK_SECRET=...
            FIATRAILS_RETRY_MAX_ATTEMPTS=5
        """
        source = os.environ if env is None else env
        base = cls()

        def get(name: str) -> str | None:
            return source.get(prefix + name)

        def get_int(name: str, default: int) -> int:
            raw = get(name)
            return default if raw is None else int(raw)

        def get_seconds(name: str, default: timedelta) -> timedelta:
            raw = get(name)
            return default if raw is None else timedelta(seconds=float(raw))

        def get_names(name: str, default: frozenset[str]) -> frozenset[str]:
            raw = get(name)
            if not raw:
                return default
            return frozenset(n.strip() for n in raw.split(",") if n.strip())

        retry = RetryPolicy(
            max_attempts=get_int("RETRY_MAX_ATTEMPTS", base.retry.max_attempts),
            initial_delay_ms=get_int("RETRY_INITIAL_DELAY_MS", base.retry.initial_delay_ms),
            multiplier=get_int("RETRY_MULTIPLIER", base.retry.multiplier),
            max_delay_ms=get_int("RETRY_MAX_DELAY_MS", base.retry.max_delay_ms),
        )

        return cls(
            database_url=get("DATABASE_URL") or base.database_url,
            target_class=get("TARGET_CLASS") or base.target_class,
            client_secret=get("CLIENT_SECRET") or "",
            webhook_secret=get("WEBHOOK_SECRET") or "",
            compliance_officers=get_names("COMPLIANCE_OFFICERS", base.compliance_officers),
            operators=get_names("OPERATORS", base.operators),
            max_risk_score=get_int("MAX_RISK_SCORE", base.max_risk_score),
            min_mint_amount=get_int("MIN_MINT_AMOUNT", base.min_mint_amount),
            max_mint_amount=get_int("MAX_MINT_AMOUNT", base.max_mint_amount),
            daily_mint_limit=get_int("DAILY_MINT_LIMIT", base.daily_mint_limit),
            retry=retry,
            rpc_timeout=get_seconds("RPC_TIMEOUT_SECONDS", base.rpc_timeout),
            auth_window=get_seconds("AUTH_WINDOW_SECONDS", base.auth_window),
            idempotency_window=get_seconds(
                "IDEMPOTENCY_WINDOW_SECONDS", base.idempotency_window
            ),
            retry_interval=get_seconds("RETRY_INTERVAL_SECONDS", base.retry_interval),
            retry_batch_size=get_int("RETRY_BATCH_SIZE", base.retry_batch_size),
            cleanup_interval=get_seconds("CLEANUP_INTERVAL_SECONDS", base.cleanup_interval),
            log_level=get("LOG_LEVEL") or base.log_level,
            log_json=(get("LOG_JSON") or "").lower() in ("1", "true", "yes"),
        )


__all__ = ("RetryPolicy", "Settings")
