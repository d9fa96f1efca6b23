"""
Authentication envelope — signed, timestamped requests.

    signature = hex(HMAC-SHA256(secret, body || ascii(timestamp_ms)))

Every failure surfaces as the same generic "unauthorized" error; the
concrete reason is only logged.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from enum import Enum

import structlog

from fiatrails._types import Result, Ok, Error
from fiatrails.errors import MintError, MintErrors

logger = structlog.get_logger(component="auth")


SIGNATURE_HEADER = "X-Signature"
WEBHOOK_SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Timestamp"
IDEMPOTENCY_KEY_HEADER = "X-Idempotency-Key"


class Channel(Enum):
    """Inbound channel. Each one has its own secret and signature header."""

    CLIENT = "client"
    WEBHOOK = "webhook"

    @property
    def signature_header(self) -> str:
        match self:
            case Channel.CLIENT:
                return SIGNATURE_HEADER
            case Channel.WEBHOOK:
                return WEBHOOK_SIGNATURE_HEADER


def sign(secret: str, body: bytes, timestamp_ms: int) -> str:
    """Hex MAC over body followed by the ASCII decimal timestamp."""
    mac = hmac.new(secret.encode(), body + str(timestamp_ms).encode("ascii"), hashlib.sha256)
    return mac.hexdigest()


@dataclass(frozen=True, slots=True)
class Envelope:
    """
    Verifier for one channel.

    window_ms bounds |now - timestamp| in both directions, so a leaked
    signature is only replayable for that long.
    """

    secret: str
    window_ms: int = 300_000
    channel: Channel = Channel.CLIENT

    def verify(
        self,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
        now_ms: int,
    ) -> Result[None, MintError]:
        if not signature or not timestamp:
            return self._reject("missing_headers")

        try:
            ts = int(timestamp)
        except ValueError:
            return self._reject("malformed_timestamp")

        if abs(now_ms - ts) > self.window_ms:
            return self._reject("stale_timestamp", skew_ms=now_ms - ts)

        expected = sign(self.secret, body, ts)
        if not hmac.compare_digest(expected.encode(), signature.strip().lower().encode()):
            return self._reject("bad_signature")

        return Ok(None)

    def _reject(self, reason: str, **extra: object) -> Result[None, MintError]:
        logger.warning("auth_rejected", channel=self.channel.value, reason=reason, **extra)
        return Error(MintErrors.unauthorized())


def signed_headers(
    secret: str,
    body: bytes,
    timestamp_ms: int,
    channel: Channel = Channel.CLIENT,
) -> dict[str, str]:
    """Headers a caller attaches to a signed request."""
    return {
        channel.signature_header: sign(secret, body, timestamp_ms),
        TIMESTAMP_HEADER: str(timestamp_ms),
    }


__all__ = (
    "SIGNATURE_HEADER",
    "WEBHOOK_SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "IDEMPOTENCY_KEY_HEADER",
    "Channel",
    "Envelope",
    "sign",
    "signed_headers",
)
