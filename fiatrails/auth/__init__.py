"""
Authentication envelope for both inbound channels.

    envelope = Envelope(secret=settings.client_secret, window_ms=300_000)

    match envelope.verify(body, request.headers.get(SIGNATURE_HEADER),
                          request.headers.get(TIMESTAMP_HEADER), clock()):
        case Ok(_):
            ...
        case Error(err):
            ...  # err.message == "unauthorized", always

Client and webhook channels use distinct secrets. Comparison is
constant-time (hmac.compare_digest).
"""

from fiatrails.auth._envelope import (
    SIGNATURE_HEADER,
    WEBHOOK_SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    IDEMPOTENCY_KEY_HEADER,
    Channel,
    Envelope,
    sign,
    signed_headers,
)

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
