"""
FastAPI dependencies — services lookup, per-channel authentication and the
operator check for refunds and dead-letter work.
"""

from __future__ import annotations

from fastapi import Request

from fiatrails._types import Error
from fiatrails.api._errors import ApiError
from fiatrails.auth import TIMESTAMP_HEADER, Channel, Envelope
from fiatrails.errors import MintErrors
from fiatrails.services import Services

OPERATOR_HEADER = "X-Operator"


def get_services(request: Request) -> Services:
    return request.app.state.services


async def _authenticate(request: Request, channel: Channel) -> None:
    services = get_services(request)
    settings = services.settings
    envelope = Envelope(
        secret=settings.client_secret if channel is Channel.CLIENT else settings.webhook_secret,
        window_ms=int(settings.auth_window.total_seconds() * 1000),
        channel=channel,
    )
    # Starlette caches the body, so handlers can read it again
    body = await request.body()
    match envelope.verify(
        body,
        request.headers.get(channel.signature_header),
        request.headers.get(TIMESTAMP_HEADER),
        services.clock(),
    ):
        case Error(err):
            raise ApiError(err)
        case _:
            pass


async def client_auth(request: Request) -> None:
    await _authenticate(request, Channel.CLIENT)


async def webhook_auth(request: Request) -> None:
    await _authenticate(request, Channel.WEBHOOK)


async def operator_auth(request: Request) -> None:
    """Client signature plus an X-Operator header naming a configured operator."""
    await _authenticate(request, Channel.CLIENT)
    name = request.headers.get(OPERATOR_HEADER)
    if not name or name not in get_services(request).settings.operators:
        raise ApiError(MintErrors.not_operator(name))


__all__ = ("OPERATOR_HEADER", "get_services", "client_auth", "operator_auth", "webhook_auth")
