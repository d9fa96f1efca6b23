"""
idempotent_response — route decorator over the idempotency store.

Wraps the handler's returned Response instead of patching the response
writer:

    @router.post("/mint-intents", dependencies=[Depends(client_auth)])
    @idempotent_response
    async def create_intent(request: Request) -> Response: ...

- no X-Idempotency-Key   → 400
- key in flight          → 409
- key completed          → stored status and body, byte for byte
- first sight            → run handler, record what it returned

The handler must take `request: Request` and return a Response. ApiError
and SQLAlchemyError raised by the handler are rendered and recorded like
any other response, so a replay matches the first answer.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import Request, Response
from sqlalchemy.exc import SQLAlchemyError

from fiatrails._types import Ok, Error
from fiatrails.api._deps import get_services
from fiatrails.api._errors import ApiError, error_response
from fiatrails.auth import IDEMPOTENCY_KEY_HEADER
from fiatrails.errors import MintErrors
from fiatrails.idempotency import Completed, Fresh, InFlight, fingerprint

logger = structlog.get_logger(component="api")

REPLAYED_HEADER = "Idempotent-Replayed"

type Handler = Callable[..., Awaitable[Response]]


def idempotent_response(handler: Handler) -> Handler:
    @functools.wraps(handler)
    async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
        keys = get_services(request).idempotency
        key = request.headers.get(IDEMPOTENCY_KEY_HEADER)
        if not key:
            return error_response(
                MintErrors.invalid_request(f"{IDEMPOTENCY_KEY_HEADER} header is required")
            )

        match await keys.begin(key, fingerprint(await request.body())):
            case Error(err):
                return error_response(err)
            case Ok(InFlight()):
                return error_response(MintErrors.key_in_flight(key))
            case Ok(Completed(status=status, body=body)):
                return Response(
                    content=body.encode(),
                    status_code=status,
                    media_type="application/json",
                    headers={REPLAYED_HEADER: "true"},
                )
            case Ok(Fresh()):
                pass

        async with keys.completion(key) as slot:
            try:
                response = await handler(request, *args, **kwargs)
            except ApiError as e:
                response = error_response(e.error)
            except SQLAlchemyError as e:
                # Recorded as the app-level handler would render it
                logger.error("store_failed", path=request.url.path, error=str(e))
                response = error_response(MintErrors.store_error("Storage unavailable", e))
            await slot.complete(response.status_code, bytes(response.body).decode())
        return response

    return wrapper


__all__ = ("REPLAYED_HEADER", "idempotent_response")
