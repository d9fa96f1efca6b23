"""
HTTP routes.

Note: no 'from __future__ import annotations' here. idempotent_response
wraps handlers and FastAPI must see real annotation objects through
functools.wraps.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from combinators import lift as L

from fiatrails._types import Ok, Error
from fiatrails.api._deps import client_auth, get_services, operator_auth, webhook_auth
from fiatrails.api._errors import ApiError
from fiatrails.api._idempotent import idempotent_response
from fiatrails.api._schemas import (
    ComplianceIn,
    MintIntentIn,
    PaymentCallbackIn,
    RefundIn,
    compliance_json,
    parse,
)
from fiatrails.compliance import Officer, evaluate
from fiatrails.deadletter import ReplayOutcome
from fiatrails.errors import ErrorKind, MintErrors
from fiatrails.intents import Created, Executed, Queued, Refunded

router = APIRouter()


def _queued(queued: Queued) -> JSONResponse:
    return JSONResponse(
        {
            "intentId": queued.intent_id,
            "status": "queued",
            "operation": queued.operation.value,
        },
        status_code=202,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Client channel
# ═══════════════════════════════════════════════════════════════════════════════


@router.post("/mint-intents", dependencies=[Depends(client_auth)])
@idempotent_response
async def create_mint_intent(request: Request) -> Response:
    services = get_services(request)
    body = parse(MintIntentIn, await request.body())

    match await services.coordinator.submit(
        body.user_address,
        body.amount,
        body.country_code,
        body.tx_ref,
    ):
        case Ok(Created(intent)):
            return JSONResponse(intent.to_json(), status_code=201)
        case Ok(Queued() as queued):
            return _queued(queued)
        case Error(err):
            raise ApiError(err)


@router.get("/intents/{intent_id}", dependencies=[Depends(client_auth)])
async def get_intent(request: Request, intent_id: str) -> Response:
    intent = await get_services(request).intents.get(intent_id)
    if intent is None:
        raise ApiError(MintErrors.intent_not_found(intent_id))
    return JSONResponse(intent.to_json())


@router.post("/intents/{intent_id}/refund", dependencies=[Depends(operator_auth)])
async def refund_intent(request: Request, intent_id: str) -> Response:
    services = get_services(request)
    body = parse(RefundIn, await request.body())

    match await services.coordinator.refund(intent_id, body.reason):
        case Ok(Refunded(intent, receipt)):
            return JSONResponse({**intent.to_json(), "txHash": receipt.tx_hash})
        case Ok(Queued() as queued):
            return _queued(queued)
        case Error(err):
            raise ApiError(err)


@router.put("/compliance/{user}", dependencies=[Depends(client_auth)])
async def update_compliance(
    request: Request,
    user: str,
    x_officer: Annotated[str | None, Header()] = None,
) -> Response:
    services = get_services(request)
    body = parse(ComplianceIn, await request.body())
    officer = Officer(x_officer) if x_officer else None

    match await services.compliance.update_user(
        user,
        body.risk_score,
        body.attestation_ref,
        body.verified,
        officer,
    ):
        case Ok(record):
            return JSONResponse(
                {
                    **compliance_json(record),
                    "compliant": evaluate(record, services.settings.max_risk_score),
                }
            )
        case Error(err):
            raise ApiError(err)


@router.get("/compliance/{user}", dependencies=[Depends(client_auth)])
async def get_compliance(request: Request, user: str) -> Response:
    services = get_services(request)
    record = await services.compliance.get_record(user)
    return JSONResponse(
        {
            "user": user,
            "record": None if record is None else compliance_json(record),
            "compliant": evaluate(record, services.settings.max_risk_score),
        }
    )


@router.get("/dead-letters", dependencies=[Depends(operator_auth)])
async def list_dead_letters(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> Response:
    entries = await get_services(request).dead_letters.list(limit)
    return JSONResponse(
        {
            "entries": [
                {"id": e.id, **e.to_record(), "replayedAt": e.replayed_at} for e in entries
            ]
        }
    )


@router.post("/dead-letters/{entry_id}/replay", dependencies=[Depends(operator_auth)])
async def replay_dead_letter(request: Request, entry_id: int) -> Response:
    services = get_services(request)

    match await services.dead_letters.replay(
        entry_id,
        services.coordinator.retry_operation,
        services.retry_queue,
    ):
        case Ok(ReplayOutcome.SUCCEEDED):
            return JSONResponse({"id": entry_id, "status": "replayed"})
        case Ok(ReplayOutcome.REQUEUED):
            return JSONResponse({"id": entry_id, "status": "queued"}, status_code=202)
        case Error(err):
            raise ApiError(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook channel
# ═══════════════════════════════════════════════════════════════════════════════


@router.post("/callbacks/payment", dependencies=[Depends(webhook_auth)])
async def payment_callback(request: Request) -> Response:
    """
    Payment provider confirmation.

    Redelivery is safe without an idempotency key: the intent's status
    guard turns a second confirmation into already_finalized.
    """
    services = get_services(request)
    body = parse(PaymentCallbackIn, await request.body())
    if not body.intent_id and not body.tx_ref:
        raise ApiError(MintErrors.invalid_request("intentId or txRef is required"))

    match await services.coordinator.confirm(body.intent_id, body.tx_ref):
        case Ok(Executed(intent, receipt)):
            return JSONResponse(
                {"status": "success", "intentId": intent.intent_id, "txHash": receipt.tx_hash}
            )
        case Ok(Queued() as queued):
            return _queued(queued)
        case Error(err) if err.kind is ErrorKind.COMPLIANCE_REJECTION:
            return JSONResponse({"status": "rejected", "error": err.code, "message": err.message})
        case Error(err) if err.code == "already_finalized":
            return JSONResponse(
                {"status": "already_finalized", "error": err.code, "message": err.message}
            )
        case Error(err):
            raise ApiError(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════════


@router.get("/health")
async def health(request: Request) -> Response:
    services = get_services(request)

    async def check_database() -> None:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))

    database = await L.catching_async(check_database, on_error=str)
    ledger = await L.catching_async(services.ledger.ping, on_error=str)

    checks = {
        "database": "ok" if isinstance(database, Ok) else "error",
        "ledger": "ok" if isinstance(ledger, Ok) else "error",
    }
    healthy = all(v == "ok" for v in checks.values())
    body: dict[str, object] = {"status": "healthy" if healthy else "degraded", "checks": checks}
    if checks["database"] == "ok":
        body["retryQueueDepth"] = await services.retry_queue.depth()
        body["deadLetterDepth"] = await services.dead_letters.depth()
    return JSONResponse(body, status_code=200 if healthy else 503)


__all__ = ("router",)
