import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from fiatrails.api import OPERATOR_HEADER, REPLAYED_HEADER
from fiatrails.auth import Channel
from fiatrails.idempotency import fingerprint
from fiatrails.retry import OperationKind

from tests.support import CLIENT_SECRET, OFFICER, ONE_TOKEN, OPERATOR, USER, unwrap

MINT = {
    "userAddress": USER,
    "amount": str(ONE_TOKEN),
    "countryCode": "KES",
    "txRef": "MPESA-1",
}


@pytest.fixture
def post_mint(client, signed):
    async def post(payload=MINT, key="key-1"):
        body, headers = signed(payload, key=key)
        return await client.post("/mint-intents", content=body, headers=headers)

    return post


@pytest.fixture
def callback(client, signed):
    async def post(payload):
        body, headers = signed(payload, channel=Channel.WEBHOOK)
        return await client.post("/callbacks/payment", content=body, headers=headers)

    return post


async def _put_compliance(client, signed, user=USER, officer=OFFICER, **fields):
    payload = {"riskScore": 10, "attestationRef": "ipfs://kyc/1", "verified": True} | fields
    body, headers = signed(payload)
    if officer is not None:
        headers["X-Officer"] = officer
    return await client.put(f"/compliance/{user}", content=body, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════════
# Mint intents
# ═══════════════════════════════════════════════════════════════════════════════


async def test_create_intent(post_mint, ledger):
    response = await post_mint()

    assert response.status_code == 201
    data = response.json()
    assert data["userAddress"] == USER
    assert data["amount"] == str(ONE_TOKEN)
    assert data["status"] == "pending"
    assert data["intentId"].startswith("0x")
    assert ledger.custody[USER] == ONE_TOKEN


async def test_same_key_replays_exact_response(post_mint, services, ledger):
    first = await post_mint()
    second = await post_mint()

    assert second.status_code == first.status_code == 201
    assert second.content == first.content
    assert second.headers[REPLAYED_HEADER] == "true"
    assert REPLAYED_HEADER not in first.headers
    assert ledger.calls["submit"] == 1
    assert len(await services.intents.list_for_user(USER)) == 1


async def test_parallel_same_key_creates_one_intent(post_mint, services):
    responses = await asyncio.gather(post_mint(), post_mint(), post_mint())

    assert sorted(r.status_code for r in responses)[0] == 201
    assert {r.status_code for r in responses} <= {201, 409}
    assert len(await services.intents.list_for_user(USER)) == 1


async def test_key_in_flight_conflicts(post_mint, services):
    unwrap(await services.idempotency.begin("key-1", fingerprint(b"")))

    response = await post_mint()
    assert response.status_code == 409
    assert response.json()["error"] == "request_in_progress"


async def test_missing_idempotency_key(post_mint):
    response = await post_mint(key=None)
    assert response.status_code == 400


async def test_validation_error_is_recorded(post_mint):
    bad = MINT | {"amount": "not-a-number"}
    first = await post_mint(bad)
    second = await post_mint(bad)

    assert first.status_code == second.status_code == 400
    assert first.json()["error"] == "invalid_request"
    assert second.headers[REPLAYED_HEADER] == "true"


async def test_duplicate_submission_conflicts(post_mint):
    assert (await post_mint(key="key-1")).status_code == 201

    response = await post_mint(key="key-2")
    assert response.status_code == 409
    assert response.json()["error"] == "duplicate_intent"


async def test_transient_submit_is_accepted(post_mint, ledger):
    ledger.fail_next(1, "submit")

    response = await post_mint()
    assert response.status_code == 202
    assert response.json()["status"] == "queued"
    assert response.json()["operation"] == OperationKind.SUBMIT.value


async def test_store_failure_replays_same_response(post_mint, services, monkeypatch):
    async def store_down(*args, **kwargs):
        raise OperationalError("INSERT INTO intents", {}, Exception("database is locked"))

    monkeypatch.setattr(services.coordinator, "submit", store_down)

    first = await post_mint(key="k-store")
    second = await post_mint(key="k-store")

    assert first.status_code == second.status_code == 503
    assert first.json()["error"] == "store_error"
    assert second.content == first.content
    assert second.headers[REPLAYED_HEADER] == "true"


@pytest.mark.parametrize(
    "tamper",
    [
        lambda h: h.pop("X-Signature"),
        lambda h: h.update({"X-Signature": "00" * 32}),
        lambda h: h.update({"X-Timestamp": "0"}),
    ],
)
async def test_unauthenticated_requests_rejected(client, signed, services, tamper):
    body, headers = signed(MINT, key="key-1")
    tamper(headers)

    response = await client.post("/mint-intents", content=body, headers=headers)
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "unauthorized"}
    assert unwrap(await services.idempotency.get("key-1")) is None


async def test_stale_signature_rejected(client, signed, clock):
    body, headers = signed(MINT, key="key-1", timestamp=clock() - 300_001)
    response = await client.post("/mint-intents", content=body, headers=headers)
    assert response.status_code == 401


async def test_get_intent(client, signed, post_mint):
    intent_id = (await post_mint()).json()["intentId"]

    _, headers = signed()
    response = await client.get(f"/intents/{intent_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["txRef"] == "MPESA-1"

    assert (await client.get("/intents/0xdead", headers=headers)).status_code == 404


async def test_refund(client, signed, post_mint, ledger):
    intent_id = (await post_mint()).json()["intentId"]

    body, headers = signed({"reason": "payment reversed"})
    headers[OPERATOR_HEADER] = OPERATOR
    response = await client.post(f"/intents/{intent_id}/refund", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "refunded"
    assert response.json()["refundReason"] == "payment reversed"
    assert response.json()["txHash"].startswith("0x")
    assert ledger.refunded[USER] == ONE_TOKEN


@pytest.mark.parametrize("operator", [None, "mallory"])
async def test_refund_requires_operator(client, signed, post_mint, services, ledger, operator):
    intent_id = (await post_mint()).json()["intentId"]

    body, headers = signed({"reason": "payment reversed"})
    if operator is not None:
        headers[OPERATOR_HEADER] = operator
    response = await client.post(f"/intents/{intent_id}/refund", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"] == "not_operator"
    assert ledger.refunded[USER] == 0
    stored = await services.intents.get(intent_id)
    assert stored is not None and stored.status.value == "pending"


# ═══════════════════════════════════════════════════════════════════════════════
# Payment callbacks
# ═══════════════════════════════════════════════════════════════════════════════


async def test_one_token_end_to_end(client, signed, post_mint, callback, ledger):
    assert (await _put_compliance(client, signed)).status_code == 200
    intent_id = (await post_mint()).json()["intentId"]

    response = await callback({"intentId": intent_id, "txRef": "MPESA-1"})
    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert response.json()["intentId"] == intent_id
    assert ledger.balances[USER] == 10**18

    again = await callback({"intentId": intent_id, "txRef": "MPESA-1"})
    assert again.status_code == 200
    assert again.json()["status"] == "already_finalized"
    assert ledger.balances[USER] == 10**18
    assert ledger.calls["execute"] == 1


async def test_callback_by_reference(client, signed, post_mint, callback, ledger):
    await _put_compliance(client, signed)
    await post_mint()

    response = await callback({"txRef": "MPESA-1"})
    assert response.json()["status"] == "success"
    assert ledger.balances[USER] == ONE_TOKEN


async def test_callback_for_non_compliant_user(post_mint, callback, ledger):
    intent_id = (await post_mint()).json()["intentId"]

    response = await callback({"intentId": intent_id})
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["error"] == "not_compliant"
    assert ledger.balances[USER] == 0


async def test_callback_transient_is_accepted(client, signed, post_mint, callback, ledger):
    await _put_compliance(client, signed)
    intent_id = (await post_mint()).json()["intentId"]
    ledger.fail_next(1, "execute")

    response = await callback({"intentId": intent_id})
    assert response.status_code == 202
    assert response.json()["operation"] == "execute"


async def test_callback_errors(callback):
    assert (await callback({"intentId": "0xdead"})).status_code == 404
    assert (await callback({})).status_code == 400


async def test_callback_needs_webhook_secret(client, signed, post_mint):
    intent_id = (await post_mint()).json()["intentId"]

    body, headers = signed({"intentId": intent_id}, channel=Channel.WEBHOOK, secret=CLIENT_SECRET)
    response = await client.post("/callbacks/payment", content=body, headers=headers)
    assert response.status_code == 401

    body, headers = signed({"intentId": intent_id})
    response = await client.post("/callbacks/payment", content=body, headers=headers)
    assert response.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════════
# Compliance
# ═══════════════════════════════════════════════════════════════════════════════


async def test_compliance_update_and_read(client, signed):
    response = await _put_compliance(client, signed, riskScore=70)
    assert response.status_code == 200
    assert response.json()["compliant"] is True
    assert response.json()["updatedBy"] == OFFICER

    _, headers = signed()
    response = await client.get(f"/compliance/{USER}", headers=headers)
    assert response.json()["compliant"] is True
    assert response.json()["record"]["riskScore"] == 70


async def test_compliance_unknown_user(client, signed):
    _, headers = signed()
    response = await client.get("/compliance/0xnobody", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"user": "0xnobody", "record": None, "compliant": False}


async def test_compliance_update_requires_officer(client, signed):
    assert (await _put_compliance(client, signed, officer=None)).status_code == 401
    assert (await _put_compliance(client, signed, officer="mallory")).status_code == 401


async def test_compliance_risk_score_range(client, signed):
    response = await _put_compliance(client, signed, riskScore=101)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_risk_score"


# ═══════════════════════════════════════════════════════════════════════════════
# Dead letters and health
# ═══════════════════════════════════════════════════════════════════════════════


async def test_dead_letter_list_and_replay(client, signed, post_mint, services, ledger):
    await _put_compliance(client, signed)
    intent_id = (await post_mint()).json()["intentId"]
    entry = await services.dead_letters.append(
        OperationKind.EXECUTE, intent_id, {"intentId": intent_id}, 4, "ledger down"
    )

    _, headers = signed()
    headers[OPERATOR_HEADER] = OPERATOR
    listed = (await client.get("/dead-letters", headers=headers)).json()["entries"]
    assert [e["id"] for e in listed] == [entry.id]
    assert listed[0]["operation"] == "execute"
    assert listed[0]["attempts"] == 4
    assert listed[0]["replayedAt"] is None

    body, headers = signed()
    headers[OPERATOR_HEADER] = OPERATOR
    response = await client.post(f"/dead-letters/{entry.id}/replay", content=body, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"id": entry.id, "status": "replayed"}
    assert ledger.balances[USER] == ONE_TOKEN

    response = await client.post("/dead-letters/999/replay", content=body, headers=headers)
    assert response.status_code == 404


@pytest.mark.parametrize("operator", [None, OFFICER])
async def test_dead_letters_require_operator(client, signed, services, operator):
    entry = await services.dead_letters.append(
        OperationKind.EXECUTE, "0x01", {"intentId": "0x01"}, 4, "ledger down"
    )

    _, headers = signed()
    if operator is not None:
        headers[OPERATOR_HEADER] = operator
    assert (await client.get("/dead-letters", headers=headers)).status_code == 401

    body, headers = signed()
    if operator is not None:
        headers[OPERATOR_HEADER] = operator
    response = await client.post(f"/dead-letters/{entry.id}/replay", content=body, headers=headers)
    assert response.status_code == 401

    [listed] = await services.dead_letters.list()
    assert listed.replayed_at is None


async def test_health(client, ledger):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "checks": {"database": "ok", "ledger": "ok"},
        "retryQueueDepth": 0,
        "deadLetterDepth": 0,
    }

    ledger.fail_next(1, "ping")
    response = await client.get("/health")
    assert response.status_code == 503
    assert response.json()["checks"]["ledger"] == "error"
