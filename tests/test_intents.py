import asyncio

import pytest

from fiatrails import ErrorKind, Error, Ok, build_services
from fiatrails.intents import Created, Executed, Queued, Refunded, derive_intent_id
from fiatrails.ledger import IntentStatus, LedgerRejected, LedgerUnavailable
from fiatrails.intents import classify_ledger_error
from fiatrails.retry import OperationKind

from tests.support import ONE_TOKEN, USER, unwrap, unwrap_err

SETTLE_MS = 30_000


async def _submit(services, ref="MPESA-1", amount=ONE_TOKEN, user=USER):
    created = unwrap(await services.coordinator.submit(user, amount, "KES", ref))
    assert isinstance(created, Created)
    return created.intent


async def _settle(services, clock):
    clock.advance(SETTLE_MS)
    return await services.retry_sweeper.sweep()


def test_intent_id_is_deterministic():
    a = derive_intent_id(USER, "MPESA-1", 1_700_000_000)
    assert a == derive_intent_id(USER, "MPESA-1", 1_700_000_000)
    assert a.startswith("0x") and len(a) == 66
    assert a != derive_intent_id(USER, "MPESA-1", 1_700_000_001)
    assert a != derive_intent_id(USER, "MPESA-2", 1_700_000_000)


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (LedgerRejected(LedgerRejected.DUPLICATE_INTENT, "dup"), "duplicate_intent"),
        (LedgerRejected(LedgerRejected.ALREADY_FINALIZED, "done"), "already_finalized"),
        (LedgerRejected(LedgerRejected.NOT_COMPLIANT, "kyc"), "not_compliant"),
        (LedgerRejected(LedgerRejected.INTENT_NOT_FOUND, "gone"), "ledger_unavailable"),
        (LedgerRejected("OTHER", "weird"), "ledger_mismatch"),
        (LedgerUnavailable("down"), "ledger_unavailable"),
        (TimeoutError(), "ledger_unavailable"),
        (ConnectionResetError(), "ledger_unavailable"),
    ],
)
def test_classify_ledger_error(error, code):
    assert classify_ledger_error(error, "0x01").code == code


async def test_submit_locks_custody(services, ledger, clock):
    intent = await _submit(services)

    assert intent.status is IntentStatus.PENDING
    assert intent.submitted_at == clock() // 1000
    assert intent.intent_id == derive_intent_id(USER, "MPESA-1", intent.submitted_at)
    assert await services.intents.get(intent.intent_id) == intent
    assert ledger.custody[USER] == ONE_TOKEN
    assert [e.name for e in ledger.events_for(intent.intent_id)] == ["IntentSubmitted"]


async def test_duplicate_submission_rejected(services, ledger):
    intent = await _submit(services)

    err = unwrap_err(await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-1"))
    assert err.code == "duplicate_intent"
    assert err.kind is ErrorKind.INTEGRITY_VIOLATION
    assert ledger.calls["submit"] == 1
    assert await services.intents.list_for_user(USER) == [intent]


async def test_same_reference_later_is_a_new_intent(services, clock):
    first = await _submit(services)
    clock.advance(1_000)
    second = await _submit(services)
    assert first.intent_id != second.intent_id


@pytest.mark.parametrize(
    ("user", "amount", "target", "ref"),
    [
        ("", ONE_TOKEN, "KES", "MPESA-1"),
        (USER, ONE_TOKEN, "KES", ""),
        (USER, 0, "KES", "MPESA-1"),
        (USER, ONE_TOKEN - 1, "KES", "MPESA-1"),
        (USER, 10**21 + 1, "KES", "MPESA-1"),
        (USER, ONE_TOKEN, "USD", "MPESA-1"),
    ],
)
async def test_invalid_submission_never_reaches_ledger(services, ledger, user, amount, target, ref):
    err = unwrap_err(await services.coordinator.submit(user, amount, target, ref))
    assert err.kind is ErrorKind.VALIDATION
    assert ledger.calls["submit"] == 0


async def test_daily_limit_over_trailing_day(settings, ledger, clock):
    services = await build_services(settings.with_limits(daily=2 * ONE_TOKEN), ledger, clock)
    try:
        await _submit(services, "MPESA-1")
        await _submit(services, "MPESA-2")
        err = unwrap_err(await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-3"))
        assert err.message == "Daily mint limit exceeded"

        clock.advance(86_400_000 + 1_000)
        await _submit(services, "MPESA-3")
    finally:
        await services.close()


async def test_refunded_amount_frees_daily_limit(settings, ledger, clock):
    services = await build_services(settings.with_limits(daily=ONE_TOKEN), ledger, clock)
    try:
        first = await _submit(services, "MPESA-1")
        unwrap(await services.coordinator.refund(first.intent_id, "reversed"))
        await _submit(services, "MPESA-2")
    finally:
        await services.close()


async def test_rejected_submit_releases_row(settings, ledger, clock, monkeypatch):
    original = ledger.submit

    async def reject_once(intent):
        monkeypatch.setattr(ledger, "submit", original)
        raise LedgerRejected("AMOUNT_OUT_OF_RANGE", "amount above ledger cap")

    monkeypatch.setattr(ledger, "submit", reject_once)
    services = await build_services(settings.with_limits(daily=ONE_TOKEN), ledger, clock)
    try:
        err = unwrap_err(await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-1"))
        assert err.code == "ledger_mismatch"

        [row] = await services.intents.list_for_user(USER)
        assert row.status is IntentStatus.REFUNDED
        assert row.refund_reason == f"ledger rejected submit: {err.message}"
        assert ledger.custody[USER] == 0

        await _submit(services, "MPESA-2")
    finally:
        await services.close()


async def test_confirm_executes_once(services, ledger, make_compliant):
    await make_compliant()
    intent = await _submit(services)

    executed = unwrap(await services.coordinator.confirm(intent.intent_id))
    assert isinstance(executed, Executed)
    assert executed.intent.status is IntentStatus.EXECUTED
    assert executed.receipt.tx_hash.startswith("0x")
    assert ledger.balances[USER] == ONE_TOKEN
    assert ledger.custody[USER] == 0

    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED
    assert stored.finalized_at is not None


async def test_second_confirm_is_already_finalized(services, ledger, make_compliant):
    await make_compliant()
    intent = await _submit(services)
    unwrap(await services.coordinator.confirm(intent.intent_id))

    err = unwrap_err(await services.coordinator.confirm(intent.intent_id))
    assert err.code == "already_finalized"
    assert ledger.calls["execute"] == 1
    assert ledger.balances[USER] == ONE_TOKEN


async def test_confirm_by_reference(services, ledger, make_compliant):
    await make_compliant()
    intent = await _submit(services, "MPESA-77")

    executed = unwrap(await services.coordinator.confirm(external_reference="MPESA-77"))
    assert executed.intent.intent_id == intent.intent_id


async def test_confirm_unknown_intent(services):
    assert unwrap_err(await services.coordinator.confirm("0xdead")).kind is ErrorKind.NOT_FOUND
    err = unwrap_err(await services.coordinator.confirm())
    assert err.kind is ErrorKind.VALIDATION


async def test_non_compliant_user_stays_pending(services, ledger):
    intent = await _submit(services)

    err = unwrap_err(await services.coordinator.confirm(intent.intent_id))
    assert err.kind is ErrorKind.COMPLIANCE_REJECTION
    assert ledger.calls["execute"] == 0
    assert await services.retry_queue.depth() == 0

    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.PENDING


async def test_compliance_checked_at_confirmation_not_submission(services, ledger, make_compliant):
    intent = await _submit(services)
    unwrap_err(await services.coordinator.confirm(intent.intent_id))

    await make_compliant()
    assert isinstance(unwrap(await services.coordinator.confirm(intent.intent_id)), Executed)
    assert ledger.balances[USER] == ONE_TOKEN


async def test_high_risk_user_rejected(services, ledger, make_compliant):
    await make_compliant(risk_score=71)
    intent = await _submit(services)

    assert unwrap_err(await services.coordinator.confirm(intent.intent_id)).code == "not_compliant"
    assert ledger.balances[USER] == 0


async def test_refund_returns_custody(services, ledger):
    intent = await _submit(services)

    refunded = unwrap(await services.coordinator.refund(intent.intent_id, "payment reversed"))
    assert isinstance(refunded, Refunded)
    assert refunded.intent.refund_reason == "payment reversed"
    assert ledger.refunded[USER] == ONE_TOKEN
    assert ledger.custody[USER] == 0

    err = unwrap_err(await services.coordinator.confirm(intent.intent_id))
    assert err.code == "already_finalized"
    assert ledger.balances[USER] == 0


async def test_refund_requires_reason(services):
    intent = await _submit(services)
    assert unwrap_err(await services.coordinator.refund(intent.intent_id, "")).kind is (
        ErrorKind.VALIDATION
    )


async def test_transient_submit_is_queued_and_retried(services, ledger, clock):
    ledger.fail_next(1, "submit")
    queued = unwrap(await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-1"))

    assert queued == Queued(queued.intent_id, OperationKind.SUBMIT)
    assert ledger.custody[USER] == 0
    assert await services.intents.get(queued.intent_id) is not None

    report = await _settle(services, clock)
    assert report.succeeded == 1
    assert ledger.custody[USER] == ONE_TOKEN
    assert await services.retry_queue.depth() == 0


async def test_transient_execute_is_queued_and_retried(services, ledger, clock, make_compliant):
    await make_compliant()
    intent = await _submit(services)
    ledger.fail_next(1, "execute")

    queued = unwrap(await services.coordinator.confirm(intent.intent_id))
    assert queued == Queued(intent.intent_id, OperationKind.EXECUTE)
    assert ledger.balances[USER] == 0

    items = await services.retry_queue.list_for_intent(intent.intent_id)
    assert [i.payload for i in items] == [{"intentId": intent.intent_id}]

    await _settle(services, clock)
    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED
    assert ledger.balances[USER] == ONE_TOKEN


async def test_lost_reply_is_reconciled_not_repeated(services, ledger, clock, make_compliant):
    await make_compliant()
    intent = await _submit(services)
    ledger.lose_next_reply(1)

    assert isinstance(unwrap(await services.coordinator.confirm(intent.intent_id)), Queued)
    assert ledger.balances[USER] == ONE_TOKEN

    report = await _settle(services, clock)
    assert report.succeeded == 1
    assert ledger.calls["execute"] == 1
    assert ledger.balances[USER] == ONE_TOKEN

    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED


async def test_concurrent_confirms_credit_once(services, ledger, make_compliant):
    await make_compliant()
    intent = await _submit(services)

    results = await asyncio.gather(
        *(services.coordinator.confirm(intent.intent_id) for _ in range(3))
    )

    assert ledger.balances[USER] == ONE_TOKEN
    for result in results:
        match result:
            case Ok(outcome):
                assert isinstance(outcome, Executed)
            case Error(err):
                assert err.code == "already_finalized"
    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED


async def test_refund_after_ledger_side_execute_reconciles(services, ledger, make_compliant):
    await make_compliant()
    intent = await _submit(services)
    await ledger.execute(intent.intent_id)

    err = unwrap_err(await services.coordinator.refund(intent.intent_id, "too late"))
    assert err.code == "already_finalized"
    assert ledger.refunded[USER] == 0

    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED
