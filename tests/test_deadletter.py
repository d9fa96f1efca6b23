import pytest

from fiatrails import ErrorKind, MintErrors, TerminalOperationError, TransientInfraError
from fiatrails.deadletter import ReplayOutcome
from fiatrails.ledger import IntentStatus
from fiatrails.retry import OperationKind

from tests.support import ONE_TOKEN, USER, unwrap, unwrap_err

SETTLE_MS = 30_000


@pytest.fixture
def archive(services):
    return services.dead_letters


async def _noop(operation, payload):
    return None


async def test_entries_listed_newest_first(archive, clock):
    first = await archive.append(OperationKind.SUBMIT, "0x01", {"intentId": "0x01"}, 4, "down")
    clock.advance(1)
    second = await archive.append(OperationKind.REFUND, "0x02", {"intentId": "0x02"}, 4, "down")

    assert [e.id for e in await archive.list()] == [second.id, first.id]
    assert [e.id for e in await archive.list(intent_id="0x01")] == [first.id]
    assert await archive.depth() == 2
    assert await archive.get(first.id) == first


async def test_record_shape(archive, clock):
    entry = await archive.append(
        OperationKind.EXECUTE, "0x01", {"intentId": "0x01"}, 4, "down", created_at=123
    )

    assert entry.to_record() == {
        "operation": "execute",
        "intentId": "0x01",
        "payload": {"intentId": "0x01"},
        "attempts": 4,
        "lastError": "down",
        "createdAt": 123,
        "failedAt": clock(),
    }


async def test_replay_success_stamps_entry(services, archive, clock):
    entry = await archive.append(OperationKind.EXECUTE, "0x01", {"intentId": "0x01"}, 4, "down")
    clock.advance(5_000)

    assert unwrap(await archive.replay(entry.id, _noop, services.retry_queue)) is (
        ReplayOutcome.SUCCEEDED
    )
    replayed = await archive.get(entry.id)
    assert replayed is not None and replayed.replayed_at == clock()
    assert await services.retry_queue.depth() == 0


async def test_replay_transient_requeues_fresh_item(services, archive):
    entry = await archive.append(OperationKind.REFUND, "0x01", {"intentId": "0x01"}, 4, "down")

    async def still_down(operation, payload):
        raise TransientInfraError(MintErrors.transient("ledger down"))

    assert unwrap(await archive.replay(entry.id, still_down, services.retry_queue)) is (
        ReplayOutcome.REQUEUED
    )
    [item] = await services.retry_queue.list_for_intent("0x01")
    assert item.attempt == 0
    assert item.operation is OperationKind.REFUND
    assert item.payload == {"intentId": "0x01"}
    assert await archive.depth() == 1


async def test_replay_terminal_returns_error(services, archive):
    entry = await archive.append(OperationKind.EXECUTE, "0x01", {"intentId": "0x01"}, 4, "down")

    async def gone(operation, payload):
        raise TerminalOperationError(MintErrors.intent_not_found("0x01"))

    err = unwrap_err(await archive.replay(entry.id, gone, services.retry_queue))
    assert err.kind is ErrorKind.NOT_FOUND
    replayed = await archive.get(entry.id)
    assert replayed is not None and replayed.replayed_at is not None


async def test_replay_unknown_entry(services, archive):
    err = unwrap_err(await archive.replay(999, _noop, services.retry_queue))
    assert err.code == "dead_letter_not_found"


async def test_replay_through_coordinator_executes_once(services, ledger, clock, make_compliant):
    await make_compliant()
    intent = unwrap(await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-1")).intent
    ledger.fail_next(5, "get_status")
    unwrap(await services.coordinator.confirm(intent.intent_id))
    for _ in range(4):
        clock.advance(SETTLE_MS)
        await services.retry_sweeper.sweep()
    [entry] = await services.dead_letters.list()

    replay = services.coordinator.retry_operation
    assert unwrap(await services.dead_letters.replay(entry.id, replay, services.retry_queue)) is (
        ReplayOutcome.SUCCEEDED
    )
    assert ledger.balances[USER] == ONE_TOKEN
    stored = await services.intents.get(intent.intent_id)
    assert stored is not None and stored.status is IntentStatus.EXECUTED

    # A second replay hits the status guard
    assert unwrap(await services.dead_letters.replay(entry.id, replay, services.retry_queue)) is (
        ReplayOutcome.SUCCEEDED
    )
    assert ledger.calls["execute"] == 1
