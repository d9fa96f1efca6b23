import asyncio
import json

import pytest

from fiatrails.idempotency import (
    INTERNAL_ERROR_BODY,
    INTERNAL_ERROR_STATUS,
    Completed,
    Fresh,
    InFlight,
    fingerprint,
)

from tests.support import unwrap

DAY_MS = 86_400_000
FP = fingerprint(b'{"txRef":"MPESA-1"}')


@pytest.fixture
def keys(services):
    return services.idempotency


async def test_first_sight_then_in_flight(keys):
    assert unwrap(await keys.begin("k-1", FP)) == Fresh("k-1")
    assert unwrap(await keys.begin("k-1", FP)) == InFlight("k-1")


async def test_completed_key_replays_stored_response(keys):
    unwrap(await keys.begin("k-1", FP))
    assert unwrap(await keys.complete("k-1", 201, '{"intentId":"0x01"}')) is True

    assert unwrap(await keys.begin("k-1", FP)) == Completed("k-1", 201, '{"intentId":"0x01"}')


async def test_different_body_same_key_still_replays(keys):
    unwrap(await keys.begin("k-1", FP))
    unwrap(await keys.complete("k-1", 201, "{}"))

    other = fingerprint(b'{"txRef":"MPESA-2"}')
    assert unwrap(await keys.begin("k-1", other)) == Completed("k-1", 201, "{}")


async def test_response_recorded_once(keys):
    unwrap(await keys.begin("k-1", FP))
    unwrap(await keys.complete("k-1", 201, "first"))

    assert unwrap(await keys.complete("k-1", 500, "second")) is False
    record = unwrap(await keys.get("k-1"))
    assert (record.response_status, record.response_body) == (201, "first")


async def test_expired_key_is_fresh_again(keys, clock):
    unwrap(await keys.begin("k-1", FP))
    unwrap(await keys.complete("k-1", 201, "old"))

    clock.advance(DAY_MS)
    assert unwrap(await keys.begin("k-1", FP)) == Fresh("k-1")
    record = unwrap(await keys.get("k-1"))
    assert record.in_flight
    assert record.expires_at == clock() + DAY_MS


async def test_sweep_removes_only_expired(keys, clock):
    unwrap(await keys.begin("old", FP))
    clock.advance(DAY_MS - 1)
    unwrap(await keys.begin("new", FP))

    assert unwrap(await keys.sweep_expired()) == 0
    clock.advance(1)
    assert unwrap(await keys.sweep_expired()) == 1

    assert unwrap(await keys.get("old")) is None
    assert unwrap(await keys.get("new")) is not None


async def test_concurrent_begin_has_one_owner(keys):
    outcomes = await asyncio.gather(*(keys.begin("k-1", FP) for _ in range(5)))
    decided = [unwrap(o) for o in outcomes]

    assert sum(isinstance(d, Fresh) for d in decided) == 1
    assert all(isinstance(d, Fresh | InFlight) for d in decided)


async def test_completion_records_internal_error_when_handler_raises(keys):
    unwrap(await keys.begin("k-1", FP))

    with pytest.raises(RuntimeError):
        async with keys.completion("k-1"):
            raise RuntimeError("boom")

    completed = unwrap(await keys.begin("k-1", FP))
    assert completed == Completed("k-1", INTERNAL_ERROR_STATUS, INTERNAL_ERROR_BODY)
    assert json.loads(completed.body)["error"] == "internal_error"


async def test_completion_records_internal_error_when_left_open(keys):
    unwrap(await keys.begin("k-1", FP))

    async with keys.completion("k-1"):
        pass

    assert unwrap(await keys.begin("k-1", FP)) == Completed(
        "k-1", INTERNAL_ERROR_STATUS, INTERNAL_ERROR_BODY
    )


async def test_completion_keeps_handler_response(keys):
    unwrap(await keys.begin("k-1", FP))

    async with keys.completion("k-1") as slot:
        await slot.complete(201, "created")

    assert unwrap(await keys.begin("k-1", FP)) == Completed("k-1", 201, "created")
