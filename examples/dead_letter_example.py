"""
Dead-Letter Example — exhausted retries, then operator replay.

Run: uv run python examples/dead_letter_example.py
"""

from kungfu import Ok, Error

from fiatrails import ManualClock
from fiatrails.intents import Created
from fiatrails.ledger import MemoryLedger
from fiatrails.retry import schedule
from examples._infra import OFFICER, ONE_TOKEN, USER, banner, demo_services, run


async def main() -> None:
    banner("Dead Letters")

    ledger = MemoryLedger()
    clock = ManualClock()
    services = await demo_services(ledger, clock)
    policy = services.retry_queue.policy

    try:
        await services.compliance.update_user(USER, 10, "ipfs://kyc/1", True, OFFICER)
        match await services.coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-DL1"):
            case Ok(Created(intent)):
                intent_id = intent.intent_id
            case other:
                print(f"unexpected: {other}")
                return

        # 1. Ledger down for the first call and every retry
        print(f"1. Ledger outage, backoff {schedule(policy)} ms:")
        ledger.fail_next(policy.max_attempts + 1, "get_status")
        await services.coordinator.confirm(intent_id)
        for delay in schedule(policy):
            clock.advance(delay)
            report = await services.retry_sweeper.sweep()
            print(
                f"   +{delay}ms rescheduled={report.rescheduled} "
                f"dead_lettered={report.dead_lettered}"
            )

        [entry] = await services.dead_letters.list()
        print(f"   archived: {entry.to_record()}\n")

        # 2. Ledger back, operator replays
        print("2. Replay:")
        match await services.dead_letters.replay(
            entry.id,
            services.coordinator.retry_operation,
            services.retry_queue,
        ):
            case Ok(outcome):
                print(f"   {outcome.name}, balance={ledger.balances[USER]}")
            case Error(e):
                print(f"   {e.code}: {e.message}")
    finally:
        await services.close()


if __name__ == "__main__":
    run(main)
