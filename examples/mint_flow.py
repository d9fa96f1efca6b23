"""
Mint Flow Example — deposit → KYC → confirmation → mint, once.

Run: uv run python examples/mint_flow.py
"""

from kungfu import Ok, Error

from fiatrails import ManualClock
from fiatrails.intents import Created, Executed, Queued
from fiatrails.ledger import MemoryLedger
from examples._infra import OFFICER, ONE_TOKEN, USER, banner, demo_services, run


async def main() -> None:
    banner("Mint Flow")

    ledger = MemoryLedger()
    clock = ManualClock()
    services = await demo_services(ledger, clock)
    coordinator = services.coordinator

    try:
        # 1. Deposit lands before KYC: intent is created, custody locked
        print("1. Submit:")
        match await coordinator.submit(USER, 5 * ONE_TOKEN, "KES", "MPESA-QX81"):
            case Ok(Created(intent)):
                intent_id = intent.intent_id
                print(f"   intent={intent_id[:18]}…, status={intent.status.value}")
            case other:
                print(f"   unexpected: {other}")
                return
        print(f"   custody={ledger.custody[USER]}\n")

        # 2. Confirmation before KYC: rejected, intent stays pending
        print("2. Confirm before KYC:")
        match await coordinator.confirm(intent_id):
            case Error(e):
                print(f"   {e.code}: {e.message}")
            case Ok(outcome):
                print(f"   unexpected: {outcome}")

        # 3. Officer approves, confirmation goes through
        print("\n3. KYC approved, confirm again:")
        await services.compliance.update_user(USER, 20, "ipfs://kyc/qx81", True, OFFICER)
        match await coordinator.confirm(intent_id):
            case Ok(Executed(intent, receipt)):
                print(f"   status={intent.status.value}, tx={receipt.tx_hash[:18]}…")
            case other:
                print(f"   unexpected: {other}")
        print(f"   balance={ledger.balances[USER]}\n")

        # 4. Redelivered webhook: status guard, no second credit
        print("4. Duplicate confirmation:")
        match await coordinator.confirm(intent_id):
            case Error(e):
                print(f"   {e.code}")
            case Ok(outcome):
                print(f"   unexpected: {outcome}")
        print(f"   balance={ledger.balances[USER]} (unchanged)\n")

        # 5. Ledger applies the mint but the reply is lost
        print("5. Lost reply, then retry sweep:")
        match await coordinator.submit(USER, ONE_TOKEN, "KES", "MPESA-QX82"):
            case Ok(Created(intent)):
                second_id = intent.intent_id
            case other:
                print(f"   unexpected: {other}")
                return
        ledger.lose_next_reply(1)
        match await coordinator.confirm(second_id):
            case Ok(Queued(operation=operation)):
                print(f"   queued {operation.value}, depth={await services.retry_queue.depth()}")
            case other:
                print(f"   unexpected: {other}")

        clock.advance(services.retry_queue.policy.initial_delay_ms)
        report = await services.retry_sweeper.sweep()
        print(f"   sweep: succeeded={report.succeeded}")
        print(f"   execute calls={ledger.calls['execute']}, balance={ledger.balances[USER]}")
    finally:
        await services.close()


if __name__ == "__main__":
    run(main)
