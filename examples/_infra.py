"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Callable, Coroutine
from pathlib import Path

from fiatrails import ManualClock, Settings, Services, build_services
from fiatrails.compliance import Officer
from fiatrails.ledger import MemoryLedger

OFFICER = Officer("alice")
USER = "0x00000000000000000000000000000000000000a1"
ONE_TOKEN = 10**18


async def demo_services(ledger: MemoryLedger, clock: ManualClock) -> Services:
    """Services over a throwaway sqlite file."""
    path = Path(tempfile.mkdtemp(prefix="fiatrails-")) / "demo.db"
    settings = (
        Settings()
        .with_database_url(f"sqlite+aiosqlite:///{path}")
        .with_secrets(client="demo-client-secret", webhook="demo-webhook-secret")
        .with_officers(OFFICER.name)
    )
    return await build_services(settings, ledger, clock)


# Helpers
def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def run(main: Callable[[], Coroutine[object, object, None]]) -> None:
    asyncio.run(main())
