import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from fiatrails import ManualClock, Settings, build_services
from fiatrails.api import create_app
from fiatrails.auth import IDEMPOTENCY_KEY_HEADER, Channel, signed_headers
from fiatrails.compliance import Officer
from fiatrails.ledger import MemoryLedger

from tests.support import CLIENT_SECRET, OFFICER, OPERATOR, USER, WEBHOOK_SECRET, unwrap


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings(tmp_path):
    return (
        Settings()
        .with_database_url(f"sqlite+aiosqlite:///{tmp_path / 'fiatrails.db'}")
        .with_secrets(client=CLIENT_SECRET, webhook=WEBHOOK_SECRET)
        .with_officers(OFFICER)
        .with_operators(OPERATOR)
    )


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
async def services(settings, ledger, clock):
    services = await build_services(settings, ledger, clock)
    yield services
    await services.close()


@pytest.fixture
def make_compliant(services) -> Callable[..., Awaitable[None]]:
    async def make(user: str = USER, risk_score: int = 10) -> None:
        unwrap(
            await services.compliance.update_user(
                user, risk_score, f"ipfs://kyc/{user}", True, Officer(OFFICER)
            )
        )

    return make


@pytest.fixture
async def client(services):
    app = create_app(services, run_workers=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def signed(clock) -> Callable[..., tuple[bytes, dict[str, str]]]:
    """Encode a JSON payload and sign it for one channel."""

    def sign(
        payload: Any = None,
        *,
        channel: Channel = Channel.CLIENT,
        key: str | None = None,
        secret: str | None = None,
        timestamp: int | None = None,
    ) -> tuple[bytes, dict[str, str]]:
        body = b"" if payload is None else json.dumps(payload).encode()
        if secret is None:
            secret = CLIENT_SECRET if channel is Channel.CLIENT else WEBHOOK_SECRET
        headers = {
            "Content-Type": "application/json",
            **signed_headers(secret, body, clock() if timestamp is None else timestamp, channel),
        }
        if key is not None:
            headers[IDEMPOTENCY_KEY_HEADER] = key
        return body, headers

    return sign
