"""
Background loops started by the app lifespan.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from fiatrails.services import Services

logger = structlog.get_logger(component="workers")


async def run_periodically(
    name: str,
    interval: float,
    job: Callable[[], Awaitable[Any]],
) -> None:
    """Run job every interval seconds until cancelled. Failures are logged, not fatal."""
    logger.info("worker_started", worker=name, interval=interval)
    try:
        while True:
            try:
                await job()
            except Exception:
                logger.exception("worker_job_failed", worker=name)
            await asyncio.sleep(interval)
    finally:
        logger.info("worker_stopped", worker=name)


def start_workers(services: Services) -> list[asyncio.Task[None]]:
    settings = services.settings
    return [
        asyncio.create_task(
            services.retry_sweeper.run_forever(settings.retry_interval.total_seconds()),
            name="retry_sweeper",
        ),
        asyncio.create_task(
            run_periodically(
                "idempotency_cleanup",
                settings.cleanup_interval.total_seconds(),
                services.idempotency.sweep_expired,
            ),
            name="idempotency_cleanup",
        ),
    ]


async def stop_workers(services: Services, tasks: list[asyncio.Task[None]]) -> None:
    services.retry_sweeper.stop()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ("run_periodically", "start_workers", "stop_workers")
