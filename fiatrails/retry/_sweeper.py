"""
Retry sweeper — cooperative poller over the retry queue.

    sweeper = RetrySweeper(queue, coordinator.retry_operation, batch_size=10)
    report = await sweeper.sweep()           # one bounded batch
    await sweeper.run_forever(interval=5.0)  # until stop() or cancellation

The handler re-issues the operation. It returns normally when the work is
done, raises TransientInfraError to try again later and
TerminalOperationError to give up now. Any other exception counts as a
failed attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import combinators as C
import structlog
from kungfu import Ok, Error, LazyCoroResult

from fiatrails.errors import (
    MintError,
    MintErrors,
    TerminalOperationError,
    TransientInfraError,
)
from fiatrails.retry._queue import RetryQueue
from fiatrails.retry._types import Disposition, OperationKind, RetryItem, SweepReport

logger = structlog.get_logger(component="retry")


type RetryHandler = Callable[[OperationKind, dict[str, Any]], Awaitable[None]]


class RetrySweeper:
    """Processes due retry items in bounded batches."""

    def __init__(
        self,
        queue: RetryQueue,
        handler: RetryHandler,
        *,
        batch_size: int = 10,
    ) -> None:
        self._queue = queue
        self._handler = handler
        self._batch_size = batch_size
        self._stopped = asyncio.Event()

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        items = await self._queue.due(self._batch_size)
        if not items:
            return report

        def process(item: RetryItem) -> LazyCoroResult[Disposition, MintError]:
            return C.catching_async(
                lambda item=item: self._process(item),
                on_error=lambda e: MintErrors.store_error(f"Retry bookkeeping failed: {e}", e),
            )

        match await C.traverse_par(items, process)():
            case Ok(dispositions):
                for disposition in dispositions:
                    report.add(disposition)
            case Error(err):
                logger.error("retry_sweep_failed", error=err.message, batch=len(items))

        if report.processed:
            logger.info(
                "retry_sweep_done",
                succeeded=report.succeeded,
                rescheduled=report.rescheduled,
                dead_lettered=report.dead_lettered,
            )
        return report

    async def _process(self, item: RetryItem) -> Disposition:
        try:
            await self._handler(item.operation, item.payload)
        except TransientInfraError as e:
            return await self._queue.mark_failed(item, e.error.message)
        except TerminalOperationError as e:
            return await self._queue.mark_terminal(item, e.error.message)
        except Exception as e:
            # Unclassified failures still count toward max_attempts
            logger.exception(
                "retry_handler_crashed",
                intent_id=item.intent_id,
                operation=item.operation.value,
            )
            return await self._queue.mark_failed(item, str(e) or type(e).__name__)
        return await self._queue.mark_succeeded(item)

    async def run_forever(self, interval: float) -> None:
        """Sweep every interval seconds until stop() is called."""
        self._stopped.clear()
        logger.info("retry_sweeper_started", interval=interval, batch_size=self._batch_size)
        while not self._stopped.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("retry_sweep_crashed")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except TimeoutError:
                pass
        logger.info("retry_sweeper_stopped")

    def stop(self) -> None:
        self._stopped.set()


__all__ = ("RetryHandler", "RetrySweeper")
