"""
Retry scheduler — exponential backoff for transient ledger failures.

    queue = RetryQueue(session_factory, RetryPolicy(max_attempts=4))
    await queue.enqueue(intent_id, OperationKind.EXECUTE, {"intentId": intent_id})

    sweeper = RetrySweeper(queue, coordinator.retry_operation)
    await sweeper.sweep()

Schedule:
    backoff(attempt) = min(initial * multiplier ** attempt, max)
    691, 1382, 2764, 5528, 11056, 22112, 30000 for the default policy.

An item lives while attempt < max_attempts; after the last failure it is
moved to the dead-letter archive in the same transaction.
"""

from fiatrails.retry._types import OperationKind, RetryItem, Disposition, SweepReport
from fiatrails.retry._backoff import backoff, schedule
from fiatrails.retry._queue import RetryQueue
from fiatrails.retry._sweeper import RetryHandler, RetrySweeper

__all__ = (
    "OperationKind",
    "RetryItem",
    "Disposition",
    "SweepReport",
    "backoff",
    "schedule",
    "RetryQueue",
    "RetryHandler",
    "RetrySweeper",
)
