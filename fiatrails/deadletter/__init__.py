"""
Dead-letter archive.

    archive = DeadLetterArchive(session_factory)
    entries = await archive.list()
    entries[0].to_record()
    # {"operation": "execute", "intentId": "0x...", "payload": {...},
    #  "attempts": 4, "lastError": "...", "createdAt": ..., "failedAt": ...}

    await archive.replay(entry.id, coordinator.retry_operation, retry_queue)

Entries arrive from the retry queue (exhausted or terminal items) and are
never replayed automatically.
"""

from fiatrails.deadletter._types import DeadLetterEntry, ReplayOutcome
from fiatrails.deadletter._archive import DeadLetterArchive

__all__ = ("DeadLetterEntry", "ReplayOutcome", "DeadLetterArchive")
