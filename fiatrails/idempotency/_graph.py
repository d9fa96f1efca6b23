"""
Idempotency decision graph — begin() as nodnod nodes.

Architecture:
    BeginRequest (injected)
         │
         ▼
    RequestNode
         │
         ▼
    FetchKeyNode
         │
         ├── CompletedKeyNode ──┐
         ├── InFlightKeyNode ───┤
         ├── UnseenKeyNode ─────┼── BeginOutcomeNode (@polymorphic)
         └── StoreFailureNode ──┘             │
                                              ▼
                                      BeginDecisionNode

An expired record counts as unseen: it is purged and the key re-claimed.

Note: no 'from __future__ import annotations' here, nodnod reads
type hints at runtime for dependency resolution.
"""

from dataclasses import dataclass

from nodnod import NodeError, polymorphic, case

from fiatrails import graph as G
from fiatrails._types import Result, Ok, Error
from fiatrails.errors import MintError
from fiatrails.idempotency._store import IdempotencyStore
from fiatrails.idempotency._types import (
    IdempotencyRecord,
    Fresh,
    InFlight,
    Completed,
    BeginOutcome,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Input — Request (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BeginRequest:
    """Everything begin() needs, captured at one instant."""

    key: str
    fingerprint: str
    store: IdempotencyStore
    now_ms: int
    ttl_ms: int


@G.node
class RequestNode:
    def __init__(self, request: BeginRequest) -> None:
        self.request = request

    @classmethod
    def __compose__(cls, request: BeginRequest) -> "RequestNode":
        return cls(request)


# ═══════════════════════════════════════════════════════════════════════════════
# Fetch
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FetchKeyNode:
    """Loads the current record for the key."""

    def __init__(
        self,
        record: IdempotencyRecord | None,
        request: BeginRequest,
        store_error: MintError | None = None,
    ) -> None:
        self.record = record
        self.request = request
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, req: RequestNode) -> "FetchKeyNode":
        request = req.request
        match await request.store.get(request.key):
            case Ok(record):
                return cls(record, request)
            case Error(err):
                return cls(None, request, store_error=err)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes — each validates one record state
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class CompletedKeyNode:
    """Validates: record exists, completed, not expired."""

    def __init__(self, record: IdempotencyRecord) -> None:
        self.record = record

    @classmethod
    def __compose__(cls, fetch: FetchKeyNode) -> "CompletedKeyNode":
        record = fetch.record
        if record is None:
            raise NodeError("No record")
        if record.in_flight:
            raise NodeError("Not completed")
        if record.is_expired(fetch.request.now_ms):
            raise NodeError("Expired")
        return cls(record)


@G.node
class InFlightKeyNode:
    """Validates: record exists, not completed, not expired."""

    def __init__(self, record: IdempotencyRecord) -> None:
        self.record = record

    @classmethod
    def __compose__(cls, fetch: FetchKeyNode) -> "InFlightKeyNode":
        record = fetch.record
        if record is None:
            raise NodeError("No record")
        if not record.in_flight:
            raise NodeError("Completed")
        if record.is_expired(fetch.request.now_ms):
            raise NodeError("Expired")
        return cls(record)


@G.node
class UnseenKeyNode:
    """Validates: no record, or only an expired one."""

    def __init__(self, request: BeginRequest, expired: bool) -> None:
        self.request = request
        self.expired = expired

    @classmethod
    def __compose__(cls, fetch: FetchKeyNode) -> "UnseenKeyNode":
        if fetch.store_error is not None:
            raise NodeError("Store error")
        record = fetch.record
        if record is not None and not record.is_expired(fetch.request.now_ms):
            raise NodeError("Record live")
        return cls(fetch.request, expired=record is not None)


@G.node
class StoreFailureNode:
    """Validates: the store could not be read."""

    def __init__(self, error: MintError) -> None:
        self.error = error

    @classmethod
    def __compose__(cls, fetch: FetchKeyNode) -> "StoreFailureNode":
        if fetch.store_error is None:
            raise NodeError("No store error")
        return cls(fetch.store_error)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome
# ═══════════════════════════════════════════════════════════════════════════════


type Outcome = BeginOutcome | MintError


@polymorphic[Outcome]
class BeginOutcomeNode:
    """Exactly one state node resolves, so exactly one case fires."""

    @case
    def store_failure(cls, node: StoreFailureNode) -> Outcome:
        return node.error

    @case
    def replay(cls, node: CompletedKeyNode) -> Outcome:
        record = node.record
        return Completed(
            key=record.key,
            status=record.response_status or 500,
            body=record.response_body or "",
        )

    @case
    def conflict(cls, node: InFlightKeyNode) -> Outcome:
        return InFlight(key=node.record.key)

    @case
    async def claim(cls, node: UnseenKeyNode) -> Outcome:
        """Insert the in-flight record. Losing the insert race means InFlight."""
        request = node.request

        if node.expired:
            match await request.store.purge_expired_key(request.key, request.now_ms):
                case Error(err):
                    return err
                case Ok(_):
                    pass

        inserted = await request.store.insert_pending(
            request.key,
            request.fingerprint,
            request.now_ms,
            request.now_ms + request.ttl_ms,
        )
        match inserted:
            case Error(err):
                return err
            case Ok(True):
                return Fresh(key=request.key)
            case Ok(False):
                # Lost the race; the winner may already have completed
                match await request.store.get(request.key):
                    case Ok(record) if record is not None and not record.in_flight:
                        return Completed(
                            key=record.key,
                            status=record.response_status or 500,
                            body=record.response_body or "",
                        )
                    case _:
                        return InFlight(key=request.key)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class BeginDecisionNode:
    """Converts the outcome to a typed Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: BeginOutcomeNode) -> "BeginDecisionNode":
        return cls(outcome.value)

    def to_result(self) -> Result[BeginOutcome, MintError]:
        match self.outcome:
            case MintError() as err:
                return Error(err)
            case decided:
                return Ok(decided)


async def begin_idempotent(request: BeginRequest) -> Result[BeginOutcome, MintError]:
    """Decide Fresh / InFlight / Completed for one key."""
    node = await G.run(BeginDecisionNode).inject(request)
    return node.to_result()


__all__ = (
    "BeginRequest",
    "RequestNode",
    "FetchKeyNode",
    "CompletedKeyNode",
    "InFlightKeyNode",
    "UnseenKeyNode",
    "StoreFailureNode",
    "BeginOutcomeNode",
    "BeginDecisionNode",
    "begin_idempotent",
)
