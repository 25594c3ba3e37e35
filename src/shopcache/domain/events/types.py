"""Event types published by the cache layer."""

import time
from dataclasses import dataclass, field
from typing import Any

from shopcache.domain.types.operations import OperationKind


@dataclass
class Event:
    """Base class for all events.

    The timestamp field is automatically set when the event is created.
    """

    timestamp: float = field(default_factory=time.time, init=False)
    """Timestamp when the event was created (Unix timestamp)."""


@dataclass
class OperationApplied(Event):
    """An optimistic operation changed a collection locally."""

    collection_key: str
    operation_id: str
    kind: OperationKind


@dataclass
class OperationConfirmed(Event):
    """The server accepted an optimistic operation."""

    collection_key: str
    operation_id: str
    server_id: Any = None


@dataclass
class OperationRolledBack(Event):
    """An optimistic operation failed and the collection was restored.

    Attributes:
        collection_key: Collection that was restored
        operation_id: Operation that failed
        reason: Human-readable failure description
    """

    collection_key: str
    operation_id: str
    reason: str


@dataclass
class CacheInvalidated(Event):
    """Cache entries matching a pattern were removed."""

    pattern: str
    removed: int


@dataclass
class CollectionReconciled(Event):
    """Local and server state of a collection were merged.

    Attributes:
        collection_key: Collection that was reconciled
        server_count: Number of items the server knew about
        local_only_count: Number of local items the server did not know
    """

    collection_key: str
    server_count: int
    local_only_count: int
