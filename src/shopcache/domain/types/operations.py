"""Optimistic operation types.

An operation moves through a small state machine::

    APPLIED -> CONFIRMED     (server accepted the write)
    APPLIED -> ROLLED_BACK   (server rejected it or the transport failed)

No other transition is valid.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from shopcache.domain.errors import ShopCacheError
from shopcache.utils import generate_temp_id

# Collection items are plain JSON-like mappings.
Item = Mapping[str, Any]


class OperationKind(Enum):
    """Kind of mutation applied to a collection."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    CLEAR = "clear"


class OperationState(Enum):
    """Lifecycle state of an optimistic operation."""

    APPLIED = "applied"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class OptimisticOperation:
    """A mutation applied locally before the server confirms it.

    Use the constructors :meth:`add`, :meth:`update`, :meth:`remove` and
    :meth:`clear` rather than building instances directly.

    Attributes:
        kind: Kind of mutation
        payload: Item for ADD, field patch for UPDATE, None otherwise
        target_id: Item id for UPDATE and REMOVE
        id: Temporary client-generated identifier of the operation. An added
            item without an id receives this value as its temporary id.
        collection_key: Collection the operation targets (set on apply)
        state: Current lifecycle state
        snapshot_before: Collection state right before application, kept
            only until the operation settles
        server_id: Identifier returned by the server on confirmation
        created_at: Unix timestamp of creation
    """

    kind: OperationKind
    payload: Optional[dict[str, Any]] = None
    target_id: Any = None
    id: str = field(default_factory=generate_temp_id)
    collection_key: str = ""
    state: OperationState = OperationState.APPLIED
    snapshot_before: Optional[tuple[Item, ...]] = field(default=None, repr=False)
    server_id: Any = None
    created_at: float = field(default_factory=time.time)

    @classmethod
    def add(cls, item: Item) -> "OptimisticOperation":
        return cls(kind=OperationKind.ADD, payload=dict(item))

    @classmethod
    def update(cls, item_id: Any, patch: Item) -> "OptimisticOperation":
        return cls(kind=OperationKind.UPDATE, payload=dict(patch), target_id=item_id)

    @classmethod
    def remove(cls, item_id: Any) -> "OptimisticOperation":
        return cls(kind=OperationKind.REMOVE, target_id=item_id)

    @classmethod
    def clear(cls) -> "OptimisticOperation":
        return cls(kind=OperationKind.CLEAR)

    @property
    def settled(self) -> bool:
        return self.state is not OperationState.APPLIED


@dataclass(frozen=True)
class OperationOutcome:
    """Result of an optimistic operation once it has settled.

    Exactly one of ``committed`` (the server's response) or ``rolled_back``
    (the failure that caused the rollback) is meaningful, as told by ``ok``.
    """

    operation_id: str
    ok: bool
    committed: Any = None
    rolled_back: Optional[ShopCacheError] = None

    @classmethod
    def success(cls, operation_id: str, value: Any) -> "OperationOutcome":
        return cls(operation_id=operation_id, ok=True, committed=value)

    @classmethod
    def failure(cls, operation_id: str, reason: ShopCacheError) -> "OperationOutcome":
        return cls(operation_id=operation_id, ok=False, rolled_back=reason)

    def raise_for_failure(self) -> Any:
        """Return the committed value, or raise the rollback reason."""
        if not self.ok:
            assert self.rolled_back is not None
            raise self.rolled_back
        return self.committed
