"""Event system for observing the cache layer.

The mutation engine, the reconciler and the cache facade publish events; UI
or store layers subscribe to refresh their views or show notifications.

Example:
    ```python
    from shopcache.domain.events import EventBus, OperationRolledBack

    event_bus = EventBus()

    def notify_failure(event: OperationRolledBack):
        print(f"Could not update {event.collection_key}: {event.reason}")

    event_bus.subscribe(OperationRolledBack, notify_failure)
    ```
"""

from .bus import EventBus
from .types import (
    CacheInvalidated,
    CollectionReconciled,
    Event,
    OperationApplied,
    OperationConfirmed,
    OperationRolledBack,
)

__all__ = [
    "EventBus",
    "Event",
    "OperationApplied",
    "OperationConfirmed",
    "OperationRolledBack",
    "CacheInvalidated",
    "CollectionReconciled",
]
