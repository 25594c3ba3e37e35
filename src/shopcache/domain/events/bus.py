"""Event bus for decoupled publish/subscribe notification.

Event Handler Contract:
    Event handlers MUST be synchronous (non-async) functions. This is enforced
    at subscription time. Events are published from inside synchronous cache
    and collection updates, so handlers should only schedule async work via
    asyncio.create_task() rather than execute it.
"""

import asyncio
from typing import Callable, Type, TypeVar

from shopcache.logger import get_logger

from .types import Event

logger = get_logger("events.bus")

T = TypeVar("T", bound=Event)

# Type alias for event handlers - must be synchronous
EventHandler = Callable[[Event], None]


class EventBus:
    """Event bus for publishing and subscribing to events.

    Example:
        ```python
        event_bus = EventBus()
        event_bus.subscribe(OperationConfirmed, lambda e: print(e.server_id))
        event_bus.publish(OperationConfirmed(
            collection_key="cart", operation_id="tmp-1", server_id=42
        ))
        ```

    Thread safety:
        This implementation is NOT thread-safe. It assumes all operations
        happen within the same async event loop.
    """

    def __init__(self):
        """Initialize the event bus."""
        self._handlers: dict[Type[Event], list[EventHandler]] = {}
        """Registry of event handlers by event type."""

    def subscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: The type of event to subscribe to (e.g., OperationRolledBack)
            handler: Synchronous callback receiving the event instance

        Raises:
            TypeError: If handler is an async function (coroutine function)
        """
        if asyncio.iscoroutinefunction(handler):
            raise TypeError(
                f"Event handlers must be synchronous functions. "
                f"Handler {handler.__name__} is an async function (coroutine function). "
                f"To perform async work, schedule it using asyncio.create_task() instead."
            )

        handlers = self._handlers.setdefault(event_type, [])

        # Avoid duplicate subscriptions of the same handler
        if handler not in handlers:
            handlers.append(handler)  # type: ignore[arg-type]
            logger.debug(f"Subscribed handler for {event_type.__name__}")
        else:
            logger.debug(f"Handler already subscribed for {event_type.__name__}, skipping")

    def unsubscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """
        Unsubscribe a handler. No-op if the handler was not subscribed.
        """
        if event_type in self._handlers:
            try:
                self._handlers[event_type].remove(handler)  # type: ignore[arg-type]
                logger.debug(f"Unsubscribed handler for {event_type.__name__}")
            except ValueError:
                logger.debug(f"Handler not found in subscriptions for {event_type.__name__}")

    def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribed handlers.

        Handlers are called synchronously in subscription order. A handler
        that raises is logged and does not prevent the remaining handlers
        from running, nor does it interrupt the publisher.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        if not handlers:
            return

        logger.debug(f"Publishing {event_type.__name__} to {len(handlers)} handler(s)")

        for handler in list(handlers):
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Error in event handler for {event_type.__name__}: {e}")

    def clear(self) -> None:
        """Clear all event subscriptions."""
        self._handlers.clear()
        logger.debug("Event bus cleared")

    def has_subscribers(self, event_type: Type[Event]) -> bool:
        """Check if there are any subscribers for a specific event type."""
        return bool(self._handlers.get(event_type))
