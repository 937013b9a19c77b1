"""
Event Bus

Broadcast channel for engine events (appended messages, study plan changes).
Every subscriber gets every event published while it is subscribed; there is
no buffering for late subscribers.
"""

import inspect
import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by EventBus.subscribe()."""

    def __init__(self, bus: "EventBus", handler: Callable[[Any], Any]):
        self._bus = bus
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Publish/subscribe channel. Handlers may be plain functions or coroutines."""

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscriptions: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: Callable[[Any], Any]) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, event: Any) -> None:
        """
        Deliver an event to every current subscriber in subscription order.

        A failing handler is logged and skipped; it never affects the
        publisher or the other subscribers.
        """
        for subscription in list(self._subscriptions):
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"❌ [EventBus:{self.name}] Subscriber failed: {e}", exc_info=True)
