"""
EventBus - per-tenant fan-out of orchestrator events.

Two observer kinds:
- Subscription: async iterator over a bounded queue. The snapshot is queued
  before the subscription is registered, so it always arrives first.
- Callback: invoked inline on publish; a raising callback is logged and skipped.

publish() never blocks. A full subscriber queue drops the message.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .schemas import AgentEvent

logger = logging.getLogger("news_trader.events")

EventCallback = Callable[[AgentEvent], Any]

_CLOSED = object()


class Subscription:
    """One streaming observer for one tenant."""

    def __init__(self, bus: "EventBus", tenant: str, max_queue: int):
        self._bus = bus
        self.tenant = tenant
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.closed = False
        self.dropped = 0

    def offer(self, message: Any) -> bool:
        """Queue without blocking. Returns False when the message was dropped."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)
        try:
            self.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def get(self) -> Any:
        """Next message; raises StopAsyncIteration once closed and drained."""
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        message = await self.queue.get()
        if message is _CLOSED:
            raise StopAsyncIteration
        return message

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        return await self.get()


class EventBus:
    """Publish/subscribe keyed by tenant."""

    def __init__(self, default_queue_size: int = 256):
        self.default_queue_size = default_queue_size
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._callbacks: Dict[str, List[EventCallback]] = defaultdict(list)

    def subscribe(self, tenant: str, snapshot: Any = None, max_queue: Optional[int] = None) -> Subscription:
        """
        Register a streaming observer.

        Args:
            tenant: Tenant to observe
            snapshot: First message delivered (e.g. the initial_state snapshot)
            max_queue: Queue bound; messages beyond it are dropped
        """
        subscription = Subscription(self, tenant, max(max_queue or self.default_queue_size, 1))
        if snapshot is not None:
            subscription.offer(snapshot)
        self._subscriptions[tenant].append(subscription)
        logger.debug(f"[{tenant}] Subscriber added ({len(self._subscriptions[tenant])} total)")
        return subscription

    def on_event(self, tenant: str, callback: EventCallback) -> Callable[[], None]:
        """Register a callback observer. Returns an unsubscribe function."""
        self._callbacks[tenant].append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks[tenant].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, tenant: str, event: AgentEvent) -> int:
        """
        Deliver an event to every observer of the tenant.

        Returns:
            Number of observers that received it
        """
        delivered = 0

        for subscription in list(self._subscriptions.get(tenant, ())):
            if subscription.offer(event):
                delivered += 1
            elif not subscription.closed:
                logger.warning(
                    f"[{tenant}] Subscriber queue full, dropped {event.type} event "
                    f"({subscription.dropped} dropped so far)"
                )

        for callback in list(self._callbacks.get(tenant, ())):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(f"[{tenant}] Event callback failed: {e}")

        return delivered

    def subscriber_count(self, tenant: str) -> int:
        return len(self._subscriptions.get(tenant, ())) + len(self._callbacks.get(tenant, ()))

    def close_tenant(self, tenant: str) -> None:
        for subscription in list(self._subscriptions.get(tenant, ())):
            subscription.close()
        self._subscriptions.pop(tenant, None)
        self._callbacks.pop(tenant, None)

    def close(self) -> None:
        for tenant in list(self._subscriptions.keys()) + list(self._callbacks.keys()):
            self.close_tenant(tenant)

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.tenant)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
