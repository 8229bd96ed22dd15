"""
Change-notification bus.

The storage layer publishes a ChangeEvent on a channel after every committed
insert or update; consumers subscribe per channel and receive each event at
least once. A failing handler is logged and does not affect other handlers.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ICE_REPORTS_CHANNEL = "ice_reports"
USER_REPORTS_CHANNEL = "user_reports"


@dataclass(frozen=True)
class ChangeEvent:
    """A row-level change on one of the report tables."""
    channel: str
    lake_id: int
    row: Dict[str, Any] = field(default_factory=dict)
    event: str = "INSERT"


Handler = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe; release it with unsubscribe()."""

    def __init__(self, bus: "EventBus", channel: str, handler: Handler) -> None:
        self._bus = bus
        self.channel = channel
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._bus._remove(self)


class EventBus:
    """Thread-safe publish/subscribe hub keyed by channel name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, channel: str, handler: Handler) -> Subscription:
        subscription = Subscription(self, channel, handler)
        with self._lock:
            self._subscriptions.setdefault(channel, []).append(subscription)
        logger.debug(f"Subscribed to {channel}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.channel, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
        logger.debug(f"Unsubscribed from {subscription.channel}")

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every active subscriber; returns deliveries made."""
        with self._lock:
            subscribers = list(self._subscriptions.get(event.channel, []))

        delivered = 0
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for {event.channel} failed: {e}")
        return delivered

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._subscriptions.get(channel, []))
            return sum(len(s) for s in self._subscriptions.values())
