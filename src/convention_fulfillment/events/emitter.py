"""In-process fan-out of fulfillment events.

Subscribers are plain callables. They run synchronously in registration
order, and a subscriber that raises is logged and skipped: monitoring
must never break a payment confirmation or a download.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from convention_fulfillment.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

Subscriber = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class Subscription:
    """A subscriber plus the filter that selects its events."""

    subscriber: Subscriber
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class EventEmitter:
    """Routes each event to the subscribers whose filter accepts it.

    Usage:
        emitter = EventEmitter()
        emitter.on(PaymentConfirmed, notify_ops)
        emitter.on_category(EventCategory.DOWNLOAD, audit_downloads)
        emitter.on_all(metrics)
        emitter.emit(event)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(
        self,
        event_type: type[DomainEvent] | Iterable[type[DomainEvent]],
        subscriber: Subscriber,
    ) -> None:
        """Subscribe to one event class or several."""
        classes = [event_type] if isinstance(event_type, type) else list(event_type)
        self._subscriptions.append(
            Subscription(subscriber, event_types=frozenset(c.__name__ for c in classes))
        )

    def on_category(
        self,
        category: EventCategory | Iterable[EventCategory],
        subscriber: Subscriber,
    ) -> None:
        """Subscribe to every event in one category or several."""
        categories = [category] if isinstance(category, EventCategory) else list(category)
        self._subscriptions.append(Subscription(subscriber, categories=frozenset(categories)))

    def on_all(self, subscriber: Subscriber) -> None:
        self._subscriptions.append(Subscription(subscriber))

    def off(self, subscriber: Subscriber) -> None:
        """Drop every subscription held by `subscriber`."""
        self._subscriptions = [
            s for s in self._subscriptions if s.subscriber is not subscriber
        ]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver `event`; returns the errors raised by subscribers, if any."""
        errors: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.subscriber(event)
            except Exception as exc:
                logger.exception(
                    "Subscriber %r failed on %s for %s",
                    subscription.subscriber,
                    event.event_type,
                    event.metadata.correlation_id,
                )
                errors.append(exc)
        return errors


def log_event(event: DomainEvent) -> None:
    """Default subscriber: one structured log line per event."""
    logger.info(
        "event=%s category=%s payload=%s",
        event.event_type,
        event.category.value,
        event.to_json(),
    )
