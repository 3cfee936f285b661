"""Event channel adapters implementing EventPublisherPort."""

from collections.abc import Awaitable, Callable

from healthwatch.core.events import AlertEvent

Subscriber = Callable[[AlertEvent], Awaitable[None]]


class InMemoryEventChannel:
    """Keeps published events and fans them out to subscribers.

    Subscribers are awaited in registration order; an exception from a
    subscriber propagates to the publisher, which logs it.
    """

    def __init__(self) -> None:
        self.events: list[AlertEvent] = []
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, event: AlertEvent) -> None:
        self.events.append(event)
        for subscriber in self._subscribers:
            await subscriber(event)

    def names(self) -> list[str]:
        """Names of the published events, oldest first."""
        return [event.name for event in self.events]
