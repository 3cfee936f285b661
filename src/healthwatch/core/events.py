"""Outbound alert lifecycle events.

The core never notifies anyone directly; it publishes these to an
EventPublisherPort and lets collaborators (mail, queues, chat) react.
"""

from dataclasses import dataclass

from healthwatch.core.models import HealthAlert


@dataclass(frozen=True)
class AlertRaised:
    alert: HealthAlert
    name: str = "AlertRaised"


@dataclass(frozen=True)
class AlertUpdated:
    """A repeated breach refreshed an already open alert."""

    alert: HealthAlert
    name: str = "AlertUpdated"


@dataclass(frozen=True)
class AlertAcknowledged:
    alert: HealthAlert
    name: str = "AlertAcknowledged"


@dataclass(frozen=True)
class AlertResolved:
    alert: HealthAlert
    auto: bool = False
    name: str = "AlertResolved"


AlertEvent = AlertRaised | AlertUpdated | AlertAcknowledged | AlertResolved
