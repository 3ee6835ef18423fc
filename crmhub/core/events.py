"""Local fan-out of workspace event envelopes.

``crmhub.events.publish`` stamps each envelope with the ambient correlation id
and operation, then hands it here so in-process listeners (the lifecycle log,
tests) see the same dict that was recorded in ``published_events``.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    envelope: dict[str, Any]

    @property
    def event_type(self) -> str:
        return self.envelope["event_type"]

    @property
    def actor_user_id(self) -> str | None:
        return self.envelope.get("actor_user_id")

    @property
    def correlation_id(self) -> str | None:
        return self.envelope.get("correlation_id")

    @property
    def operation(self) -> str | None:
        return (self.envelope.get("meta") or {}).get("operation")

    @property
    def payload(self) -> dict[str, Any]:
        return self.envelope.get("payload") or {}


EventHandler = Callable[[DomainEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, envelope: dict[str, Any]) -> DomainEvent:
        """Deliver ``envelope`` to every handler registered for its ``event_type``."""
        event = DomainEvent(envelope)
        for handler in list(self._subscribers.get(event.event_type, [])):
            handler(event)
        return event


event_bus = InProcessEventBus()
