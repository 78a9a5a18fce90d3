from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from app.domain.models import EventEnvelope, EventRecord

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]

class EventBus:
    """Domain events are stored with the change that caused them and fanned out after commit."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def stage(
        self,
        session: Session,
        event_type: str,
        tenant_id: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            tenant_id=tenant_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            payload=payload,
        )
        session.add(
            EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                tenant_id=event.tenant_id,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
        )
        return event

    def notify(self, *events: EventEnvelope) -> None:
        for event in events:
            handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    # The change is already committed; a failing subscriber only loses its own work.
                    logger.exception("event handler failed for %s", event.event_type)


event_bus = EventBus()
