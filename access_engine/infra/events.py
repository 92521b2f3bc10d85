from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable

from sqlmodel import Session

from access_engine.domain.models import EventEnvelope, EventRecord
from access_engine.infra.db import engine
from access_engine.infra.logging_config import get_logger

EventHandler = Callable[[EventEnvelope], None]

log = get_logger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def stage(self, event: EventEnvelope, session: Session) -> None:
        session.add(
            EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
        )

    def dispatch(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        log.debug("dispatching %s to %s handlers", event.event_type, len(handlers))
        for handler in handlers:
            handler(event)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            self.stage(event, session)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()
        self.dispatch(event)


event_bus = EventBus()
