from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from access_engine.domain.models import EventEnvelope, EventRecord
from access_engine.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="permissions.cascaded",
        actor_id="admin-1",
        payload={"department_id": "sales"},
    )
    bus.subscribe("permissions.cascaded", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload == {"department_id": "sales"}
    assert seen == [event.event_id]


def test_staged_event_is_dispatched_only_when_asked() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []
    bus.subscribe("*", lambda event: seen.append(event.event_type))

    event = EventEnvelope(event_type="identity.conflict_resolved", payload={"email": "alice@x.com"})
    with Session(engine) as session:
        bus.stage(event, session)
        session.rollback()

    with Session(engine) as session:
        assert session.exec(select(EventRecord)).all() == []
    assert seen == []

    bus.dispatch(event)
    assert seen == ["identity.conflict_resolved"]
