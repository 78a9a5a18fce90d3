from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import EventEnvelope, EventRecord
from app.infra.events import EventBus


def test_staged_event_is_stored_and_delivered_after_commit() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    bus.subscribe("truck.status_changed", handler)

    with Session(engine) as session:
        event = bus.stage(
            session,
            "truck.status_changed",
            "tenant-a",
            {"truck_id": "truck-1", "from": "IDLE", "to": "DISPATCHED"},
            actor_id="user-1",
        )
        assert seen == []
        session.commit()
    bus.notify(event)

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload["to"] == "DISPATCHED"
    assert seen == [event.event_id]


def test_rolled_back_event_is_not_stored() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()

    with Session(engine) as session:
        bus.stage(session, "mission.created", "tenant-a", {"mission_id": "m-1"})
        session.rollback()

    with Session(engine) as session:
        assert session.exec(select(EventRecord)).all() == []


def test_failing_handler_does_not_block_others() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(_event: EventEnvelope) -> None:
        raise RuntimeError("boom")

    bus.subscribe("mission.created", broken)
    bus.subscribe("*", lambda event: seen.append(event.event_type))
    bus.notify(EventEnvelope(event_type="mission.created", tenant_id="tenant-a", payload={}))
    assert seen == ["mission.created"]

    bus.unsubscribe("mission.created", broken)
    bus.notify(EventEnvelope(event_type="mission.created", tenant_id="tenant-a", payload={}))
    assert seen == ["mission.created", "mission.created"]
