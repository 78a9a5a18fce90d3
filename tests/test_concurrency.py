from __future__ import annotations

from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import Actor, AuditEntry, Driver, MissionCreate, TenantCreate, TruckCreate
from app.domain.state_machine import MissionDriverStatus
from app.infra import db
from app.services import mission_driver_service, truck_service
from app.services.exceptions import ConflictError
from app.services.mission_driver_service import MissionDriverService
from app.services.mission_service import MissionService
from app.services.truck_service import TruckService
from app.services.workflow_service import WorkflowService

DISPATCHER = Actor(user_id="dispatch-1", role="DISPATCHER")
MECHANIC = Actor(user_id="mech-1", role="MAINTENANCE")


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[object, None, None]:
    db_path = tmp_path / "concurrency_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    yield engine
    engine.dispose()


def _dispatched_truck() -> tuple[str, str, str]:
    tenant = WorkflowService().create_tenant(TenantCreate(name="aid-org"))
    truck = TruckService().create_truck(tenant.id, DISPATCHER, TruckCreate(plate_no="GZ-900", capacity_tons=22))
    mission = MissionService().create_mission(
        tenant.id,
        DISPATCHER,
        MissionCreate(name="convoy-9", mission_date=date(2026, 10, 22), border="OTHER"),
    )
    MissionService().assign_truck(mission.id, truck.id, tenant.id, DISPATCHER)
    dispatched = TruckService().transition(truck.id, tenant.id, "DISPATCHED", DISPATCHER)
    return tenant.id, dispatched.id, mission.id


def test_stale_expected_version_is_a_conflict(test_engine: object) -> None:
    tenant_id, truck_id, _ = _dispatched_truck()
    observed = TruckService().get_truck(tenant_id, truck_id).version

    TruckService().transition(truck_id, tenant_id, "FUELED", DISPATCHER, expected_version=observed)
    with pytest.raises(ConflictError):
        TruckService().transition(truck_id, tenant_id, "MAINTENANCE", MECHANIC, expected_version=observed)

    truck = TruckService().get_truck(tenant_id, truck_id)
    assert truck.status == "FUELED"
    assert truck.version == observed + 1


def test_write_between_read_and_update_is_a_conflict(
    test_engine: object,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, truck_id, _ = _dispatched_truck()
    original_validate = truck_service.validate_transition
    raced: list[str] = []

    def validate_then_race(config, current_state, requested_state):  # type: ignore[no-untyped-def]
        decision = original_validate(config, current_state, requested_state)
        if not raced:
            raced.append(requested_state)
            # A competing writer commits after our read and before our write.
            TruckService().transition(truck_id, tenant_id, "MAINTENANCE", MECHANIC)
        return decision

    monkeypatch.setattr(truck_service, "validate_transition", validate_then_race)

    with pytest.raises(ConflictError):
        TruckService().transition(truck_id, tenant_id, "FUELED", DISPATCHER)

    truck = TruckService().get_truck(tenant_id, truck_id)
    assert truck.status == "MAINTENANCE"
    with Session(test_engine) as session:  # type: ignore[arg-type]
        changes = session.exec(
            select(AuditEntry).where(AuditEntry.entity_id == truck_id).where(AuditEntry.action == "STATUS_CHANGE")
        ).all()
    assert sorted(item.after["status"] for item in changes if item.after) == ["DISPATCHED", "MAINTENANCE"]


def test_assignment_changed_concurrently_is_a_conflict(
    test_engine: object,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, _, mission_id = _dispatched_truck()
    with Session(test_engine) as session:  # type: ignore[arg-type]
        driver = Driver(tenant_id=tenant_id, user_id="driver-user", name="Driver")
        session.add(driver)
        session.commit()
        driver_id = driver.id
    service = MissionDriverService()
    service.assign_drivers(mission_id, [driver_id], tenant_id, DISPATCHER)

    original_check = mission_driver_service.can_mission_driver_transition
    raced: list[bool] = []

    def check_then_race(source, target):  # type: ignore[no-untyped-def]
        allowed = original_check(source, target)
        if not raced:
            raced.append(True)
            MissionDriverService().update_status(
                mission_id, driver_id, tenant_id, MissionDriverStatus.DENIED, DISPATCHER
            )
        return allowed

    monkeypatch.setattr(mission_driver_service, "can_mission_driver_transition", check_then_race)

    with pytest.raises(ConflictError):
        service.update_status(mission_id, driver_id, tenant_id, MissionDriverStatus.APPROVED, DISPATCHER)
    assert not service.is_driver_approved(mission_id, driver_id, tenant_id)
