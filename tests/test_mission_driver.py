from __future__ import annotations

from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import (
    Actor,
    AuditEntry,
    Driver,
    MissionCreate,
    MissionDriverAssignment,
    TenantCreate,
    TruckCreate,
)
from app.domain.state_machine import MissionDriverStatus
from app.infra import db
from app.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.services.mission_driver_service import MissionDriverService
from app.services.mission_service import MissionService
from app.services.truck_service import TruckService
from app.services.workflow_service import WorkflowService

DISPATCHER = Actor(user_id="dispatch-1", role="DISPATCHER")
OPS = Actor(user_id="ops-1", role="OPS_MANAGER")


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[object, None, None]:
    db_path = tmp_path / "mission_driver_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    yield engine
    engine.dispose()


def _seed(engine: object, driver_count: int = 3) -> tuple[str, str, list[str]]:
    tenant = WorkflowService().create_tenant(TenantCreate(name="aid-org"))
    mission = MissionService().create_mission(
        tenant.id,
        DISPATCHER,
        MissionCreate(name="convoy-7", mission_date=date(2026, 10, 20), border="ZIKIM"),
    )
    driver_ids: list[str] = []
    with Session(engine) as session:  # type: ignore[arg-type]
        for index in range(driver_count):
            driver = Driver(tenant_id=tenant.id, user_id=f"user-{index}", name=f"Driver {index}")
            session.add(driver)
            driver_ids.append(driver.id)
        session.commit()
    return tenant.id, mission.id, driver_ids


def test_assign_reports_new_existing_and_unknown_drivers(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine)
    service = MissionDriverService()

    first = service.assign_drivers(mission_id, driver_ids[:2], tenant_id, DISPATCHER)
    assert first["assigned_count"] == 2
    assert all(item["assignment"].status == MissionDriverStatus.PENDING for item in first["results"])

    second = service.assign_drivers(mission_id, [driver_ids[0], driver_ids[2], "ghost"], tenant_id, DISPATCHER)
    by_driver = {item["driver_id"]: item for item in second["results"]}
    assert second["requested_count"] == 3
    assert second["assigned_count"] == 1
    assert second["already_assigned_count"] == 1
    assert second["missing_count"] == 1
    assert by_driver[driver_ids[0]]["status"] == "already_assigned"
    assert by_driver[driver_ids[0]]["assignment"].id == first["results"][0]["assignment"].id
    assert by_driver["ghost"]["status"] == "not_found"

    with Session(test_engine) as session:  # type: ignore[arg-type]
        rows = session.exec(select(MissionDriverAssignment)).all()
        assigned = session.exec(select(AuditEntry).where(AuditEntry.action == "ASSIGN")).all()
    assert len(rows) == 3
    assert len(assigned) == 3


def test_assign_rejects_empty_list_and_unknown_mission(test_engine: object) -> None:
    tenant_id, _, driver_ids = _seed(test_engine)
    service = MissionDriverService()
    with pytest.raises(ValidationError):
        service.assign_drivers("any", [" ", ""], tenant_id, DISPATCHER)
    with pytest.raises(NotFoundError):
        service.assign_drivers("missing-mission", driver_ids, tenant_id, DISPATCHER)


def test_only_dispatch_roles_may_assign_or_approve(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine)
    service = MissionDriverService()
    focal_point = Actor(user_id="cfp-1", role="CONTRACTOR_FOCAL_POINT")
    with pytest.raises(PermissionDeniedError):
        service.assign_drivers(mission_id, driver_ids, tenant_id, focal_point)

    service.assign_drivers(mission_id, driver_ids, tenant_id, DISPATCHER)
    with pytest.raises(PermissionDeniedError):
        service.update_status(mission_id, driver_ids[0], tenant_id, MissionDriverStatus.APPROVED, focal_point)


def test_approval_stamps_and_reset_clears_approver(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids[:1], tenant_id, DISPATCHER)

    approved = service.update_status(
        mission_id, driver_ids[0], tenant_id, MissionDriverStatus.APPROVED, DISPATCHER, notes="papers ok"
    )
    assert approved.status == MissionDriverStatus.APPROVED
    assert approved.approved_by == DISPATCHER.user_id
    assert approved.approved_at is not None
    assert approved.notes == "papers ok"
    assert service.is_driver_approved(mission_id, driver_ids[0], tenant_id)

    with pytest.raises(InvalidTransitionError):
        service.update_status(mission_id, driver_ids[0], tenant_id, MissionDriverStatus.APPROVED, DISPATCHER)
    revoked = service.update_status(
        mission_id, driver_ids[0], tenant_id, MissionDriverStatus.DENIED, OPS, notes="permit withdrawn"
    )
    assert revoked.status == MissionDriverStatus.DENIED
    assert revoked.approved_by == OPS.user_id
    assert not service.is_driver_approved(mission_id, driver_ids[0], tenant_id)

    reset = service.update_status(mission_id, driver_ids[0], tenant_id, MissionDriverStatus.PENDING, DISPATCHER)
    assert reset.approved_by is None
    assert reset.approved_at is None
    assert not service.is_driver_approved(mission_id, driver_ids[0], tenant_id)

    with Session(test_engine) as session:  # type: ignore[arg-type]
        actions = [
            item.action
            for item in session.exec(
                select(AuditEntry).where(AuditEntry.entity_type == "MissionDriver").order_by(AuditEntry.id)
            ).all()
        ]
    assert actions == ["ASSIGN", "APPROVE", "DENY", "RESET"]


def test_update_unknown_assignment_is_not_found(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine)
    with pytest.raises(NotFoundError):
        MissionDriverService().update_status(
            mission_id, driver_ids[0], tenant_id, MissionDriverStatus.APPROVED, DISPATCHER
        )


def test_bulk_update_reports_each_item(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids[:2], tenant_id, DISPATCHER)
    service.update_status(mission_id, driver_ids[1], tenant_id, MissionDriverStatus.APPROVED, DISPATCHER)

    result = service.bulk_update_status(
        mission_id,
        [driver_ids[0], driver_ids[1], driver_ids[2]],
        tenant_id,
        MissionDriverStatus.APPROVED,
        DISPATCHER,
    )
    by_driver = {item["driver_id"]: item for item in result["results"]}
    assert result["succeeded_count"] == 1
    assert result["failed_count"] == 2
    assert by_driver[driver_ids[0]]["status"] == "updated"
    assert by_driver[driver_ids[1]]["status"] == "failed"
    assert by_driver[driver_ids[2]]["status"] == "failed"
    assert service.is_driver_approved(mission_id, driver_ids[0], tenant_id)

    stats = service.statistics(mission_id, tenant_id)
    assert stats == {"total": 2, "pending": 0, "approved": 2, "denied": 0}


def test_remove_blocked_once_truck_leaves_pre_dispatch(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine, driver_count=2)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids, tenant_id, DISPATCHER)

    truck = TruckService().create_truck(
        tenant_id, DISPATCHER, TruckCreate(plate_no="GZ-300", capacity_tons=15, driver_id=driver_ids[0])
    )
    MissionService().assign_truck(mission_id, truck.id, tenant_id, DISPATCHER)
    TruckService().transition(truck.id, tenant_id, "DISPATCHED", DISPATCHER)
    TruckService().transition(truck.id, tenant_id, "FUELED", DISPATCHER)

    with pytest.raises(ConflictError):
        service.remove(mission_id, driver_ids[0], tenant_id, DISPATCHER)
    service.remove(mission_id, driver_ids[1], tenant_id, DISPATCHER)

    remaining = service.list_mission_drivers(mission_id, tenant_id)
    assert [item.driver_id for item in remaining] == [driver_ids[0]]


def test_remove_allowed_while_truck_is_dispatched(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine, driver_count=1)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids, tenant_id, DISPATCHER)
    truck = TruckService().create_truck(
        tenant_id, DISPATCHER, TruckCreate(plate_no="GZ-301", capacity_tons=15, driver_id=driver_ids[0])
    )
    MissionService().assign_truck(mission_id, truck.id, tenant_id, DISPATCHER)
    TruckService().transition(truck.id, tenant_id, "DISPATCHED", DISPATCHER)

    service.remove(mission_id, driver_ids[0], tenant_id, DISPATCHER)
    assert service.list_mission_drivers(mission_id, tenant_id) == []
    with Session(test_engine) as session:  # type: ignore[arg-type]
        removed = session.exec(select(AuditEntry).where(AuditEntry.action == "REMOVE")).all()
    assert len(removed) == 1
    assert removed[0].before is not None and removed[0].before["driver_id"] == driver_ids[0]


def test_bulk_remove_tallies_outcomes(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine, driver_count=2)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids[:1], tenant_id, DISPATCHER)

    result = service.bulk_remove(mission_id, driver_ids, tenant_id, DISPATCHER)
    assert result["succeeded_count"] == 1
    assert result["failed_count"] == 1


def test_driver_missions_listing(test_engine: object) -> None:
    tenant_id, mission_id, driver_ids = _seed(test_engine, driver_count=1)
    service = MissionDriverService()
    service.assign_drivers(mission_id, driver_ids, tenant_id, DISPATCHER)
    service.update_status(mission_id, driver_ids[0], tenant_id, MissionDriverStatus.APPROVED, DISPATCHER)

    approved = service.list_driver_missions(driver_ids[0], tenant_id, status=MissionDriverStatus.APPROVED)
    pending = service.list_driver_missions(driver_ids[0], tenant_id, status=MissionDriverStatus.PENDING)
    assert [item.mission_id for item in approved] == [mission_id]
    assert pending == []
