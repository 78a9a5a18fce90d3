from __future__ import annotations

import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from app.domain.models import (
    Actor,
    Driver,
    EventEnvelope,
    Mission,
    MissionCreate,
    Truck,
    now_utc,
)
from app.domain.permissions import TransitionClass, authorize
from app.domain.state_machine import MissionStatus, can_mission_transition
from app.infra.audit import record_audit_entry, snapshot
from app.infra.db import open_session
from app.infra.events import event_bus
from app.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.services.truck_service import apply_status_change, get_scoped_truck
from app.services.workflow_service import load_workflow_config

logger = logging.getLogger(__name__)

OPEN_MISSION_STATUSES = {MissionStatus.CREATED, MissionStatus.ACTIVE}


def get_scoped_mission(session: Session, tenant_id: str, mission_id: str) -> Mission:
    mission = session.exec(select(Mission).where(Mission.tenant_id == tenant_id).where(Mission.id == mission_id)).first()
    if mission is None:
        raise NotFoundError("mission not found")
    return mission


def _relink_truck(
    session: Session,
    truck: Truck,
    *,
    mission_id: str | None,
    driver_id: str | None,
) -> None:
    read_version = truck.version
    result = session.execute(
        sa.update(Truck)
        .where(Truck.id == truck.id)
        .where(Truck.tenant_id == truck.tenant_id)
        .where(Truck.version == read_version)
        .values(mission_id=mission_id, driver_id=driver_id, version=read_version + 1, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("truck was modified by another request")
    session.refresh(truck)


class MissionService:
    def _set_status(
        self,
        session: Session,
        mission: Mission,
        target: MissionStatus,
        actor: Actor,
        *,
        action: str = "STATUS_CHANGE",
        notes: str | None = None,
        reconciliation: dict[str, Any] | None = None,
    ) -> EventEnvelope:
        before = snapshot(mission)
        previous = mission.status
        if reconciliation is not None:
            mission.reconciliation = reconciliation
        mission.status = target
        mission.updated_at = now_utc()
        session.add(mission)
        record_audit_entry(
            session,
            tenant_id=mission.tenant_id,
            entity_type="Mission",
            entity_id=mission.id,
            action=action,
            actor_id=actor.user_id,
            before=before,
            after=mission,
            notes=notes,
        )
        return event_bus.stage(
            session,
            "mission.status_changed",
            mission.tenant_id,
            {"mission_id": mission.id, "from": str(previous), "to": str(target)},
            actor_id=actor.user_id,
        )

    def create_mission(self, tenant_id: str, actor: Actor, payload: MissionCreate) -> Mission:
        with open_session() as session:
            load_workflow_config(session, tenant_id)
            mission = Mission(
                tenant_id=tenant_id,
                name=payload.name,
                mission_date=payload.mission_date,
                border=payload.border,
                status=MissionStatus.CREATED,
                created_by=actor.user_id,
            )
            session.add(mission)
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Mission",
                entity_id=mission.id,
                action="CREATE",
                actor_id=actor.user_id,
                after=mission,
            )
            event = event_bus.stage(
                session,
                "mission.created",
                tenant_id,
                {"mission_id": mission.id, "name": mission.name},
                actor_id=actor.user_id,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("mission create conflict") from exc
            session.refresh(mission)

        event_bus.notify(event)
        return mission

    def get_mission(self, tenant_id: str, mission_id: str) -> Mission:
        with open_session() as session:
            return get_scoped_mission(session, tenant_id, mission_id)

    def list_missions(self, tenant_id: str, status: MissionStatus | None = None) -> list[Mission]:
        with open_session() as session:
            statement = select(Mission).where(Mission.tenant_id == tenant_id)
            if status is not None:
                statement = statement.where(Mission.status == status)
            statement = statement.order_by(col(Mission.mission_date).desc(), col(Mission.created_at).desc())
            return list(session.exec(statement).all())

    def transition_mission(
        self,
        mission_id: str,
        tenant_id: str,
        target_status: MissionStatus,
        actor: Actor,
    ) -> Mission:
        events: list[EventEnvelope] = []
        with open_session() as session:
            mission = get_scoped_mission(session, tenant_id, mission_id)
            if target_status == MissionStatus.RECONCILED:
                raise InvalidTransitionError("missions are reconciled through the reconciliation report")
            if not can_mission_transition(mission.status, target_status):
                raise InvalidTransitionError(f"Invalid transition from {mission.status} to {target_status}")

            if target_status == MissionStatus.CANCELLED:
                config = load_workflow_config(session, tenant_id)
                releasable = set(config.pre_dispatch_states) | set(config.unassigned_states)
                trucks = list(
                    session.exec(
                        select(Truck).where(Truck.tenant_id == tenant_id).where(Truck.mission_id == mission_id)
                    ).all()
                )
                in_progress = sorted(truck.plate_no for truck in trucks if truck.status not in releasable)
                if in_progress:
                    raise ConflictError(f"trucks already in progress: {', '.join(in_progress)}")
                for truck in trucks:
                    # An unlinked truck may only sit in an unassigned state.
                    if config.requires_mission(truck.status):
                        events.append(
                            apply_status_change(
                                session,
                                config,
                                truck,
                                config.initial_state,
                                actor,
                                notes="mission cancelled",
                            )
                        )
                    before = snapshot(truck)
                    _relink_truck(session, truck, mission_id=None, driver_id=truck.driver_id)
                    record_audit_entry(
                        session,
                        tenant_id=tenant_id,
                        entity_type="Truck",
                        entity_id=truck.id,
                        action="UNASSIGN_FROM_MISSION",
                        actor_id=actor.user_id,
                        before=before,
                        after=truck,
                        notes="mission cancelled",
                    )

            previous = mission.status
            events.append(self._set_status(session, mission, target_status, actor))
            session.commit()
            session.refresh(mission)

        event_bus.notify(*events)
        logger.info("mission %s moved %s -> %s by %s", mission_id, previous, target_status, actor.user_id)
        return mission

    def assign_truck(
        self,
        mission_id: str,
        truck_id: str,
        tenant_id: str,
        actor: Actor,
        driver_id: str | None = None,
    ) -> Truck:
        with open_session() as session:
            mission = get_scoped_mission(session, tenant_id, mission_id)
            if mission.status not in OPEN_MISSION_STATUSES:
                raise ConflictError(f"cannot assign trucks to a {mission.status} mission")
            truck = get_scoped_truck(session, tenant_id, truck_id)
            config = load_workflow_config(session, tenant_id)
            if truck.mission_id is not None:
                raise ConflictError("truck is already assigned to a mission")
            if truck.status != config.initial_state:
                raise ConflictError(f"truck must be in {config.initial_state} to join a mission")
            if driver_id is not None:
                driver = session.exec(
                    select(Driver).where(Driver.tenant_id == tenant_id).where(Driver.id == driver_id)
                ).first()
                if driver is None:
                    raise NotFoundError("driver not found")

            before = snapshot(truck)
            _relink_truck(session, truck, mission_id=mission_id, driver_id=driver_id or truck.driver_id)
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Truck",
                entity_id=truck.id,
                action="ASSIGN_TO_MISSION",
                actor_id=actor.user_id,
                before=before,
                after=truck,
            )
            event = event_bus.stage(
                session,
                "mission.truck_assigned",
                tenant_id,
                {"mission_id": mission_id, "truck_id": truck.id, "driver_id": truck.driver_id},
                actor_id=actor.user_id,
            )
            session.commit()

        event_bus.notify(event)
        return truck

    def unassign_truck(self, mission_id: str, truck_id: str, tenant_id: str, actor: Actor) -> Truck:
        with open_session() as session:
            get_scoped_mission(session, tenant_id, mission_id)
            truck = get_scoped_truck(session, tenant_id, truck_id)
            if truck.mission_id != mission_id:
                raise NotFoundError("truck is not assigned to this mission")
            config = load_workflow_config(session, tenant_id)
            if truck.status != config.initial_state:
                raise ConflictError("truck has already started mission progress")

            before = snapshot(truck)
            _relink_truck(session, truck, mission_id=None, driver_id=truck.driver_id)
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Truck",
                entity_id=truck.id,
                action="UNASSIGN_FROM_MISSION",
                actor_id=actor.user_id,
                before=before,
                after=truck,
            )
            event = event_bus.stage(
                session,
                "mission.truck_unassigned",
                tenant_id,
                {"mission_id": mission_id, "truck_id": truck.id},
                actor_id=actor.user_id,
            )
            session.commit()

        event_bus.notify(event)
        return truck

    def reconcile_mission(
        self,
        mission_id: str,
        tenant_id: str,
        report: dict[str, Any],
        actor: Actor,
    ) -> Mission:
        """Close a completed mission with its accounting report.

        Every truck still linked to the mission must have settled, and the
        report must carry each field the tenant's reconciliation rules name.
        """
        if not authorize(actor.role, TransitionClass.MISSION_RECONCILE):
            raise PermissionDeniedError(f"role {actor.role} may not reconcile missions")
        with open_session() as session:
            mission = get_scoped_mission(session, tenant_id, mission_id)
            if mission.status != MissionStatus.COMPLETED:
                raise InvalidTransitionError(f"Invalid transition from {mission.status} to {MissionStatus.RECONCILED}")
            config = load_workflow_config(session, tenant_id)
            rules = config.reconciliation_rules

            unsettled = session.exec(
                select(Truck.plate_no)
                .where(Truck.tenant_id == tenant_id)
                .where(Truck.mission_id == mission_id)
                .where(col(Truck.status).not_in(rules.settled_truck_states))
            ).all()
            if unsettled:
                raise ConflictError(f"trucks not settled: {', '.join(sorted(unsettled))}")
            missing = [name for name in rules.required_fields if report.get(name) is None]
            if missing:
                raise ValidationError(f"reconciliation report is missing: {', '.join(missing)}")

            event = self._set_status(
                session,
                mission,
                MissionStatus.RECONCILED,
                actor,
                action="RECONCILE",
                reconciliation=dict(report),
            )
            session.commit()
            session.refresh(mission)

        event_bus.notify(event)
        logger.info("mission %s reconciled by %s", mission_id, actor.user_id)
        return mission

    def mission_statistics(self, tenant_id: str) -> dict[str, dict[str, int]]:
        with open_session() as session:
            mission_rows = session.exec(
                select(Mission.status, func.count()).where(Mission.tenant_id == tenant_id).group_by(Mission.status)
            ).all()
            truck_rows = session.exec(
                select(Truck.status, func.count())
                .where(Truck.tenant_id == tenant_id)
                .where(col(Truck.mission_id).is_not(None))
                .group_by(Truck.status)
            ).all()
        return {
            "missions_by_status": {str(status): int(count) for status, count in mission_rows},
            "trucks_by_status": {str(status): int(count) for status, count in truck_rows},
        }
