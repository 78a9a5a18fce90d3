from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from app.domain.models import (
    Actor,
    Driver,
    EventEnvelope,
    FuelEvent,
    FuelEventCreate,
    Mission,
    Truck,
    TruckCreate,
    now_utc,
)
from app.domain.permissions import Role, TransitionClass, authorize, classify_transition
from app.domain.state_machine import validate_transition
from app.domain.workflow import TenantWorkflowConfig, normalize_state
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
from app.services.field_event_service import record_checkpoint_progress
from app.services.mission_driver_service import get_driver_for_user, is_driver_approved
from app.services.workflow_service import load_workflow_config

logger = logging.getLogger(__name__)


def get_scoped_truck(session: Session, tenant_id: str, truck_id: str) -> Truck:
    truck = session.exec(select(Truck).where(Truck.tenant_id == tenant_id).where(Truck.id == truck_id)).first()
    if truck is None:
        raise NotFoundError("truck not found")
    return truck


def ensure_driver_may_act(session: Session, tenant_id: str, truck: Truck, actor: Actor) -> Driver | None:
    """Drivers act only on their own truck, and only under an approved mission assignment."""
    if actor.role != Role.DRIVER:
        return None
    driver = get_driver_for_user(session, tenant_id, actor.user_id)
    if driver is None:
        raise PermissionDeniedError("driver profile not found")
    if truck.driver_id != driver.id:
        raise PermissionDeniedError("truck is not assigned to this driver")
    if truck.mission_id is not None and not is_driver_approved(session, tenant_id, truck.mission_id, driver.id):
        raise PermissionDeniedError("driver is not approved for this mission")
    return driver


def apply_status_change(
    session: Session,
    config: TenantWorkflowConfig,
    truck: Truck,
    requested_state: str,
    actor: Actor,
    notes: str | None = None,
) -> EventEnvelope:
    """Write a validated status change with its audit entry and checkpoint records.

    The UPDATE is guarded by the version that was read, so a concurrent
    writer turns this call into a ConflictError instead of being overwritten.
    Nothing is committed here.
    """
    previous_state = truck.status
    read_version = truck.version
    before = snapshot(truck)

    result = session.execute(
        sa.update(Truck)
        .where(Truck.id == truck.id)
        .where(Truck.tenant_id == truck.tenant_id)
        .where(Truck.version == read_version)
        .values(status=requested_state, version=read_version + 1, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "truck %s changed concurrently (read version %d), rejecting move to %s",
            truck.id,
            read_version,
            requested_state,
        )
        raise ConflictError("truck was modified by another request")
    session.refresh(truck)

    record_audit_entry(
        session,
        tenant_id=truck.tenant_id,
        entity_type="Truck",
        entity_id=truck.id,
        action="STATUS_CHANGE",
        actor_id=actor.user_id,
        before=before,
        after=truck,
        notes=notes,
    )
    record_checkpoint_progress(session, config, truck, previous_state, requested_state)
    return event_bus.stage(
        session,
        "truck.status_changed",
        truck.tenant_id,
        {
            "truck_id": truck.id,
            "mission_id": truck.mission_id,
            "from": previous_state,
            "to": requested_state,
            "version": truck.version,
        },
        actor_id=actor.user_id,
    )


class TruckService:
    def create_truck(self, tenant_id: str, actor: Actor, payload: TruckCreate) -> Truck:
        with open_session() as session:
            config = load_workflow_config(session, tenant_id)
            if payload.driver_id is not None:
                driver = session.exec(
                    select(Driver).where(Driver.tenant_id == tenant_id).where(Driver.id == payload.driver_id)
                ).first()
                if driver is None:
                    raise NotFoundError("driver not found")
            truck = Truck(
                tenant_id=tenant_id,
                plate_no=payload.plate_no,
                capacity_tons=payload.capacity_tons,
                driver_id=payload.driver_id,
                status=config.initial_state,
            )
            session.add(truck)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"truck with plate number {payload.plate_no} already exists") from exc
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Truck",
                entity_id=truck.id,
                action="CREATE",
                actor_id=actor.user_id,
                after=truck,
            )
            session.commit()
            session.refresh(truck)
            return truck

    def get_truck(self, tenant_id: str, truck_id: str) -> Truck:
        with open_session() as session:
            return get_scoped_truck(session, tenant_id, truck_id)

    def list_trucks(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        mission_id: str | None = None,
    ) -> list[Truck]:
        with open_session() as session:
            statement = select(Truck).where(Truck.tenant_id == tenant_id)
            if status is not None:
                statement = statement.where(Truck.status == normalize_state(status))
            if mission_id is not None:
                statement = statement.where(Truck.mission_id == mission_id)
            return list(session.exec(statement.order_by(Truck.plate_no)).all())

    def delete_truck(self, tenant_id: str, truck_id: str, actor: Actor) -> None:
        with open_session() as session:
            config = load_workflow_config(session, tenant_id)
            truck = get_scoped_truck(session, tenant_id, truck_id)
            if truck.mission_id is not None and truck.status != config.initial_state:
                raise ConflictError("truck is assigned to a mission in progress")
            before = snapshot(truck)
            session.delete(truck)
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Truck",
                entity_id=truck_id,
                action="DELETE",
                actor_id=actor.user_id,
                before=before,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("truck has recorded field events") from exc

    def transition(
        self,
        truck_id: str,
        tenant_id: str,
        requested_state: str,
        actor: Actor,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> Truck:
        requested = normalize_state(requested_state)
        with open_session() as session:
            truck = get_scoped_truck(session, tenant_id, truck_id)
            if expected_version is not None and truck.version != expected_version:
                raise ConflictError(
                    f"truck version is {truck.version}, request was based on version {expected_version}"
                )
            config = load_workflow_config(session, tenant_id)
            if not config.has_state(requested):
                raise ValidationError(f"unknown state {requested}")

            transition_class = classify_transition(config, truck.status, requested)
            if not authorize(actor.role, transition_class):
                logger.warning(
                    "role %s may not perform %s move %s -> %s on truck %s",
                    actor.role,
                    transition_class,
                    truck.status,
                    requested,
                    truck.id,
                )
                raise PermissionDeniedError(f"role {actor.role} may not perform {transition_class} transitions")
            ensure_driver_may_act(session, tenant_id, truck, actor)

            decision = validate_transition(config, truck.status, requested)
            if not decision.allowed:
                logger.warning("truck %s: %s", truck.id, decision.reason)
                raise InvalidTransitionError(decision.reason)
            if truck.mission_id is None and config.requires_mission(requested):
                raise InvalidTransitionError(f"truck must be assigned to a mission before entering {requested}")

            previous_state = truck.status
            event = apply_status_change(session, config, truck, requested, actor, notes)
            session.commit()

        event_bus.notify(event)
        logger.info("truck %s moved %s -> %s by %s", truck.id, previous_state, requested, actor.user_id)
        return truck

    def record_fuel(self, truck_id: str, tenant_id: str, actor: Actor, payload: FuelEventCreate) -> FuelEvent:
        if payload.liters <= 0:
            raise ValidationError("liters must be positive")
        events: list[EventEnvelope] = []
        with open_session() as session:
            truck = get_scoped_truck(session, tenant_id, truck_id)
            if not authorize(actor.role, TransitionClass.STANDARD):
                raise PermissionDeniedError(f"role {actor.role} may not report fuel")
            ensure_driver_may_act(session, tenant_id, truck, actor)

            mission_id = payload.mission_id or truck.mission_id
            if mission_id is not None:
                mission = session.exec(
                    select(Mission).where(Mission.tenant_id == tenant_id).where(Mission.id == mission_id)
                ).first()
                if mission is None:
                    raise NotFoundError("mission not found")

            fuel_event = FuelEvent(
                tenant_id=tenant_id,
                truck_id=truck.id,
                mission_id=mission_id,
                liters=payload.liters,
                station_name=payload.station_name,
                paid_by=payload.paid_by,
                receipt_url=payload.receipt_url,
                recorded_by=actor.user_id,
            )
            session.add(fuel_event)
            session.flush()
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="FuelEvent",
                entity_id=fuel_event.id,
                action="CREATE",
                actor_id=actor.user_id,
                after=fuel_event,
            )

            config = load_workflow_config(session, tenant_id)
            fuel_transition = config.fuel_transition
            if fuel_transition is not None and truck.status == fuel_transition.from_state:
                fuel_class = classify_transition(config, truck.status, fuel_transition.to_state)
                if not authorize(actor.role, fuel_class):
                    # The fuel record stands; the gated move waits for a role that may make it.
                    logger.warning(
                        "role %s may not perform %s move %s -> %s on truck %s, fuel recorded without it",
                        actor.role,
                        fuel_class,
                        truck.status,
                        fuel_transition.to_state,
                        truck.id,
                    )
                elif validate_transition(config, truck.status, fuel_transition.to_state).allowed:
                    events.append(
                        apply_status_change(
                            session,
                            config,
                            truck,
                            fuel_transition.to_state,
                            actor,
                            notes=f"fuel recorded at {payload.station_name}",
                        )
                    )
            events.append(
                event_bus.stage(
                    session,
                    "truck.fuel_recorded",
                    tenant_id,
                    {"truck_id": truck.id, "fuel_event_id": fuel_event.id, "liters": payload.liters},
                    actor_id=actor.user_id,
                )
            )
            session.commit()
            session.refresh(fuel_event)

        event_bus.notify(*events)
        return fuel_event

    def truck_statistics(self, tenant_id: str) -> dict[str, object]:
        with open_session() as session:
            by_status_rows = session.exec(
                select(Truck.status, func.count()).where(Truck.tenant_id == tenant_id).group_by(Truck.status)
            ).all()
            fuel_count, fuel_liters = session.exec(
                select(func.count(), func.coalesce(func.sum(FuelEvent.liters), 0.0)).where(
                    FuelEvent.tenant_id == tenant_id
                )
            ).one()
        by_status = {status: int(count) for status, count in by_status_rows}
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "fuel_events": int(fuel_count),
            "fuel_liters": float(fuel_liters),
        }
