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
    MissionDriverAssignment,
    MissionDriverAssignmentRead,
    Truck,
    now_utc,
)
from app.domain.permissions import TransitionClass, authorize
from app.domain.state_machine import MissionDriverStatus, can_mission_driver_transition
from app.infra.audit import record_audit_entry, snapshot
from app.infra.db import open_session
from app.infra.events import event_bus
from app.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)
from app.services.workflow_service import load_workflow_config

logger = logging.getLogger(__name__)

STATUS_ACTIONS = {
    MissionDriverStatus.APPROVED: "APPROVE",
    MissionDriverStatus.DENIED: "DENY",
    MissionDriverStatus.PENDING: "RESET",
}


def get_driver_for_user(session: Session, tenant_id: str, user_id: str) -> Driver | None:
    return session.exec(select(Driver).where(Driver.tenant_id == tenant_id).where(Driver.user_id == user_id)).first()


def is_driver_approved(session: Session, tenant_id: str, mission_id: str, driver_id: str) -> bool:
    assignment = session.exec(
        select(MissionDriverAssignment.id)
        .where(MissionDriverAssignment.tenant_id == tenant_id)
        .where(MissionDriverAssignment.mission_id == mission_id)
        .where(MissionDriverAssignment.driver_id == driver_id)
        .where(MissionDriverAssignment.status == MissionDriverStatus.APPROVED)
    ).first()
    return assignment is not None


def _normalize_ids(values: list[str]) -> list[str]:
    seen: list[str] = []
    for item in values:
        if isinstance(item, str) and item.strip() and item.strip() not in seen:
            seen.append(item.strip())
    return seen


def _item(driver_id: str, status: str, *, detail: str | None = None, assignment: Any = None) -> dict[str, Any]:
    return {
        "driver_id": driver_id,
        "status": status,
        "detail": detail,
        "assignment": MissionDriverAssignmentRead.model_validate(assignment) if assignment is not None else None,
    }


class MissionDriverService:
    def _get_scoped_mission(self, session: Session, tenant_id: str, mission_id: str) -> Mission:
        mission = session.exec(
            select(Mission).where(Mission.tenant_id == tenant_id).where(Mission.id == mission_id)
        ).first()
        if mission is None:
            raise NotFoundError("mission not found")
        return mission

    def _get_scoped_assignment(
        self,
        session: Session,
        tenant_id: str,
        mission_id: str,
        driver_id: str,
    ) -> MissionDriverAssignment:
        assignment = session.exec(
            select(MissionDriverAssignment)
            .where(MissionDriverAssignment.tenant_id == tenant_id)
            .where(MissionDriverAssignment.mission_id == mission_id)
            .where(MissionDriverAssignment.driver_id == driver_id)
        ).first()
        if assignment is None:
            raise NotFoundError("driver is not assigned to this mission")
        return assignment

    def _require(self, actor: Actor, transition_class: TransitionClass) -> None:
        if not authorize(actor.role, transition_class):
            raise PermissionDeniedError(f"role {actor.role} may not perform {transition_class}")

    def assign_drivers(
        self,
        mission_id: str,
        driver_ids: list[str],
        tenant_id: str,
        actor: Actor,
    ) -> dict[str, Any]:
        self._require(actor, TransitionClass.DRIVER_ASSIGNMENT)
        requested = _normalize_ids(driver_ids)
        if not requested:
            raise ValidationError("driver_ids must not be empty")

        events: list[EventEnvelope] = []
        with open_session() as session:
            self._get_scoped_mission(session, tenant_id, mission_id)
            scoped_driver_ids = set(
                session.exec(
                    select(Driver.id).where(Driver.tenant_id == tenant_id).where(col(Driver.id).in_(requested))
                ).all()
            )
            existing = {
                item.driver_id: item
                for item in session.exec(
                    select(MissionDriverAssignment)
                    .where(MissionDriverAssignment.tenant_id == tenant_id)
                    .where(MissionDriverAssignment.mission_id == mission_id)
                    .where(col(MissionDriverAssignment.driver_id).in_(requested))
                ).all()
            }

            created: list[MissionDriverAssignment] = []
            results: list[dict[str, Any]] = []
            for driver_id in requested:
                if driver_id not in scoped_driver_ids:
                    results.append(_item(driver_id, "not_found", detail="driver not found"))
                    continue
                if driver_id in existing:
                    results.append(_item(driver_id, "already_assigned", assignment=existing[driver_id]))
                    continue
                assignment = MissionDriverAssignment(
                    tenant_id=tenant_id,
                    mission_id=mission_id,
                    driver_id=driver_id,
                    assigned_by=actor.user_id,
                    status=MissionDriverStatus.PENDING,
                )
                session.add(assignment)
                created.append(assignment)
                record_audit_entry(
                    session,
                    tenant_id=tenant_id,
                    entity_type="MissionDriver",
                    entity_id=assignment.id,
                    action="ASSIGN",
                    actor_id=actor.user_id,
                    after=assignment,
                )
                events.append(
                    event_bus.stage(
                        session,
                        "mission_driver.assigned",
                        tenant_id,
                        {"mission_id": mission_id, "driver_id": driver_id, "assignment_id": assignment.id},
                        actor_id=actor.user_id,
                    )
                )
                results.append({"driver_id": driver_id, "status": "assigned"})

            if created:
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise ConflictError("driver assignment conflicts with a concurrent request") from exc
                for result in results:
                    if result["status"] == "assigned":
                        match = next(item for item in created if item.driver_id == result["driver_id"])
                        session.refresh(match)
                        result["assignment"] = MissionDriverAssignmentRead.model_validate(match)
                        result["detail"] = None

        event_bus.notify(*events)
        logger.info("mission %s: %d drivers assigned, %d requested", mission_id, len(created), len(requested))
        return {
            "mission_id": mission_id,
            "requested_count": len(requested),
            "assigned_count": len(created),
            "already_assigned_count": sum(1 for item in results if item["status"] == "already_assigned"),
            "missing_count": sum(1 for item in results if item["status"] == "not_found"),
            "results": results,
        }

    def _apply_status(
        self,
        session: Session,
        assignment: MissionDriverAssignment,
        new_status: MissionDriverStatus,
        actor: Actor,
        notes: str | None,
    ) -> EventEnvelope:
        previous = assignment.status
        if not can_mission_driver_transition(previous, new_status):
            raise InvalidTransitionError(f"Invalid transition from {previous} to {new_status}")
        before = snapshot(assignment)
        values: dict[str, Any] = {"status": new_status}
        if new_status == MissionDriverStatus.PENDING:
            values.update(approved_by=None, approved_at=None)
        else:
            values.update(approved_by=actor.user_id, approved_at=now_utc())
        if notes is not None:
            values["notes"] = notes

        # Guarded by the status that was read.
        result = session.execute(
            sa.update(MissionDriverAssignment)
            .where(MissionDriverAssignment.id == assignment.id)
            .where(MissionDriverAssignment.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("assignment %s changed concurrently, rejecting move to %s", assignment.id, new_status)
            raise ConflictError("assignment was modified by another request")
        session.refresh(assignment)

        record_audit_entry(
            session,
            tenant_id=assignment.tenant_id,
            entity_type="MissionDriver",
            entity_id=assignment.id,
            action=STATUS_ACTIONS[new_status],
            actor_id=actor.user_id,
            before=before,
            after=assignment,
            notes=notes,
        )
        return event_bus.stage(
            session,
            "mission_driver.status_changed",
            assignment.tenant_id,
            {
                "mission_id": assignment.mission_id,
                "driver_id": assignment.driver_id,
                "from": previous,
                "to": new_status,
            },
            actor_id=actor.user_id,
        )

    def update_status(
        self,
        mission_id: str,
        driver_id: str,
        tenant_id: str,
        new_status: MissionDriverStatus,
        actor: Actor,
        notes: str | None = None,
    ) -> MissionDriverAssignment:
        self._require(actor, TransitionClass.DRIVER_APPROVAL)
        with open_session() as session:
            assignment = self._get_scoped_assignment(session, tenant_id, mission_id, driver_id)
            read_status = assignment.status
            event = self._apply_status(session, assignment, new_status, actor, notes)
            session.commit()

        event_bus.notify(event)
        logger.info("mission %s driver %s: %s -> %s", mission_id, driver_id, read_status, new_status)
        return assignment

    def bulk_update_status(
        self,
        mission_id: str,
        driver_ids: list[str],
        tenant_id: str,
        new_status: MissionDriverStatus,
        actor: Actor,
    ) -> dict[str, Any]:
        self._require(actor, TransitionClass.DRIVER_APPROVAL)
        requested = _normalize_ids(driver_ids)
        if not requested:
            raise ValidationError("driver_ids must not be empty")

        events: list[EventEnvelope] = []
        results: list[dict[str, Any]] = []
        with open_session() as session:
            self._get_scoped_mission(session, tenant_id, mission_id)
            updated: list[MissionDriverAssignment] = []
            for driver_id in requested:
                try:
                    assignment = self._get_scoped_assignment(session, tenant_id, mission_id, driver_id)
                    events.append(self._apply_status(session, assignment, new_status, actor, notes=None))
                except WorkflowError as exc:
                    results.append(_item(driver_id, "failed", detail=str(exc)))
                    continue
                updated.append(assignment)
                results.append({"driver_id": driver_id, "status": "updated", "detail": None})
            if updated:
                session.commit()
                by_driver = {item.driver_id: item for item in updated}
                for result in results:
                    if result["status"] == "updated":
                        result["assignment"] = MissionDriverAssignmentRead.model_validate(by_driver[result["driver_id"]])

        event_bus.notify(*events)
        return {
            "mission_id": mission_id,
            "requested_count": len(requested),
            "succeeded_count": sum(1 for item in results if item["status"] == "updated"),
            "failed_count": sum(1 for item in results if item["status"] == "failed"),
            "results": results,
        }

    def _ensure_removable(self, session: Session, tenant_id: str, assignment: MissionDriverAssignment) -> None:
        config = load_workflow_config(session, tenant_id)
        progressed = session.exec(
            select(Truck.id)
            .where(Truck.tenant_id == tenant_id)
            .where(Truck.mission_id == assignment.mission_id)
            .where(Truck.driver_id == assignment.driver_id)
            .where(col(Truck.status).not_in(config.pre_dispatch_states))
        ).first()
        if progressed is not None:
            raise ConflictError("cannot remove driver: truck has already started mission progress")

    def _remove(self, session: Session, assignment: MissionDriverAssignment, actor: Actor) -> None:
        before = snapshot(assignment)
        session.delete(assignment)
        record_audit_entry(
            session,
            tenant_id=assignment.tenant_id,
            entity_type="MissionDriver",
            entity_id=assignment.id,
            action="REMOVE",
            actor_id=actor.user_id,
            before=before,
        )

    def remove(self, mission_id: str, driver_id: str, tenant_id: str, actor: Actor) -> None:
        self._require(actor, TransitionClass.DRIVER_ASSIGNMENT)
        with open_session() as session:
            assignment = self._get_scoped_assignment(session, tenant_id, mission_id, driver_id)
            self._ensure_removable(session, tenant_id, assignment)
            self._remove(session, assignment, actor)
            session.commit()
        logger.info("mission %s: driver %s removed", mission_id, driver_id)

    def bulk_remove(self, mission_id: str, driver_ids: list[str], tenant_id: str, actor: Actor) -> dict[str, Any]:
        self._require(actor, TransitionClass.DRIVER_ASSIGNMENT)
        requested = _normalize_ids(driver_ids)
        if not requested:
            raise ValidationError("driver_ids must not be empty")

        results: list[dict[str, Any]] = []
        with open_session() as session:
            self._get_scoped_mission(session, tenant_id, mission_id)
            for driver_id in requested:
                try:
                    assignment = self._get_scoped_assignment(session, tenant_id, mission_id, driver_id)
                    self._ensure_removable(session, tenant_id, assignment)
                except WorkflowError as exc:
                    results.append(_item(driver_id, "failed", detail=str(exc)))
                    continue
                self._remove(session, assignment, actor)
                results.append(_item(driver_id, "removed"))
            if any(item["status"] == "removed" for item in results):
                session.commit()

        return {
            "mission_id": mission_id,
            "requested_count": len(requested),
            "succeeded_count": sum(1 for item in results if item["status"] == "removed"),
            "failed_count": sum(1 for item in results if item["status"] == "failed"),
            "results": results,
        }

    def list_mission_drivers(
        self,
        mission_id: str,
        tenant_id: str,
        status: MissionDriverStatus | None = None,
    ) -> list[MissionDriverAssignment]:
        with open_session() as session:
            self._get_scoped_mission(session, tenant_id, mission_id)
            statement = (
                select(MissionDriverAssignment)
                .where(MissionDriverAssignment.tenant_id == tenant_id)
                .where(MissionDriverAssignment.mission_id == mission_id)
            )
            if status is not None:
                statement = statement.where(MissionDriverAssignment.status == status)
            statement = statement.order_by(col(MissionDriverAssignment.assigned_at).desc())
            return list(session.exec(statement).all())

    def list_driver_missions(
        self,
        driver_id: str,
        tenant_id: str,
        status: MissionDriverStatus | None = None,
    ) -> list[MissionDriverAssignment]:
        with open_session() as session:
            statement = (
                select(MissionDriverAssignment)
                .where(MissionDriverAssignment.tenant_id == tenant_id)
                .where(MissionDriverAssignment.driver_id == driver_id)
            )
            if status is not None:
                statement = statement.where(MissionDriverAssignment.status == status)
            statement = statement.order_by(col(MissionDriverAssignment.assigned_at).desc())
            return list(session.exec(statement).all())

    def is_driver_approved(self, mission_id: str, driver_id: str, tenant_id: str) -> bool:
        with open_session() as session:
            return is_driver_approved(session, tenant_id, mission_id, driver_id)

    def statistics(self, mission_id: str, tenant_id: str) -> dict[str, int]:
        with open_session() as session:
            self._get_scoped_mission(session, tenant_id, mission_id)
            rows = session.exec(
                select(MissionDriverAssignment.status, func.count())
                .where(MissionDriverAssignment.tenant_id == tenant_id)
                .where(MissionDriverAssignment.mission_id == mission_id)
                .group_by(MissionDriverAssignment.status)
            ).all()
        counts = {str(status): int(count) for status, count in rows}
        return {
            "total": sum(counts.values()),
            "pending": counts.get(MissionDriverStatus.PENDING, 0),
            "approved": counts.get(MissionDriverStatus.APPROVED, 0),
            "denied": counts.get(MissionDriverStatus.DENIED, 0),
        }
