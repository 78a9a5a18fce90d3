from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_actor, get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.models import (
    Actor,
    CheckpointEventRead,
    FuelEventRead,
    MissionCreate,
    MissionRead,
    MissionReconcileRequest,
    MissionStatsRead,
    MissionTransitionRequest,
    TruckRead,
)
from app.domain.permissions import PERM_MISSION_READ, PERM_MISSION_WRITE
from app.domain.state_machine import MissionStatus
from app.services.exceptions import WorkflowError
from app.services.field_event_service import FieldEventService
from app.services.mission_service import MissionService

router = APIRouter()


def get_mission_service() -> MissionService:
    return MissionService()


def get_field_event_service() -> FieldEventService:
    return FieldEventService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
ActorDep = Annotated[Actor, Depends(get_actor)]
Service = Annotated[MissionService, Depends(get_mission_service)]
FieldEvents = Annotated[FieldEventService, Depends(get_field_event_service)]


@router.post(
    "/missions",
    response_model=MissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_MISSION_WRITE))],
)
def create_mission(payload: MissionCreate, claims: Claims, actor: ActorDep, service: Service) -> MissionRead:
    try:
        return MissionRead.model_validate(service.create_mission(claims["tenant_id"], actor, payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/missions",
    response_model=list[MissionRead],
    dependencies=[Depends(require_perm(PERM_MISSION_READ))],
)
def list_missions(
    claims: Claims,
    service: Service,
    status_filter: Annotated[MissionStatus | None, Query(alias="status")] = None,
) -> list[MissionRead]:
    missions = service.list_missions(claims["tenant_id"], status=status_filter)
    return [MissionRead.model_validate(item) for item in missions]


@router.get(
    "/missions/stats",
    response_model=MissionStatsRead,
    dependencies=[Depends(require_perm(PERM_MISSION_READ))],
)
def mission_stats(claims: Claims, service: Service) -> MissionStatsRead:
    return MissionStatsRead.model_validate(service.mission_statistics(claims["tenant_id"]))


@router.get(
    "/missions/{mission_id}",
    response_model=MissionRead,
    dependencies=[Depends(require_perm(PERM_MISSION_READ))],
)
def get_mission(mission_id: str, claims: Claims, service: Service) -> MissionRead:
    try:
        return MissionRead.model_validate(service.get_mission(claims["tenant_id"], mission_id))
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/missions/{mission_id}/transition",
    response_model=MissionRead,
    dependencies=[Depends(require_perm(PERM_MISSION_WRITE))],
)
def transition_mission(
    mission_id: str,
    payload: MissionTransitionRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionRead:
    try:
        mission = service.transition_mission(mission_id, claims["tenant_id"], payload.target_status, actor)
        return MissionRead.model_validate(mission)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/missions/{mission_id}/trucks/{truck_id}",
    response_model=TruckRead,
    dependencies=[Depends(require_perm(PERM_MISSION_WRITE))],
)
def assign_truck(
    mission_id: str,
    truck_id: str,
    claims: Claims,
    actor: ActorDep,
    service: Service,
    driver_id: str | None = None,
) -> TruckRead:
    try:
        truck = service.assign_truck(mission_id, truck_id, claims["tenant_id"], actor, driver_id=driver_id)
        return TruckRead.model_validate(truck)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.delete(
    "/missions/{mission_id}/trucks/{truck_id}",
    response_model=TruckRead,
    dependencies=[Depends(require_perm(PERM_MISSION_WRITE))],
)
def unassign_truck(
    mission_id: str,
    truck_id: str,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> TruckRead:
    try:
        truck = service.unassign_truck(mission_id, truck_id, claims["tenant_id"], actor)
        return TruckRead.model_validate(truck)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/missions/{mission_id}/reconcile",
    response_model=MissionRead,
    dependencies=[Depends(require_perm(PERM_MISSION_WRITE))],
)
def reconcile_mission(
    mission_id: str,
    payload: MissionReconcileRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionRead:
    try:
        mission = service.reconcile_mission(mission_id, claims["tenant_id"], payload.report, actor)
        return MissionRead.model_validate(mission)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/missions/{mission_id}/checkpoints",
    response_model=list[CheckpointEventRead],
    dependencies=[Depends(require_perm(PERM_MISSION_READ))],
)
def list_mission_checkpoints(
    mission_id: str,
    claims: Claims,
    service: Service,
    field_events: FieldEvents,
) -> list[CheckpointEventRead]:
    try:
        service.get_mission(claims["tenant_id"], mission_id)
        rows = field_events.list_checkpoint_events(claims["tenant_id"], mission_id=mission_id)
        return [CheckpointEventRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/missions/{mission_id}/fuel",
    response_model=list[FuelEventRead],
    dependencies=[Depends(require_perm(PERM_MISSION_READ))],
)
def list_mission_fuel(
    mission_id: str,
    claims: Claims,
    service: Service,
    field_events: FieldEvents,
) -> list[FuelEventRead]:
    try:
        service.get_mission(claims["tenant_id"], mission_id)
        rows = field_events.list_fuel_events(claims["tenant_id"], mission_id=mission_id)
        return [FuelEventRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)
