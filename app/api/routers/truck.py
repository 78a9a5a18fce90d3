from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_actor, get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.models import (
    Actor,
    CheckpointEventRead,
    FuelEventCreate,
    FuelEventRead,
    TruckCreate,
    TruckRead,
    TruckStatsRead,
    TruckTransitionRequest,
)
from app.domain.permissions import PERM_TRUCK_READ, PERM_TRUCK_WRITE
from app.services.exceptions import WorkflowError
from app.services.field_event_service import FieldEventService
from app.services.truck_service import TruckService

router = APIRouter()


def get_truck_service() -> TruckService:
    return TruckService()


def get_field_event_service() -> FieldEventService:
    return FieldEventService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
ActorDep = Annotated[Actor, Depends(get_actor)]
Service = Annotated[TruckService, Depends(get_truck_service)]
FieldEvents = Annotated[FieldEventService, Depends(get_field_event_service)]


@router.post(
    "/trucks",
    response_model=TruckRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_TRUCK_WRITE))],
)
def create_truck(payload: TruckCreate, claims: Claims, actor: ActorDep, service: Service) -> TruckRead:
    try:
        truck = service.create_truck(claims["tenant_id"], actor, payload)
        return TruckRead.model_validate(truck)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/trucks",
    response_model=list[TruckRead],
    dependencies=[Depends(require_perm(PERM_TRUCK_READ))],
)
def list_trucks(
    claims: Claims,
    service: Service,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    mission_id: str | None = None,
) -> list[TruckRead]:
    trucks = service.list_trucks(claims["tenant_id"], status=status_filter, mission_id=mission_id)
    return [TruckRead.model_validate(item) for item in trucks]


@router.get(
    "/trucks/stats",
    response_model=TruckStatsRead,
    dependencies=[Depends(require_perm(PERM_TRUCK_READ))],
)
def truck_stats(claims: Claims, service: Service) -> TruckStatsRead:
    return TruckStatsRead.model_validate(service.truck_statistics(claims["tenant_id"]))


@router.get(
    "/trucks/{truck_id}",
    response_model=TruckRead,
    dependencies=[Depends(require_perm(PERM_TRUCK_READ))],
)
def get_truck(truck_id: str, claims: Claims, service: Service) -> TruckRead:
    try:
        return TruckRead.model_validate(service.get_truck(claims["tenant_id"], truck_id))
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.delete(
    "/trucks/{truck_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_TRUCK_WRITE))],
)
def delete_truck(truck_id: str, claims: Claims, actor: ActorDep, service: Service) -> Response:
    try:
        service.delete_truck(claims["tenant_id"], truck_id, actor)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/trucks/{truck_id}/transition",
    response_model=TruckRead,
    dependencies=[Depends(require_perm(PERM_TRUCK_WRITE))],
)
def transition_truck(
    truck_id: str,
    payload: TruckTransitionRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> TruckRead:
    try:
        truck = service.transition(
            truck_id,
            claims["tenant_id"],
            payload.status,
            actor,
            notes=payload.notes,
            expected_version=payload.expected_version,
        )
        return TruckRead.model_validate(truck)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/trucks/{truck_id}/fuel",
    response_model=FuelEventRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_TRUCK_WRITE))],
)
def record_fuel(
    truck_id: str,
    payload: FuelEventCreate,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> FuelEventRead:
    try:
        fuel_event = service.record_fuel(truck_id, claims["tenant_id"], actor, payload)
        return FuelEventRead.model_validate(fuel_event)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/trucks/{truck_id}/fuel",
    response_model=list[FuelEventRead],
    dependencies=[Depends(require_perm(PERM_TRUCK_READ))],
)
def list_fuel_events(truck_id: str, claims: Claims, service: Service, field_events: FieldEvents) -> list[FuelEventRead]:
    try:
        service.get_truck(claims["tenant_id"], truck_id)
        rows = field_events.list_fuel_events(claims["tenant_id"], truck_id=truck_id)
        return [FuelEventRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/trucks/{truck_id}/checkpoints",
    response_model=list[CheckpointEventRead],
    dependencies=[Depends(require_perm(PERM_TRUCK_READ))],
)
def list_checkpoint_events(
    truck_id: str,
    claims: Claims,
    service: Service,
    field_events: FieldEvents,
) -> list[CheckpointEventRead]:
    try:
        service.get_truck(claims["tenant_id"], truck_id)
        rows = field_events.list_checkpoint_events(claims["tenant_id"], truck_id=truck_id)
        return [CheckpointEventRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)
