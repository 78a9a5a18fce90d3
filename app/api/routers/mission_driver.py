from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_actor, get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.models import (
    Actor,
    MissionDriverAssignmentRead,
    MissionDriverAssignRead,
    MissionDriverAssignRequest,
    MissionDriverBulkRead,
    MissionDriverBulkStatusRequest,
    MissionDriverStatsRead,
    MissionDriverStatusRequest,
)
from app.domain.permissions import PERM_MISSION_DRIVER_READ, PERM_MISSION_DRIVER_WRITE
from app.domain.state_machine import MissionDriverStatus
from app.services.exceptions import WorkflowError
from app.services.mission_driver_service import MissionDriverService

router = APIRouter()


def get_mission_driver_service() -> MissionDriverService:
    return MissionDriverService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
ActorDep = Annotated[Actor, Depends(get_actor)]
Service = Annotated[MissionDriverService, Depends(get_mission_driver_service)]
StatusFilter = Annotated[MissionDriverStatus | None, Query(alias="status")]


@router.post(
    "/missions/{mission_id}/drivers",
    response_model=MissionDriverAssignRead,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_WRITE))],
)
def assign_drivers(
    mission_id: str,
    payload: MissionDriverAssignRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionDriverAssignRead:
    try:
        result = service.assign_drivers(mission_id, payload.driver_ids, claims["tenant_id"], actor)
        return MissionDriverAssignRead.model_validate(result)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/missions/{mission_id}/drivers",
    response_model=list[MissionDriverAssignmentRead],
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_READ))],
)
def list_mission_drivers(
    mission_id: str,
    claims: Claims,
    service: Service,
    status_filter: StatusFilter = None,
) -> list[MissionDriverAssignmentRead]:
    try:
        rows = service.list_mission_drivers(mission_id, claims["tenant_id"], status=status_filter)
        return [MissionDriverAssignmentRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/missions/{mission_id}/drivers/stats",
    response_model=MissionDriverStatsRead,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_READ))],
)
def mission_driver_stats(mission_id: str, claims: Claims, service: Service) -> MissionDriverStatsRead:
    try:
        return MissionDriverStatsRead.model_validate(service.statistics(mission_id, claims["tenant_id"]))
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/missions/{mission_id}/drivers/bulk-update",
    response_model=MissionDriverBulkRead,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_WRITE))],
)
def bulk_update_drivers(
    mission_id: str,
    payload: MissionDriverBulkStatusRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionDriverBulkRead:
    try:
        result = service.bulk_update_status(
            mission_id,
            payload.driver_ids,
            claims["tenant_id"],
            payload.status,
            actor,
        )
        return MissionDriverBulkRead.model_validate(result)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.post(
    "/missions/{mission_id}/drivers/bulk-remove",
    response_model=MissionDriverBulkRead,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_WRITE))],
)
def bulk_remove_drivers(
    mission_id: str,
    payload: MissionDriverAssignRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionDriverBulkRead:
    try:
        result = service.bulk_remove(mission_id, payload.driver_ids, claims["tenant_id"], actor)
        return MissionDriverBulkRead.model_validate(result)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.patch(
    "/missions/{mission_id}/drivers/{driver_id}",
    response_model=MissionDriverAssignmentRead,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_WRITE))],
)
def update_driver_status(
    mission_id: str,
    driver_id: str,
    payload: MissionDriverStatusRequest,
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> MissionDriverAssignmentRead:
    try:
        assignment = service.update_status(
            mission_id,
            driver_id,
            claims["tenant_id"],
            payload.status,
            actor,
            notes=payload.notes,
        )
        return MissionDriverAssignmentRead.model_validate(assignment)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.delete(
    "/missions/{mission_id}/drivers/{driver_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_WRITE))],
)
def remove_driver(mission_id: str, driver_id: str, claims: Claims, actor: ActorDep, service: Service) -> Response:
    try:
        service.remove(mission_id, driver_id, claims["tenant_id"], actor)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/drivers/{driver_id}/missions",
    response_model=list[MissionDriverAssignmentRead],
    dependencies=[Depends(require_perm(PERM_MISSION_DRIVER_READ))],
)
def list_driver_missions(
    driver_id: str,
    claims: Claims,
    service: Service,
    status_filter: StatusFilter = None,
) -> list[MissionDriverAssignmentRead]:
    rows = service.list_driver_missions(driver_id, claims["tenant_id"], status=status_filter)
    return [MissionDriverAssignmentRead.model_validate(item) for item in rows]
