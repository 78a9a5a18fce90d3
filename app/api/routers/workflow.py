from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from app.api.deps import get_actor, get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.models import Actor, TenantCreate, TenantRead
from app.domain.permissions import PERM_WORKFLOW_READ, PERM_WORKFLOW_WRITE
from app.domain.workflow import TenantWorkflowConfig
from app.services.exceptions import WorkflowError
from app.services.workflow_service import WorkflowService

router = APIRouter()


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
ActorDep = Annotated[Actor, Depends(get_actor)]
Service = Annotated[WorkflowService, Depends(get_workflow_service)]


@router.post(
    "/tenants",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_WORKFLOW_WRITE))],
)
def create_tenant(payload: TenantCreate, service: Service) -> TenantRead:
    try:
        return TenantRead.model_validate(service.create_tenant(payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/config",
    response_model=TenantWorkflowConfig,
    dependencies=[Depends(require_perm(PERM_WORKFLOW_READ))],
)
def get_workflow_config(claims: Claims, service: Service) -> TenantWorkflowConfig:
    try:
        return service.get_tenant_workflow_config(claims["tenant_id"])
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.put(
    "/config",
    response_model=TenantWorkflowConfig,
    dependencies=[Depends(require_perm(PERM_WORKFLOW_WRITE))],
)
def put_workflow_config(
    payload: dict[str, Any],
    claims: Claims,
    actor: ActorDep,
    service: Service,
) -> TenantWorkflowConfig:
    try:
        return service.set_tenant_workflow_config(claims["tenant_id"], payload, actor)
    except WorkflowError as exc:
        handle_workflow_error(exc)
