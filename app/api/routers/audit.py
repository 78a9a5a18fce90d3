from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.models import AuditEntryRead, AuditStatsRead
from app.domain.permissions import PERM_AUDIT_READ
from app.services.audit_service import MAX_PAGE_SIZE, AuditService
from app.services.exceptions import WorkflowError

router = APIRouter()


def get_audit_service() -> AuditService:
    return AuditService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AuditService, Depends(get_audit_service)]


@router.get(
    "/entries",
    response_model=list[AuditEntryRead],
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def list_audit_entries(
    claims: Claims,
    service: Service,
    entity_type: str | None = None,
    entity_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[AuditEntryRead]:
    try:
        rows = service.list_entries(
            claims["tenant_id"],
            entity_type=entity_type,
            entity_id=entity_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
        return [AuditEntryRead.model_validate(item) for item in rows]
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/stats",
    response_model=AuditStatsRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def audit_stats(
    claims: Claims,
    service: Service,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> AuditStatsRead:
    try:
        return AuditStatsRead.model_validate(
            service.statistics(claims["tenant_id"], date_from=date_from, date_to=date_to)
        )
    except WorkflowError as exc:
        handle_workflow_error(exc)
