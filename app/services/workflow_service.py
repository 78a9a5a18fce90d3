from __future__ import annotations

import logging
from typing import Any

import pydantic
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.models import Actor, Tenant, TenantCreate, Truck, now_utc
from app.domain.permissions import Role
from app.domain.workflow import TenantWorkflowConfig, default_workflow_config
from app.infra.audit import record_audit_entry
from app.infra.db import open_session
from app.infra.events import event_bus
from app.services.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def parse_workflow_config(document: dict[str, Any] | TenantWorkflowConfig) -> TenantWorkflowConfig:
    if isinstance(document, TenantWorkflowConfig):
        return document
    try:
        return TenantWorkflowConfig.model_validate(document)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"invalid workflow config: {exc.errors(include_url=False)}") from exc


def get_scoped_tenant(session: Session, tenant_id: str) -> Tenant:
    tenant = session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("tenant not found")
    return tenant


def load_workflow_config(session: Session, tenant_id: str) -> TenantWorkflowConfig:
    tenant = get_scoped_tenant(session, tenant_id)
    if not tenant.workflow_config:
        raise ConflictError("tenant workflow is not configured")
    return TenantWorkflowConfig.model_validate(tenant.workflow_config)


class WorkflowService:
    def create_tenant(self, payload: TenantCreate) -> Tenant:
        if payload.workflow_config is None:
            config = default_workflow_config()
        else:
            config = parse_workflow_config(payload.workflow_config)
        with open_session() as session:
            tenant = Tenant(name=payload.name, workflow_config=config.to_document())
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant name already exists") from exc
            session.refresh(tenant)
        logger.info("tenant %s created with %d workflow states", tenant.id, len(config.states))
        return tenant

    def get_tenant_workflow_config(self, tenant_id: str) -> TenantWorkflowConfig:
        with open_session() as session:
            return load_workflow_config(session, tenant_id)

    def set_tenant_workflow_config(
        self,
        tenant_id: str,
        config: TenantWorkflowConfig | dict[str, Any],
        actor: Actor,
    ) -> TenantWorkflowConfig:
        if actor.role != Role.OPS_MANAGER:
            raise PermissionDeniedError("only an operations manager may change the workflow")
        parsed = parse_workflow_config(config)
        with open_session() as session:
            tenant = get_scoped_tenant(session, tenant_id)
            orphaned = session.exec(
                select(Truck.status)
                .where(Truck.tenant_id == tenant_id)
                .where(col(Truck.status).not_in(parsed.states))
                .distinct()
            ).all()
            if orphaned:
                raise ConflictError(
                    f"trucks are in states missing from the new workflow: {', '.join(sorted(orphaned))}"
                )
            before = dict(tenant.workflow_config)
            tenant.workflow_config = parsed.to_document()
            tenant.updated_at = now_utc()
            session.add(tenant)
            record_audit_entry(
                session,
                tenant_id=tenant_id,
                entity_type="Tenant",
                entity_id=tenant_id,
                action="WORKFLOW_CONFIG_UPDATE",
                actor_id=actor.user_id,
                before={"workflow_config": before},
                after={"workflow_config": tenant.workflow_config},
            )
            event = event_bus.stage(
                session,
                "workflow.config_updated",
                tenant_id,
                {"states": parsed.states},
                actor_id=actor.user_id,
            )
            session.commit()
        event_bus.notify(event)
        logger.info("workflow config updated for tenant %s", tenant_id)
        return parsed
