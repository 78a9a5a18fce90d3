from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from sqlalchemy import event
from sqlmodel import Session, SQLModel

from app.domain.models import AuditEntry, CheckpointEvent, FuelEvent


class AppendOnlyError(RuntimeError):
    pass


def snapshot(entity: BaseModel | dict[str, Any] | None) -> dict[str, Any] | None:
    """Serialize a typed entity into the JSON payload stored on an audit entry."""
    if entity is None:
        return None
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json")
    return dict(entity)


def record_audit_entry(
    session: Session,
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    actor_id: str,
    before: BaseModel | dict[str, Any] | None = None,
    after: BaseModel | dict[str, Any] | None = None,
    notes: str | None = None,
) -> AuditEntry:
    # Added to the caller's session so it commits or rolls back with the change it describes.
    entry = AuditEntry(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        before=snapshot(before),
        after=snapshot(after),
        notes=notes,
    )
    session.add(entry)
    return entry


APPEND_ONLY_MODELS = (AuditEntry, CheckpointEvent, FuelEvent)


def _reject_change(_mapper: object, _connection: object, target: SQLModel) -> None:
    raise AppendOnlyError(f"{type(target).__tablename__} row {getattr(target, 'id', None)} is append-only")


for _model in APPEND_ONLY_MODELS:
    event.listen(_model, "before_update", _reject_change)
    event.listen(_model, "before_delete", _reject_change)
