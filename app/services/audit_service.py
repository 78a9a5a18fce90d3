from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlmodel import col, func, select

from app.domain.models import AuditEntry
from app.infra.db import open_session
from app.services.exceptions import ValidationError

MAX_PAGE_SIZE = 500


def _apply_window(statement: Any, date_from: datetime | None, date_to: datetime | None) -> Any:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    if date_from is not None:
        statement = statement.where(AuditEntry.ts >= date_from)
    if date_to is not None:
        statement = statement.where(AuditEntry.ts <= date_to)
    return statement


class AuditService:
    def list_entries(
        self,
        tenant_id: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Tenant-wide listings come newest first; a single entity's history reads oldest first."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        statement = select(AuditEntry).where(AuditEntry.tenant_id == tenant_id)
        if entity_type is not None:
            statement = statement.where(AuditEntry.entity_type == entity_type)
        if entity_id is not None:
            statement = statement.where(AuditEntry.entity_id == entity_id)
        statement = _apply_window(statement, date_from, date_to)
        if entity_id is not None:
            statement = statement.order_by(col(AuditEntry.ts).asc(), col(AuditEntry.id).asc())
        else:
            statement = statement.order_by(col(AuditEntry.ts).desc(), col(AuditEntry.id).desc())

        with open_session() as session:
            return list(session.exec(statement.offset(offset).limit(limit)).all())

    def statistics(
        self,
        tenant_id: str,
        *,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict[str, Any]:
        grouped: dict[str, dict[str, int]] = {}
        with open_session() as session:
            for name, column in (
                ("by_action", AuditEntry.action),
                ("by_entity_type", AuditEntry.entity_type),
                ("by_actor", AuditEntry.actor_id),
            ):
                statement = select(column, func.count()).where(AuditEntry.tenant_id == tenant_id)
                statement = _apply_window(statement, date_from, date_to).group_by(column)
                grouped[name] = {str(key): int(count) for key, count in session.exec(statement).all()}
        return {"total": sum(grouped["by_action"].values()), **grouped}
