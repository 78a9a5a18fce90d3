from __future__ import annotations

from sqlmodel import Session, col, select

from app.domain.models import CheckpointEvent, CheckpointKind, FuelEvent, Truck
from app.domain.workflow import TenantWorkflowConfig
from app.infra.db import open_session
from app.services.exceptions import ValidationError


def record_checkpoint_progress(
    session: Session,
    config: TenantWorkflowConfig,
    truck: Truck,
    previous_state: str,
    new_state: str,
) -> list[CheckpointEvent]:
    """Append a departure for the checkpoint the truck leaves and an arrival for the one it enters.

    Runs inside the caller's transaction. Trucks outside a mission leave no
    checkpoint trail.
    """
    if truck.mission_id is None:
        return []

    recorded: list[CheckpointEvent] = []
    for state, kind in ((previous_state, CheckpointKind.DEPARTED), (new_state, CheckpointKind.ARRIVED)):
        checkpoint = config.checkpoint_for(state)
        if checkpoint is None:
            continue
        item = CheckpointEvent(
            tenant_id=truck.tenant_id,
            truck_id=truck.id,
            mission_id=truck.mission_id,
            checkpoint=checkpoint,
            state=state,
            kind=kind,
        )
        session.add(item)
        recorded.append(item)
    return recorded


class FieldEventService:
    def list_checkpoint_events(
        self,
        tenant_id: str,
        *,
        truck_id: str | None = None,
        mission_id: str | None = None,
    ) -> list[CheckpointEvent]:
        if truck_id is None and mission_id is None:
            raise ValidationError("truck_id or mission_id is required")
        with open_session() as session:
            statement = select(CheckpointEvent).where(CheckpointEvent.tenant_id == tenant_id)
            if truck_id is not None:
                statement = statement.where(CheckpointEvent.truck_id == truck_id)
            if mission_id is not None:
                statement = statement.where(CheckpointEvent.mission_id == mission_id)
            statement = statement.order_by(col(CheckpointEvent.ts).asc(), col(CheckpointEvent.id).asc())
            return list(session.exec(statement).all())

    def list_fuel_events(
        self,
        tenant_id: str,
        *,
        truck_id: str | None = None,
        mission_id: str | None = None,
    ) -> list[FuelEvent]:
        if truck_id is None and mission_id is None:
            raise ValidationError("truck_id or mission_id is required")
        with open_session() as session:
            statement = select(FuelEvent).where(FuelEvent.tenant_id == tenant_id)
            if truck_id is not None:
                statement = statement.where(FuelEvent.truck_id == truck_id)
            if mission_id is not None:
                statement = statement.where(FuelEvent.mission_id == mission_id)
            statement = statement.order_by(col(FuelEvent.ts).desc())
            return list(session.exec(statement).all())
