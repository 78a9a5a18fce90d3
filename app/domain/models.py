from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.domain.state_machine import MissionDriverStatus, MissionStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    tenant_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_entries_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index("ix_audit_entries_tenant_ts", "tenant_id", "ts"),
    )

    # Assigned in insertion order; breaks ties between entries sharing a ts.
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    entity_type: str = Field(index=True)
    entity_id: str = Field(index=True)
    action: str = Field(index=True)
    actor_id: str = Field(index=True)
    notes: str | None = None
    before: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    after: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    ts: datetime = Field(default_factory=now_utc, index=True)


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    workflow_config: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Driver(SQLModel, table=True):
    __tablename__ = "drivers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_drivers_tenant_user"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    user_id: str | None = Field(default=None, index=True)
    name: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class BorderCrossing(StrEnum):
    KS = "KS"
    ZIKIM = "ZIKIM"
    OTHER = "OTHER"


class Mission(SQLModel, table=True):
    __tablename__ = "missions"
    __table_args__ = (
        Index("ix_missions_tenant_status", "tenant_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    mission_date: date
    border: BorderCrossing
    status: MissionStatus = Field(default=MissionStatus.CREATED, index=True)
    reconciliation: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    created_by: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Truck(SQLModel, table=True):
    __tablename__ = "trucks"
    __table_args__ = (
        UniqueConstraint("tenant_id", "plate_no", name="uq_trucks_tenant_plate"),
        Index("ix_trucks_tenant_status", "tenant_id", "status"),
        Index("ix_trucks_tenant_mission", "tenant_id", "mission_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    plate_no: str
    capacity_tons: float
    status: str = Field(index=True)
    driver_id: str | None = Field(default=None, foreign_key="drivers.id", index=True)
    mission_id: str | None = Field(default=None, foreign_key="missions.id", index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class MissionDriverAssignment(SQLModel, table=True):
    __tablename__ = "mission_driver_assignments"
    __table_args__ = (
        UniqueConstraint("mission_id", "driver_id", name="uq_mission_driver_assignments_mission_driver"),
        Index("ix_mission_driver_assignments_tenant_mission", "tenant_id", "mission_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    mission_id: str = Field(foreign_key="missions.id", index=True)
    driver_id: str = Field(foreign_key="drivers.id", index=True)
    status: MissionDriverStatus = Field(default=MissionDriverStatus.PENDING, index=True)
    assigned_by: str
    assigned_at: datetime = Field(default_factory=now_utc, index=True)
    approved_by: str | None = None
    approved_at: datetime | None = None
    notes: str | None = None


class CheckpointKind(StrEnum):
    ARRIVED = "ARRIVED"
    DEPARTED = "DEPARTED"


class CheckpointEvent(SQLModel, table=True):
    __tablename__ = "checkpoint_events"
    __table_args__ = (
        Index("ix_checkpoint_events_tenant_truck", "tenant_id", "truck_id"),
        Index("ix_checkpoint_events_tenant_mission", "tenant_id", "mission_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    truck_id: str = Field(foreign_key="trucks.id", index=True)
    mission_id: str = Field(foreign_key="missions.id", index=True)
    checkpoint: str = Field(index=True)
    state: str
    kind: CheckpointKind
    ts: datetime = Field(default_factory=now_utc, index=True)


class PaymentBy(StrEnum):
    DRIVER_SELF = "DRIVER_SELF"
    CONTRACTOR = "CONTRACTOR"
    ORGANIZATION = "ORGANIZATION"


class FuelEvent(SQLModel, table=True):
    __tablename__ = "fuel_events"
    __table_args__ = (
        Index("ix_fuel_events_tenant_truck", "tenant_id", "truck_id"),
        Index("ix_fuel_events_tenant_mission", "tenant_id", "mission_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    truck_id: str = Field(foreign_key="trucks.id", index=True)
    mission_id: str | None = Field(default=None, foreign_key="missions.id", index=True)
    liters: float
    station_name: str
    paid_by: PaymentBy
    receipt_url: str | None = None
    recorded_by: str
    ts: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    tenant_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    workflow_config: dict[str, Any] | None = None


class TenantRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime


class TruckCreate(BaseModel):
    plate_no: str = PydanticField(min_length=1)
    capacity_tons: float = PydanticField(gt=0)
    driver_id: str | None = None


class TruckRead(ORMReadModel):
    id: str
    tenant_id: str
    plate_no: str
    capacity_tons: float
    status: str
    driver_id: str | None
    mission_id: str | None
    version: int
    created_at: datetime
    updated_at: datetime


class TruckTransitionRequest(BaseModel):
    status: str = PydanticField(min_length=1)
    notes: str | None = None
    expected_version: int | None = None


class TruckStatsRead(BaseModel):
    total: int
    by_status: dict[str, int]
    fuel_events: int
    fuel_liters: float


class FuelEventCreate(BaseModel):
    liters: float
    station_name: str = PydanticField(min_length=1)
    paid_by: PaymentBy = PaymentBy.DRIVER_SELF
    mission_id: str | None = None
    receipt_url: str | None = None


class FuelEventRead(ORMReadModel):
    id: str
    tenant_id: str
    truck_id: str
    mission_id: str | None
    liters: float
    station_name: str
    paid_by: PaymentBy
    receipt_url: str | None
    recorded_by: str
    ts: datetime


class CheckpointEventRead(ORMReadModel):
    id: int
    tenant_id: str
    truck_id: str
    mission_id: str
    checkpoint: str
    state: str
    kind: CheckpointKind
    ts: datetime


class MissionCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    mission_date: date
    border: BorderCrossing = BorderCrossing.OTHER


class MissionRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    mission_date: date
    border: BorderCrossing
    status: MissionStatus
    reconciliation: dict[str, Any] | None
    created_by: str
    created_at: datetime
    updated_at: datetime


class MissionTransitionRequest(BaseModel):
    target_status: MissionStatus


class MissionReconcileRequest(BaseModel):
    report: dict[str, Any]


class MissionStatsRead(BaseModel):
    missions_by_status: dict[str, int]
    trucks_by_status: dict[str, int]


class MissionDriverAssignRequest(BaseModel):
    driver_ids: list[str]


class MissionDriverStatusRequest(BaseModel):
    status: MissionDriverStatus
    notes: str | None = None


class MissionDriverBulkStatusRequest(BaseModel):
    driver_ids: list[str]
    status: MissionDriverStatus


class MissionDriverAssignmentRead(ORMReadModel):
    id: str
    tenant_id: str
    mission_id: str
    driver_id: str
    status: MissionDriverStatus
    assigned_by: str
    assigned_at: datetime
    approved_by: str | None
    approved_at: datetime | None
    notes: str | None


class MissionDriverItemResult(BaseModel):
    driver_id: str
    status: str
    detail: str | None = None
    assignment: MissionDriverAssignmentRead | None = None


class MissionDriverAssignRead(BaseModel):
    mission_id: str
    requested_count: int
    assigned_count: int
    already_assigned_count: int
    missing_count: int
    results: list[MissionDriverItemResult]


class MissionDriverBulkRead(BaseModel):
    mission_id: str
    requested_count: int
    succeeded_count: int
    failed_count: int
    results: list[MissionDriverItemResult]


class MissionDriverStatsRead(BaseModel):
    total: int
    pending: int
    approved: int
    denied: int


class AuditEntryRead(ORMReadModel):
    id: int
    tenant_id: str
    entity_type: str
    entity_id: str
    action: str
    actor_id: str
    notes: str | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    ts: datetime


class AuditStatsRead(BaseModel):
    total: int
    by_action: dict[str, int]
    by_entity_type: dict[str, int]
    by_actor: dict[str, int]
