from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import Field as PydanticField

DEFAULT_WORKFLOW_PATH = Path(__file__).with_name("default_workflow.json")


def normalize_state(value: str) -> str:
    return value.strip().upper()


class GreenLightGate(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_state: str
    to_state: str

    @field_validator("from_state", "to_state")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_state(value)


class FuelTransition(BaseModel):
    from_state: str
    to_state: str

    @field_validator("from_state", "to_state")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_state(value)


class CheckpointDefinition(BaseModel):
    name: str = PydanticField(min_length=1)
    state: str

    @field_validator("state")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_state(value)


class ReconciliationRules(BaseModel):
    required_fields: list[str] = PydanticField(default_factory=list)
    settled_truck_states: list[str] = PydanticField(default_factory=list)

    @field_validator("settled_truck_states")
    @classmethod
    def _normalize(cls, value: list[str]) -> list[str]:
        return [normalize_state(item) for item in value]


class TenantWorkflowConfig(BaseModel):
    """Per-tenant description of the truck state graph.

    State names are stored upper case. The first state is where new trucks
    start; the first two states are the pre-dispatch states.
    """

    states: list[str] = PydanticField(min_length=1)
    transitions: dict[str, list[str]] = PydanticField(default_factory=dict)
    green_light_gates: list[GreenLightGate] = PydanticField(default_factory=list)
    checkpoints: list[CheckpointDefinition] = PydanticField(default_factory=list)
    fuel_transition: FuelTransition | None = None
    unassigned_states: list[str] = PydanticField(default_factory=list)
    emergency_states: list[str] = PydanticField(default_factory=list)
    maintenance_state: str | None = None
    reconciliation_rules: ReconciliationRules = PydanticField(default_factory=ReconciliationRules)

    @field_validator("states", "unassigned_states", "emergency_states")
    @classmethod
    def _normalize_state_list(cls, value: list[str]) -> list[str]:
        return [normalize_state(item) for item in value]

    @field_validator("transitions")
    @classmethod
    def _normalize_transitions(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        normalized: dict[str, list[str]] = {}
        for source, targets in value.items():
            key = normalize_state(source)
            merged = normalized.setdefault(key, [])
            for target in targets:
                item = normalize_state(target)
                if item not in merged:
                    merged.append(item)
        return normalized

    @field_validator("maintenance_state")
    @classmethod
    def _normalize_maintenance(cls, value: str | None) -> str | None:
        return normalize_state(value) if value is not None else None

    @model_validator(mode="after")
    def _check_references(self) -> TenantWorkflowConfig:
        if len(set(self.states)) != len(self.states):
            raise ValueError("duplicate state names")
        known = set(self.states)

        def _require(state: str, where: str) -> None:
            if state not in known:
                raise ValueError(f"unknown state {state} referenced in {where}")

        for source, targets in self.transitions.items():
            _require(source, "transitions")
            for target in targets:
                _require(target, f"transitions[{source}]")
        for gate in self.green_light_gates:
            _require(gate.from_state, "green_light_gates")
            _require(gate.to_state, "green_light_gates")
            if gate.to_state not in self.transitions.get(gate.from_state, []):
                raise ValueError(f"green light gate {gate.from_state}->{gate.to_state} is not a transition")
        for checkpoint in self.checkpoints:
            _require(checkpoint.state, "checkpoints")
        if self.fuel_transition is not None:
            _require(self.fuel_transition.from_state, "fuel_transition")
            _require(self.fuel_transition.to_state, "fuel_transition")
        for state in self.unassigned_states:
            _require(state, "unassigned_states")
        for state in self.emergency_states:
            _require(state, "emergency_states")
        if self.maintenance_state is not None:
            _require(self.maintenance_state, "maintenance_state")
        for state in self.reconciliation_rules.settled_truck_states:
            _require(state, "reconciliation_rules")
        return self

    @property
    def initial_state(self) -> str:
        return self.states[0]

    @property
    def pre_dispatch_states(self) -> list[str]:
        return self.states[:2]

    def has_state(self, state: str) -> bool:
        return normalize_state(state) in self.states

    def successors(self, state: str) -> list[str]:
        return self.transitions.get(normalize_state(state), [])

    def is_green_light(self, current_state: str, requested_state: str) -> bool:
        gate = GreenLightGate(from_state=current_state, to_state=requested_state)
        return gate in self.green_light_gates

    def checkpoint_for(self, state: str) -> str | None:
        target = normalize_state(state)
        for checkpoint in self.checkpoints:
            if checkpoint.state == target:
                return checkpoint.name
        return None

    def requires_mission(self, state: str) -> bool:
        return normalize_state(state) not in self.unassigned_states

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@lru_cache(maxsize=1)
def _load_default_workflow() -> TenantWorkflowConfig:
    raw = json.loads(DEFAULT_WORKFLOW_PATH.read_text(encoding="utf-8"))
    return TenantWorkflowConfig.model_validate(raw)


def default_workflow_config() -> TenantWorkflowConfig:
    return _load_default_workflow().model_copy(deep=True)
