from __future__ import annotations

import pydantic
import pytest

from app.domain.workflow import TenantWorkflowConfig, default_workflow_config, normalize_state


def test_default_workflow_loads_and_starts_idle() -> None:
    config = default_workflow_config()
    assert config.initial_state == "IDLE"
    assert config.pre_dispatch_states == ["IDLE", "DISPATCHED"]
    assert config.checkpoint_for("hp1_wait") == "HP1"
    assert config.checkpoint_for("LOADED") is None
    assert config.is_green_light("HP1_WAIT", "HP2_WAIT")
    assert config.is_green_light("loaded", "exiting")
    assert not config.is_green_light("HP1_WAIT", "LOADING_PREP")
    assert config.fuel_transition is not None
    assert config.fuel_transition.to_state == "FUELED"


def test_default_workflow_copies_are_independent() -> None:
    first = default_workflow_config()
    first.transitions["IDLE"].append("LOOTED")
    first.states.append("EXTRA")

    second = default_workflow_config()
    assert "LOOTED" not in second.transitions["IDLE"]
    assert "EXTRA" not in second.states


def test_state_names_are_normalized_to_upper_case() -> None:
    config = TenantWorkflowConfig.model_validate(
        {
            "states": ["idle", " Moving ", "parked"],
            "transitions": {"idle": ["moving"], "Moving": ["PARKED", "parked"]},
            "unassigned_states": ["idle"],
        }
    )
    assert config.states == ["IDLE", "MOVING", "PARKED"]
    assert config.transitions == {"IDLE": ["MOVING"], "MOVING": ["PARKED"]}
    assert config.successors("moving") == ["PARKED"]
    assert normalize_state(" hp2_wait ") == "HP2_WAIT"


def test_transition_to_unknown_state_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        TenantWorkflowConfig.model_validate({"states": ["A", "B"], "transitions": {"A": ["C"]}})


def test_duplicate_states_are_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        TenantWorkflowConfig.model_validate({"states": ["A", "a"]})


def test_green_light_gate_must_be_a_configured_transition() -> None:
    with pytest.raises(pydantic.ValidationError):
        TenantWorkflowConfig.model_validate(
            {
                "states": ["A", "B"],
                "transitions": {"A": []},
                "green_light_gates": [{"from_state": "A", "to_state": "B"}],
            }
        )


def test_requires_mission_outside_unassigned_states() -> None:
    config = default_workflow_config()
    assert not config.requires_mission("IDLE")
    assert not config.requires_mission("maintenance")
    assert config.requires_mission("DISPATCHED")


def test_document_round_trips_through_json() -> None:
    config = default_workflow_config()
    document = config.to_document()
    assert document["states"][0] == "IDLE"
    assert TenantWorkflowConfig.model_validate(document) == config
