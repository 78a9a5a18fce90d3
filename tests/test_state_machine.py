from __future__ import annotations

import logging

import pytest

from app.domain.state_machine import (
    MissionDriverStatus,
    MissionStatus,
    can_mission_driver_transition,
    can_mission_transition,
    validate_transition,
)
from app.domain.workflow import TenantWorkflowConfig, default_workflow_config


def test_default_graph_allows_dispatch_from_idle() -> None:
    decision = validate_transition(default_workflow_config(), "IDLE", "DISPATCHED")
    assert decision.allowed
    assert decision.reason is None


def test_default_graph_rejects_skipping_to_loaded() -> None:
    decision = validate_transition(default_workflow_config(), "DISPATCHED", "LOADED")
    assert not decision.allowed
    assert decision.reason == "Invalid transition from DISPATCHED to LOADED"


def test_comparison_is_case_insensitive() -> None:
    config = default_workflow_config()
    assert validate_transition(config, "fueled", "hp1_wait").allowed
    assert validate_transition(config, "FUELED", "Hp1_Wait").allowed


def test_state_without_successors_allows_any_move(caplog: pytest.LogCaptureFixture) -> None:
    config = TenantWorkflowConfig.model_validate(
        {
            "states": ["IDLE", "DISPATCHED", "LIMBO"],
            "transitions": {"IDLE": ["DISPATCHED"], "DISPATCHED": []},
        }
    )
    with caplog.at_level(logging.WARNING, logger="app.domain.state_machine"):
        assert validate_transition(config, "DISPATCHED", "IDLE").allowed
        assert validate_transition(config, "LIMBO", "DISPATCHED").allowed
    assert "no transitions configured for state DISPATCHED" in caplog.text


def test_configured_state_only_allows_listed_successors() -> None:
    config = TenantWorkflowConfig.model_validate(
        {"states": ["A", "B", "C"], "transitions": {"A": ["B"]}}
    )
    assert validate_transition(config, "A", "B").allowed
    assert not validate_transition(config, "A", "C").allowed


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (MissionStatus.CREATED, MissionStatus.ACTIVE, True),
        (MissionStatus.CREATED, MissionStatus.CANCELLED, True),
        (MissionStatus.ACTIVE, MissionStatus.COMPLETED, True),
        (MissionStatus.COMPLETED, MissionStatus.RECONCILED, True),
        (MissionStatus.CREATED, MissionStatus.COMPLETED, False),
        (MissionStatus.COMPLETED, MissionStatus.CANCELLED, False),
        (MissionStatus.RECONCILED, MissionStatus.ACTIVE, False),
        (MissionStatus.CANCELLED, MissionStatus.CREATED, False),
    ],
)
def test_mission_lifecycle(source: MissionStatus, target: MissionStatus, allowed: bool) -> None:
    assert can_mission_transition(source, target) is allowed


def test_mission_driver_lifecycle() -> None:
    assert can_mission_driver_transition(MissionDriverStatus.PENDING, MissionDriverStatus.APPROVED)
    assert can_mission_driver_transition(MissionDriverStatus.PENDING, MissionDriverStatus.DENIED)
    assert can_mission_driver_transition(MissionDriverStatus.APPROVED, MissionDriverStatus.PENDING)
    assert can_mission_driver_transition(MissionDriverStatus.DENIED, MissionDriverStatus.PENDING)
    assert can_mission_driver_transition(MissionDriverStatus.APPROVED, MissionDriverStatus.DENIED)
    assert can_mission_driver_transition(MissionDriverStatus.DENIED, MissionDriverStatus.APPROVED)
    assert not can_mission_driver_transition(MissionDriverStatus.APPROVED, MissionDriverStatus.APPROVED)
    assert not can_mission_driver_transition(MissionDriverStatus.PENDING, MissionDriverStatus.PENDING)
