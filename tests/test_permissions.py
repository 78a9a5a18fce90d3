from __future__ import annotations

import pytest

from app.domain.permissions import (
    PERM_AUDIT_READ,
    PERM_TRUCK_WRITE,
    PERM_WORKFLOW_WRITE,
    Role,
    TransitionClass,
    authorize,
    classify_transition,
    has_permission,
)
from app.domain.workflow import default_workflow_config


@pytest.mark.parametrize(
    ("current", "requested", "expected"),
    [
        ("HP1_WAIT", "HP2_WAIT", TransitionClass.GREEN_LIGHT),
        ("loaded", "exiting", TransitionClass.GREEN_LIGHT),
        ("MAINTENANCE", "IDLE", TransitionClass.MAINTENANCE_RELEASE),
        ("LOADED", "LOOTED", TransitionClass.EMERGENCY),
        ("DISPATCHED", "MAINTENANCE", TransitionClass.EMERGENCY),
        ("IDLE", "DISPATCHED", TransitionClass.STANDARD),
        ("HP1_WAIT", "LOADING_PREP", TransitionClass.STANDARD),
    ],
)
def test_classify_transition(current: str, requested: str, expected: TransitionClass) -> None:
    assert classify_transition(default_workflow_config(), current, requested) == expected


def test_green_light_is_reserved_for_ops_manager() -> None:
    assert authorize(Role.OPS_MANAGER, TransitionClass.GREEN_LIGHT)
    for role in (Role.DISPATCHER, Role.MAINTENANCE, Role.DRIVER, Role.FINANCE_AUDIT):
        assert not authorize(role, TransitionClass.GREEN_LIGHT)


def test_maintenance_release_excludes_drivers() -> None:
    assert authorize("MAINTENANCE", TransitionClass.MAINTENANCE_RELEASE)
    assert not authorize("DRIVER", TransitionClass.MAINTENANCE_RELEASE)


def test_drivers_may_raise_emergencies_but_not_approve_drivers() -> None:
    assert authorize(Role.DRIVER, TransitionClass.EMERGENCY)
    assert authorize(Role.DRIVER, TransitionClass.STANDARD)
    assert not authorize(Role.DRIVER, TransitionClass.DRIVER_APPROVAL)
    assert not authorize(Role.CONTRACTOR_FOCAL_POINT, TransitionClass.DRIVER_ASSIGNMENT)


def test_reconcile_belongs_to_finance() -> None:
    assert authorize(Role.FINANCE_AUDIT, TransitionClass.MISSION_RECONCILE)
    assert not authorize(Role.DISPATCHER, TransitionClass.MISSION_RECONCILE)


def test_unknown_role_is_never_authorized() -> None:
    assert not authorize("JANITOR", TransitionClass.STANDARD)


def test_has_permission_honors_wildcard_and_role_fallback() -> None:
    assert has_permission({"permissions": ["*"]}, PERM_WORKFLOW_WRITE)
    assert has_permission({"permissions": [PERM_TRUCK_WRITE]}, PERM_TRUCK_WRITE)
    assert not has_permission({"permissions": [PERM_TRUCK_WRITE]}, PERM_AUDIT_READ)
    assert has_permission({"role": "FINANCE_AUDIT"}, PERM_AUDIT_READ)
    assert not has_permission({"role": "DRIVER"}, PERM_AUDIT_READ)
