from __future__ import annotations

from enum import StrEnum
from typing import Any

from app.domain.workflow import TenantWorkflowConfig, normalize_state

PERM_WILDCARD = "*"
PERM_WORKFLOW_READ = "workflow.read"
PERM_WORKFLOW_WRITE = "workflow.write"
PERM_TRUCK_READ = "truck.read"
PERM_TRUCK_WRITE = "truck.write"
PERM_MISSION_READ = "mission.read"
PERM_MISSION_WRITE = "mission.write"
PERM_MISSION_DRIVER_READ = "mission_driver.read"
PERM_MISSION_DRIVER_WRITE = "mission_driver.write"
PERM_AUDIT_READ = "audit.read"


class Role(StrEnum):
    OPS_MANAGER = "OPS_MANAGER"
    DISPATCHER = "DISPATCHER"
    MAINTENANCE = "MAINTENANCE"
    CONTRACTOR_FOCAL_POINT = "CONTRACTOR_FOCAL_POINT"
    FINANCE_AUDIT = "FINANCE_AUDIT"
    DRIVER = "DRIVER"


ROLE_PERMISSIONS: dict[Role, list[str]] = {
    Role.OPS_MANAGER: [PERM_WILDCARD],
    Role.DISPATCHER: [
        PERM_WORKFLOW_READ,
        PERM_TRUCK_READ,
        PERM_TRUCK_WRITE,
        PERM_MISSION_READ,
        PERM_MISSION_WRITE,
        PERM_MISSION_DRIVER_READ,
        PERM_MISSION_DRIVER_WRITE,
        PERM_AUDIT_READ,
    ],
    Role.MAINTENANCE: [PERM_WORKFLOW_READ, PERM_TRUCK_READ, PERM_TRUCK_WRITE],
    Role.CONTRACTOR_FOCAL_POINT: [PERM_MISSION_READ, PERM_MISSION_DRIVER_READ, PERM_TRUCK_READ],
    Role.FINANCE_AUDIT: [PERM_MISSION_READ, PERM_MISSION_WRITE, PERM_TRUCK_READ, PERM_AUDIT_READ],
    Role.DRIVER: [PERM_TRUCK_READ, PERM_TRUCK_WRITE],
}


class TransitionClass(StrEnum):
    GREEN_LIGHT = "GREEN_LIGHT"
    MAINTENANCE_RELEASE = "MAINTENANCE_RELEASE"
    EMERGENCY = "EMERGENCY"
    STANDARD = "STANDARD"
    DRIVER_APPROVAL = "DRIVER_APPROVAL"
    DRIVER_ASSIGNMENT = "DRIVER_ASSIGNMENT"
    MISSION_RECONCILE = "MISSION_RECONCILE"


TRANSITION_CLASS_ROLES: dict[TransitionClass, set[Role]] = {
    TransitionClass.GREEN_LIGHT: {Role.OPS_MANAGER},
    TransitionClass.MAINTENANCE_RELEASE: {Role.OPS_MANAGER, Role.DISPATCHER, Role.MAINTENANCE},
    TransitionClass.EMERGENCY: {Role.OPS_MANAGER, Role.DISPATCHER, Role.MAINTENANCE, Role.DRIVER},
    TransitionClass.STANDARD: {Role.OPS_MANAGER, Role.DISPATCHER, Role.DRIVER},
    TransitionClass.DRIVER_APPROVAL: {Role.OPS_MANAGER, Role.DISPATCHER},
    TransitionClass.DRIVER_ASSIGNMENT: {Role.OPS_MANAGER, Role.DISPATCHER},
    TransitionClass.MISSION_RECONCILE: {Role.OPS_MANAGER, Role.FINANCE_AUDIT},
}


def permissions_for_role(role: str) -> list[str]:
    try:
        return list(ROLE_PERMISSIONS[Role(role)])
    except ValueError:
        return []


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions")
    if not isinstance(permissions, list):
        permissions = permissions_for_role(str(claims.get("role", "")))
    return permission in permissions or PERM_WILDCARD in permissions


def classify_transition(
    config: TenantWorkflowConfig,
    current_state: str,
    requested_state: str,
) -> TransitionClass:
    current = normalize_state(current_state)
    requested = normalize_state(requested_state)
    if config.is_green_light(current, requested):
        return TransitionClass.GREEN_LIGHT
    if config.maintenance_state is not None and current == config.maintenance_state:
        return TransitionClass.MAINTENANCE_RELEASE
    if requested in config.emergency_states:
        return TransitionClass.EMERGENCY
    return TransitionClass.STANDARD


def authorize(actor_role: str, transition_class: TransitionClass) -> bool:
    try:
        role = Role(actor_role)
    except ValueError:
        return False
    return role in TRANSITION_CLASS_ROLES.get(transition_class, set())
