from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from app.domain.workflow import TenantWorkflowConfig, normalize_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: str | None = None


def validate_transition(
    config: TenantWorkflowConfig,
    current_state: str,
    requested_state: str,
) -> TransitionDecision:
    """Decide whether a truck may move from ``current_state`` to ``requested_state``.

    A state without configured successors accepts any move. That mirrors the
    lenient behavior trucks have always had and is logged so misconfigured
    tenants show up.
    """
    successors = config.successors(current_state)
    if not successors:
        logger.warning(
            "no transitions configured for state %s, allowing move to %s",
            normalize_state(current_state),
            normalize_state(requested_state),
        )
        return TransitionDecision(allowed=True)
    if normalize_state(requested_state) in successors:
        return TransitionDecision(allowed=True)
    return TransitionDecision(
        allowed=False,
        reason=f"Invalid transition from {current_state} to {requested_state}",
    )


class MissionStatus(StrEnum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    RECONCILED = "RECONCILED"
    CANCELLED = "CANCELLED"


MISSION_ALLOWED_TRANSITIONS: dict[MissionStatus, set[MissionStatus]] = {
    MissionStatus.CREATED: {MissionStatus.ACTIVE, MissionStatus.CANCELLED},
    MissionStatus.ACTIVE: {MissionStatus.COMPLETED, MissionStatus.CANCELLED},
    MissionStatus.COMPLETED: {MissionStatus.RECONCILED},
    MissionStatus.RECONCILED: set(),
    MissionStatus.CANCELLED: set(),
}


def can_mission_transition(source: MissionStatus, target: MissionStatus) -> bool:
    return target in MISSION_ALLOWED_TRANSITIONS.get(source, set())


class MissionDriverStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


MISSION_DRIVER_ALLOWED_TRANSITIONS: dict[MissionDriverStatus, set[MissionDriverStatus]] = {
    MissionDriverStatus.PENDING: {MissionDriverStatus.APPROVED, MissionDriverStatus.DENIED},
    MissionDriverStatus.APPROVED: {MissionDriverStatus.PENDING, MissionDriverStatus.DENIED},
    MissionDriverStatus.DENIED: {MissionDriverStatus.PENDING, MissionDriverStatus.APPROVED},
}


def can_mission_driver_transition(source: MissionDriverStatus, target: MissionDriverStatus) -> bool:
    return target in MISSION_DRIVER_ALLOWED_TRANSITIONS.get(source, set())
