from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from app.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)

ERROR_STATUS: list[tuple[type[WorkflowError], int, str]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN, "permission_denied"),
    (InvalidTransitionError, 422, "invalid_transition"),
    (ConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
]


def handle_workflow_error(exc: WorkflowError) -> NoReturn:
    for error_type, status_code, kind in ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(
                status_code=status_code,
                detail={"error": kind, "message": str(exc)},
            ) from exc
    raise exc
