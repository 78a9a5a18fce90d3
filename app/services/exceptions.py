"""
Workflow engine errors.

Every expected failure of a workflow operation is one of these; callers
branch on the type. Anything else (storage outages included) propagates
untouched.
"""


class WorkflowError(Exception):
    pass


class NotFoundError(WorkflowError):
    """The entity does not exist, or belongs to another tenant."""


class PermissionDeniedError(WorkflowError):
    """The actor may not perform this action, whatever the current state."""


class InvalidTransitionError(WorkflowError):
    """The move is illegal in the state graph, whoever asks."""


class ConflictError(WorkflowError):
    """The request collides with existing progress or a concurrent write."""


class ValidationError(WorkflowError):
    """The request itself is malformed."""
