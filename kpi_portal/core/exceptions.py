"""
Portal exception hierarchy.

Commands whose intent cannot be applied raise one of these; fail-soft
repository updates and deletes of unknown ids never do. The HTTP mapping
lives in ``utils/errors.py``:

    NotFoundError          404
    ValidationError        422
    ConflictError          409  duplicate code / username
    StaleStateError        409  another writer advanced the document
    TransitionError        409  not a lifecycle edge
    PermissionDeniedError  403

Usage:
    from kpi_portal.core.exceptions import NotFoundError, TransitionError

    raise NotFoundError("Task", task_id)
    raise TransitionError(task.id, task.status, "completed", "task is completed")
"""


class PortalError(Exception):
    """Base class for every error the services raise on purpose."""


class NotFoundError(PortalError):
    """A command named an entity that is not in the aggregate."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        label = resource if resource_id is None else f"{resource} {resource_id!r}"
        super().__init__(f"{label} does not exist")


class ValidationError(PortalError):
    """
    Input that parses but breaks a rule (missing title, unknown department, ...).

    ``details`` maps field names to a short reason such as ``"required"``.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class ConflictError(PortalError):
    """A unique value (department code, username) is already taken."""

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} {field} {value!r} is already in use")


class StaleStateError(ConflictError):
    """
    The persisted document moved past the version a write was computed from.

    The write is rejected rather than merged; reload and retry.
    """

    def __init__(self, key: str, expected_version: int, actual_version: int) -> None:
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        PortalError.__init__(
            self,
            f"State {key!r} is at version {actual_version}, "
            f"write was based on version {expected_version}",
        )
        self.resource, self.field, self.value = "AppState", "version", actual_version


class TransitionError(PortalError):
    """*target* is not reachable from the task's current status."""

    def __init__(self, task_id: str, current: str, target: str, reason: str | None = None):
        self.task_id = task_id
        self.current_status = current
        self.target_status = target
        self.reason = reason
        message = f"Task {task_id} cannot go from {current} to {target}"
        super().__init__(f"{message}: {reason}" if reason else message)


class PermissionDeniedError(PortalError):
    """The actor's role does not allow the action (approve, reject, admin-only edits)."""

    def __init__(self, action: str, role: str | None) -> None:
        self.action = action
        self.role = role
        super().__init__(f"Role {role!r} may not {action}")
