"""
Compliance Desk exception hierarchy.

Services raise these types and nothing else for business failures.
Blueprints register one handler per type (see ``utils.errors``) so the
HTTP mapping is identical everywhere:

    ValidationFailed     → 422
    PreconditionFailed   → 409
    Forbidden            → 403   (a PreconditionFailed on the actor)
    NotFound             → 404
    Conflict             → 409
    UpstreamUnavailable  → 503

Usage:
    from compliance_desk.core.exceptions import NotFound, ValidationFailed

    raise NotFound("TaskInstance", task_id)
    raise ValidationFailed("Remarks are required", details={"remarks": "required"})
"""


class ComplianceDeskError(Exception):
    """Base class; carries a structured ``details`` dict for API responses."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ValidationFailed(ComplianceDeskError):
    """Input was well-formed but violates a business rule.

    Missing remarks, missing maker, a checker that is also the maker,
    an employee outside the compliance's department.
    """


class PreconditionFailed(ComplianceDeskError):
    """The task is not in a state that allows the requested action.

    Args:
        task_id: Task the action was attempted on.
        action: Workflow action name (submit, approve, ...).
        current: Status observed at guard time, if known.
        actor: Employee id of the caller.
        reason: Optional free-text explanation.
    """

    def __init__(
        self,
        task_id: str | None,
        action: str,
        current: str | None = None,
        actor: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.task_id = task_id
        self.action = action
        self.current_status = current
        self.actor = actor
        self.reason = reason
        msg = f"Cannot '{action}' task {task_id}"
        if current is not None:
            msg += f" (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={
            "task_id": task_id,
            "action": action,
            "current_status": current,
            "actor": actor,
        })


class Forbidden(PreconditionFailed):
    """The caller is not the party allowed to perform this edge."""


class NotFound(ComplianceDeskError):
    """A task, definition, employee or department does not exist."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, details={"resource": resource, "id": resource_id})


class Conflict(ComplianceDeskError):
    """The operation would duplicate a unique binding or an open task."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource} with {field}={value!r} already exists",
            details={"resource": resource, "field": field},
        )


class UpstreamUnavailable(ComplianceDeskError):
    """The record store or an external collaborator failed; safe to retry."""

    def __init__(self, collaborator: str, reason: str | None = None) -> None:
        self.collaborator = collaborator
        self.reason = reason
        msg = f"{collaborator} unavailable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"collaborator": collaborator})
