"""
Compliance Desk
Smart Assignment Advisor.

Suggests makers and checkers for an unassigned compliance from the
employees of its own department, and lets an administrator confirm the
pick. Never assigns across departments: a department with no active maker
is a ValidationFailed, not a fallback to someone else.
"""

import logging
from datetime import date

from compliance_desk.core.exceptions import Conflict, Forbidden, ValidationFailed
from compliance_desk.models import db
from compliance_desk.models.directory import Role
from compliance_desk.services import compliance_service, directory_service, pool_service, provisioning_service

logger = logging.getLogger(__name__)


def suggest_candidates(compliance_id: str) -> dict:
    """Active makers and checkers of the compliance's department (disjoint lists)."""
    definition = compliance_service.get_definition(compliance_id)
    if not definition.department_code:
        raise ValidationFailed(
            f"Compliance {definition.compliance_code} has no department",
            details={"department_code": "missing"},
        )
    makers = directory_service.active_in_department(definition.department_code, Role.MAKER)
    checkers = directory_service.active_in_department(definition.department_code, Role.CHECKER)
    return {
        "compliance_id": definition.id,
        "department_code": definition.department_code,
        "makers": makers,
        "checkers": checkers,
    }


def assign(compliance_id: str, maker_id: str, checker_id: str | None, actor_id: str,
           today: date | None = None):
    """Admin assignment: pool the picks and provision the task in one commit.

    Returns the created TaskInstance.
    """
    actor = directory_service.find_employee(actor_id)
    if actor is None or not actor.is_active or actor.role != Role.ADMIN:
        raise Forbidden(None, "assign", actor=actor_id,
                        reason="only administrators can assign compliances")

    candidates = suggest_candidates(compliance_id)
    department = candidates["department_code"]
    if not candidates["makers"]:
        raise ValidationFailed(
            f"No active makers in department {department}",
            details={"department_code": department, "makers": 0},
        )
    if not maker_id:
        raise ValidationFailed("maker_id is required", details={"maker_id": "required"})

    maker = next((m for m in candidates["makers"] if m.id == maker_id), None)
    if maker is None:
        raise ValidationFailed(
            f"Employee {maker_id} is not an active maker in department {department}",
            details={"maker_id": "not_a_candidate"},
        )
    checker = None
    if checker_id:
        if checker_id == maker_id:
            raise ValidationFailed("Checker cannot be the maker", details={"checker_id": "same_as_maker"})
        checker = next((c for c in candidates["checkers"] if c.id == checker_id), None)
        if checker is None:
            raise ValidationFailed(
                f"Employee {checker_id} is not an active checker in department {department}",
                details={"checker_id": "not_a_candidate"},
            )

    if provisioning_service.find_open_task(compliance_id) is not None:
        raise Conflict("TaskInstance", "compliance_id", compliance_id)

    definition = compliance_service.get_definition(compliance_id)
    for person in filter(None, (maker, checker)):
        entry = pool_service.find_entry(compliance_id, person.id)
        if entry is None:
            pool_service.bind(definition, person, actor_id)
        elif entry.status != "active":
            entry.status = "active"

    if checker is None:
        checker = provisioning_service.resolve_checker(definition, maker.id)

    task, created = provisioning_service.stage_task(
        definition, maker, today or date.today(),
        checker_id=checker.id if checker else None, actor_id=actor_id,
    )
    if not created:
        # The period's task already exists and is closed; nothing to assign
        period = task.period
        db.session.rollback()
        raise Conflict("TaskInstance", "period", period)
    task = provisioning_service.commit_staged(task, definition.id, maker.id)
    logger.info("Compliance %s assigned to maker=%s checker=%s by %s",
                definition.compliance_code, maker.id, task.checker_id, actor_id)
    return task
