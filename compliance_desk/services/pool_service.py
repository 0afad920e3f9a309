"""
Compliance Desk
Assignment Pool Manager.

Maintains which employees are eligible to work on which compliance.
Rules:
  - employee must be active and belong to the compliance's department
  - only makers and checkers can be pooled
  - one entry per (compliance, employee); a duplicate is a Conflict

Pool entries never create work on their own; see provisioning_service.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from compliance_desk.core.exceptions import Conflict, NotFound, ValidationFailed
from compliance_desk.models import _utcnow, db
from compliance_desk.models.audit import write_audit
from compliance_desk.models.compliance import POOL_STATUSES, AssignmentPoolEntry, ComplianceDefinition
from compliance_desk.models.directory import Employee, Role
from compliance_desk.services import change_feed
from compliance_desk.services.compliance_service import get_definition
from compliance_desk.services.directory_service import get_employee
from compliance_desk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

POOLABLE_ROLES = frozenset({Role.MAKER, Role.CHECKER})


def get_entry(entry_id: str) -> AssignmentPoolEntry:
    entry = db.session.get(AssignmentPoolEntry, entry_id) if entry_id else None
    if entry is None:
        raise NotFound("AssignmentPoolEntry", entry_id)
    return entry


def find_entry(compliance_id: str, employee_id: str) -> AssignmentPoolEntry | None:
    return db.session.execute(
        select(AssignmentPoolEntry).where(
            AssignmentPoolEntry.compliance_id == compliance_id,
            AssignmentPoolEntry.employee_id == employee_id,
        )
    ).scalar_one_or_none()


def list_pool(compliance_id: str, status: str | None = None) -> list[AssignmentPoolEntry]:
    get_definition(compliance_id)
    stmt = select(AssignmentPoolEntry).where(AssignmentPoolEntry.compliance_id == compliance_id)
    if status:
        stmt = stmt.where(AssignmentPoolEntry.status == status)
    return db.session.execute(stmt.order_by(AssignmentPoolEntry.assigned_at)).scalars().all()


def check_eligible(definition: ComplianceDefinition, employee: Employee) -> None:
    """Raise ValidationFailed unless ``employee`` may be pooled for ``definition``."""
    if not employee.is_active:
        raise ValidationFailed(f"Employee {employee.emp_id} is inactive",
                               details={"employee_id": "inactive"})
    if employee.role not in POOLABLE_ROLES:
        raise ValidationFailed(
            f"Employee {employee.emp_id} has role '{employee.role.value}'; only makers and checkers can be pooled",
            details={"employee_id": "role"},
        )
    if not definition.department_code or employee.department_code != definition.department_code:
        raise ValidationFailed(
            f"Employee {employee.emp_id} is not in department {definition.department_code}",
            details={"employee_id": "department"},
        )


def bind(definition: ComplianceDefinition, employee: Employee, actor_id: str | None) -> AssignmentPoolEntry:
    """Stage a new pool entry (flush only). Caller commits."""
    check_eligible(definition, employee)
    if find_entry(definition.id, employee.id) is not None:
        raise Conflict("AssignmentPoolEntry", "employee_id", employee.id)
    entry = AssignmentPoolEntry(
        compliance_id=definition.id,
        employee_id=employee.id,
        status="active",
        assigned_by=actor_id,
        assigned_at=_utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    write_audit(
        entity_type="pool_entry", entity_id=entry.id, action="pool.add",
        actor=actor_id or "system",
        diff={"compliance_id": definition.id, "employee_id": employee.id},
    )
    return entry


def add_to_pool(compliance_id: str, employee_id: str, actor_id: str | None = None) -> AssignmentPoolEntry:
    definition = get_definition(compliance_id)
    employee = get_employee(employee_id)
    entry = bind(definition, employee, actor_id)
    try:
        commit_or_raise()
    except IntegrityError as exc:
        # Concurrent add of the same pair lost the race on the unique constraint
        raise Conflict("AssignmentPoolEntry", "employee_id", employee_id) from exc
    logger.info("Pool entry added compliance=%s employee=%s", compliance_id, employee_id)
    change_feed.publish("compliance_user_assignments", "INSERT", entry.to_dict())
    return entry


def set_pool_status(entry_id: str, status: str, actor_id: str | None = None) -> AssignmentPoolEntry:
    if status not in POOL_STATUSES:
        raise ValidationFailed(f"Invalid status '{status}'", details={"status": sorted(POOL_STATUSES)})
    entry = get_entry(entry_id)
    old = entry.status
    if old == status:
        return entry
    if status == "active":
        check_eligible(entry.compliance, entry.employee)
    entry.status = status
    write_audit(
        entity_type="pool_entry", entity_id=entry.id, action="pool.set_status",
        actor=actor_id or "system", diff={"status": {"old": old, "new": status}},
    )
    commit_or_raise()
    change_feed.publish("compliance_user_assignments", "UPDATE", entry.to_dict())
    return entry


def remove_from_pool(entry_id: str, actor_id: str | None = None) -> None:
    """Delete a pool entry. Existing tasks for the employee are untouched."""
    entry = get_entry(entry_id)
    snapshot = entry.to_dict()
    db.session.delete(entry)
    write_audit(
        entity_type="pool_entry", entity_id=entry_id, action="pool.remove",
        actor=actor_id or "system", diff=snapshot,
    )
    commit_or_raise()
    logger.info("Pool entry removed id=%s", entry_id)
    change_feed.publish("compliance_user_assignments", "DELETE", snapshot)


def designated_checker(compliance_id: str, exclude_id: str | None = None) -> Employee | None:
    """First active checker pooled for this compliance, never ``exclude_id``."""
    entries = db.session.execute(
        select(AssignmentPoolEntry)
        .where(
            AssignmentPoolEntry.compliance_id == compliance_id,
            AssignmentPoolEntry.status == "active",
        )
        .order_by(AssignmentPoolEntry.assigned_at)
    ).scalars().all()
    for entry in entries:
        employee = entry.employee
        if employee is None or employee.id == exclude_id:
            continue
        if employee.is_active and employee.role == Role.CHECKER:
            return employee
    return None
