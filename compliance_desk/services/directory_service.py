"""
Compliance Desk
Directory Service — employees and departments.

Read side is what the rest of the engine depends on: role and department
lookups, active checkers per department, the department head and a maker's
supervisor (escalation targets). The write side is a thin master-data CRUD.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from compliance_desk.core.exceptions import Conflict, NotFound, ValidationFailed
from compliance_desk.models import db
from compliance_desk.models.directory import RECORD_STATUSES, Department, Employee, Role
from compliance_desk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_EMPLOYEE_FIELDS = (
    "emp_id", "name", "email", "department_code", "designation",
    "phone", "role_name", "supervisor_id", "status",
)


# ── Lookups ───────────────────────────────────────────────────────────────────


def get_employee(employee_id: str) -> Employee:
    employee = db.session.get(Employee, employee_id) if employee_id else None
    if employee is None:
        raise NotFound("Employee", employee_id)
    return employee


def find_employee(employee_id: str | None) -> Employee | None:
    """Like get_employee but returns None instead of raising."""
    if not employee_id:
        return None
    return db.session.get(Employee, employee_id)


def find_by_email(email: str) -> Employee | None:
    if not email:
        return None
    return db.session.execute(
        select(Employee).where(func.lower(Employee.email) == email.strip().lower())
    ).scalar_one_or_none()


def list_employees(department_code=None, role=None, status=None) -> list[Employee]:
    """Filter employees. ``role`` is matched case-insensitively."""
    stmt = select(Employee)
    if department_code:
        stmt = stmt.where(Employee.department_code == department_code)
    if status:
        stmt = stmt.where(Employee.status == status)
    employees = db.session.execute(stmt.order_by(Employee.name)).scalars().all()
    if role:
        wanted = Role.parse(role)
        employees = [e for e in employees if e.role == wanted]
    return employees


def active_in_department(department_code: str, role: Role) -> list[Employee]:
    return list_employees(department_code=department_code, role=role, status="active")


def active_checkers(department_code: str, exclude_id: str | None = None) -> list[Employee]:
    return [e for e in active_in_department(department_code, Role.CHECKER) if e.id != exclude_id]


def active_admins() -> list[Employee]:
    return list_employees(role=Role.ADMIN, status="active")


def get_department(code: str) -> Department:
    dept = db.session.execute(
        select(Department).where(Department.code == code)
    ).scalar_one_or_none()
    if dept is None:
        raise NotFound("Department", code)
    return dept


def department_head(department_code: str | None) -> Employee | None:
    """Resolve the head of a department to an active employee, if possible.

    ``head_employee_id`` wins; otherwise the free-text ``head`` name is
    matched against active employees of that department.
    """
    if not department_code:
        return None
    dept = db.session.execute(
        select(Department).where(Department.code == department_code)
    ).scalar_one_or_none()
    if dept is None:
        return None
    if dept.head_employee_id:
        head = db.session.get(Employee, dept.head_employee_id)
        if head is not None and head.is_active:
            return head
    if dept.head:
        return db.session.execute(
            select(Employee).where(
                Employee.department_code == department_code,
                Employee.name == dept.head,
                Employee.status == "active",
            )
        ).scalars().first()
    return None


def supervisor_of(employee: Employee | None) -> Employee | None:
    if employee is None or not employee.supervisor_id:
        return None
    supervisor = db.session.get(Employee, employee.supervisor_id)
    if supervisor is None or not supervisor.is_active:
        return None
    return supervisor


# ── Master data ───────────────────────────────────────────────────────────────


def list_departments(status=None) -> list[Department]:
    stmt = select(Department).order_by(Department.code)
    if status:
        stmt = stmt.where(Department.status == status)
    return db.session.execute(stmt).scalars().all()


def create_department(data: dict) -> Department:
    code = (data.get("code") or "").strip().upper()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationFailed("code and name are required",
                               details={"code": "required", "name": "required"})
    status = data.get("status") or "active"
    if status not in RECORD_STATUSES:
        raise ValidationFailed(f"Invalid status '{status}'", details={"status": sorted(RECORD_STATUSES)})
    dept = Department(
        code=code,
        name=name,
        head=data.get("head"),
        head_employee_id=data.get("head_employee_id"),
        status=status,
    )
    db.session.add(dept)
    try:
        commit_or_raise()
    except IntegrityError as exc:
        raise Conflict("Department", "code", code) from exc
    logger.info("Department created code=%s", code)
    return dept


def create_employee(data: dict) -> Employee:
    missing = {f: "required" for f in ("emp_id", "name", "email") if not (data.get(f) or "").strip()}
    if missing:
        raise ValidationFailed("emp_id, name and email are required", details=missing)
    _validate_employee_fields(data)
    employee = Employee(**{f: data[f] for f in _EMPLOYEE_FIELDS if f in data})
    employee.email = employee.email.strip().lower()
    db.session.add(employee)
    try:
        commit_or_raise()
    except IntegrityError as exc:
        raise Conflict("Employee", "emp_id/email", data.get("email")) from exc
    logger.info("Employee created emp_id=%s role=%s dept=%s",
                employee.emp_id, employee.role.value, employee.department_code)
    return employee


def update_employee(employee_id: str, data: dict) -> Employee:
    employee = get_employee(employee_id)
    _validate_employee_fields(data, employee_id=employee_id)
    for field in _EMPLOYEE_FIELDS:
        if field in data:
            setattr(employee, field, data[field])
    try:
        commit_or_raise()
    except IntegrityError as exc:
        raise Conflict("Employee", "emp_id/email", data.get("email")) from exc
    return employee


def _validate_employee_fields(data: dict, employee_id: str | None = None) -> None:
    status = data.get("status")
    if status is not None and status not in RECORD_STATUSES:
        raise ValidationFailed(f"Invalid status '{status}'", details={"status": sorted(RECORD_STATUSES)})
    supervisor_id = data.get("supervisor_id")
    if supervisor_id:
        if employee_id and supervisor_id == employee_id:
            raise ValidationFailed("An employee cannot supervise themselves",
                                   details={"supervisor_id": "self"})
        get_employee(supervisor_id)
