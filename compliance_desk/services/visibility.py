"""
Compliance Desk
Visibility Router — which tasks a viewer may see.

Rules (one per role, no fallthrough):
    admin    every task, plus the unassigned-definitions query
    maker    tasks assigned to them, any status
    checker  tasks where they are the checker and status is
             submitted / approved / rejected (drafts stay private to the maker)
    other    nothing

``is_visible`` is the pure predicate; ``visibility_clause`` is the same rule
as a SQL filter. Both must agree, and the tests check that they do.

The worklist helpers (tabs, filters, priority) sit on top of the router and
never widen what a viewer can see.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import and_, exists, false, select, true

from compliance_desk.core.exceptions import Forbidden
from compliance_desk.models import db
from compliance_desk.models.compliance import ComplianceDefinition, normalize_frequency
from compliance_desk.models.directory import Employee, Role
from compliance_desk.models.task import OPEN_STATUSES, TaskInstance

CHECKER_VISIBLE_STATUSES = frozenset({"submitted", "approved", "rejected"})
UPCOMING_DAYS = 3
WORKLIST_TABS = ("assigned", "completed", "overdue", "sendback", "unassigned")


@dataclass(frozen=True)
class Viewer:
    """Identity and role of whoever is reading."""
    id: str
    role: Role

    @classmethod
    def of(cls, employee: Employee) -> "Viewer":
        role = employee.role if employee.is_active else Role.OTHER
        return cls(id=employee.id, role=role)


def is_visible(task: TaskInstance, viewer: Viewer) -> bool:
    if viewer.role == Role.ADMIN:
        return True
    if viewer.role == Role.MAKER:
        return task.assigned_to == viewer.id
    if viewer.role == Role.CHECKER:
        return task.checker_id == viewer.id and task.status in CHECKER_VISIBLE_STATUSES
    if viewer.role == Role.OTHER:
        return False
    raise ValueError(f"Unhandled role: {viewer.role!r}")


def visibility_clause(viewer: Viewer):
    if viewer.role == Role.ADMIN:
        return true()
    if viewer.role == Role.MAKER:
        return TaskInstance.assigned_to == viewer.id
    if viewer.role == Role.CHECKER:
        return and_(
            TaskInstance.checker_id == viewer.id,
            TaskInstance.status.in_(CHECKER_VISIBLE_STATUSES),
        )
    if viewer.role == Role.OTHER:
        return false()
    raise ValueError(f"Unhandled role: {viewer.role!r}")


def visible_tasks(viewer: Viewer) -> list[TaskInstance]:
    stmt = (
        select(TaskInstance)
        .where(visibility_clause(viewer))
        .order_by(TaskInstance.due_date, TaskInstance.created_at)
    )
    return db.session.execute(stmt).unique().scalars().all()


def unassigned_definitions() -> list[ComplianceDefinition]:
    """Active compliances with no open task."""
    open_task = exists().where(
        TaskInstance.compliance_id == ComplianceDefinition.id,
        TaskInstance.status.in_(OPEN_STATUSES),
    )
    stmt = (
        select(ComplianceDefinition)
        .where(ComplianceDefinition.status == "active", ~open_task)
        .order_by(ComplianceDefinition.compliance_code)
    )
    return db.session.execute(stmt).scalars().all()


def unassigned_for(viewer: Viewer) -> list[ComplianceDefinition]:
    if viewer.role != Role.ADMIN:
        raise Forbidden(None, "view_unassigned", actor=viewer.id,
                        reason="only administrators can list unassigned compliances")
    return unassigned_definitions()


# ── Worklist ──────────────────────────────────────────────────────────────────


def task_priority(due_date: date, today: date) -> str:
    diff = (due_date - today).days
    if diff < 0:
        return "critical"
    if diff <= 1:
        return "high"
    if diff <= 3:
        return "medium"
    return "low"


def is_overdue(task: TaskInstance, today: date) -> bool:
    return task.due_date < today and task.status != "approved"


def is_sendback(task: TaskInstance) -> bool:
    return task.status == "rejected" or (task.status == "draft" and bool(task.checker_remarks))


def apply_filters(tasks, today: date, *, status=None, priority=None, frequency=None, due=None):
    """Filter-bar semantics. ``due`` is one of overdue | upcoming | all."""
    result = []
    freq = normalize_frequency(frequency) if frequency and frequency != "all" else None
    for task in tasks:
        if status and status != "all" and task.status != status:
            continue
        if priority and priority != "all" and task_priority(task.due_date, today) != priority:
            continue
        if freq and (task.compliance is None or task.compliance.frequency != freq):
            continue
        if due == "overdue" and not is_overdue(task, today):
            continue
        if due == "upcoming":
            days = (task.due_date - today).days
            if days < 0 or days > UPCOMING_DAYS:
                continue
        result.append(task)
    return result


def serialize_task(task: TaskInstance, today: date) -> dict:
    data = task.to_dict()
    data["priority"] = task_priority(task.due_date, today)
    data["overdue"] = is_overdue(task, today)
    return data


def build_worklist(viewer: Viewer, today: date | None = None, **filters) -> dict:
    """Group the viewer's visible tasks into worklist tabs."""
    today = today or date.today()
    tasks = apply_filters(visible_tasks(viewer), today, **filters)
    tabs = {
        "assigned": [t for t in tasks if t.status in OPEN_STATUSES],
        "completed": [t for t in tasks if t.status == "approved"],
        "overdue": [t for t in tasks if is_overdue(t, today)],
        "sendback": [t for t in tasks if is_sendback(t)],
    }
    worklist = {name: [serialize_task(t, today) for t in items] for name, items in tabs.items()}
    if viewer.role == Role.ADMIN:
        worklist["unassigned"] = [d.to_dict() for d in unassigned_definitions()]
    worklist["counts"] = {name: len(items) for name, items in worklist.items() if name in WORKLIST_TABS}
    return worklist
