"""
Compliance Desk
Task Provisioner.

Turns active maker pool entries into TaskInstances, one per recurrence
period. Provisioning is idempotent per (maker, compliance, period):

  1. an open task for the pair is returned as-is
  2. a task already created for the computed period is returned as-is
  3. otherwise a draft task is inserted; if a concurrent insert wins the
     unique constraint, the winner is re-read and returned

Due date:
  - the definition's explicit ``next_due`` when it is today or later
  - else the end of the current period for the frequency
  - else (one-time / unknown frequency) today + DEFAULT_DUE_DAYS
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from compliance_desk.core.exceptions import Conflict, ValidationFailed
from compliance_desk.models import db
from compliance_desk.models.audit import write_audit
from compliance_desk.models.compliance import AssignmentPoolEntry, ComplianceDefinition
from compliance_desk.models.directory import Employee, Role
from compliance_desk.models.notification import Notification
from compliance_desk.models.task import OPEN_STATUSES, TaskInstance
from compliance_desk.services import change_feed, directory_service, pool_service
from compliance_desk.services.notification import NotificationService
from compliance_desk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


# ── Recurrence ────────────────────────────────────────────────────────────────


def period_end(frequency: str, today: date) -> date | None:
    """Last day of the period containing ``today``; None for one-time."""
    if frequency == "daily":
        return today
    if frequency == "weekly":
        return today + timedelta(days=6 - today.weekday())
    if frequency == "monthly":
        return date(today.year, today.month, calendar.monthrange(today.year, today.month)[1])
    if frequency == "quarterly":
        last_month = ((today.month - 1) // 3 + 1) * 3
        return date(today.year, last_month, calendar.monthrange(today.year, last_month)[1])
    if frequency == "half_yearly":
        return date(today.year, 6, 30) if today.month <= 6 else date(today.year, 12, 31)
    if frequency == "annually":
        return date(today.year, 12, 31)
    return None


def period_key(frequency: str, due: date) -> str:
    """Identify the recurrence period a due date falls in."""
    if frequency == "daily":
        return due.isoformat()
    if frequency == "weekly":
        iso = due.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if frequency == "monthly":
        return f"{due.year}-{due.month:02d}"
    if frequency == "quarterly":
        return f"{due.year}-Q{(due.month - 1) // 3 + 1}"
    if frequency == "half_yearly":
        return f"{due.year}-H{1 if due.month <= 6 else 2}"
    if frequency == "annually":
        return str(due.year)
    return "once"


def derive_due_date(definition: ComplianceDefinition, today: date, default_days: int = 7) -> date:
    if definition.next_due and definition.next_due >= today:
        return definition.next_due
    end = period_end(definition.frequency, today)
    if end is not None:
        return end
    return today + timedelta(days=default_days)


# ── Lookups ───────────────────────────────────────────────────────────────────


def find_open_task(compliance_id: str, maker_id: str | None = None) -> TaskInstance | None:
    stmt = select(TaskInstance).where(
        TaskInstance.compliance_id == compliance_id,
        TaskInstance.status.in_(OPEN_STATUSES),
    )
    if maker_id:
        stmt = stmt.where(TaskInstance.assigned_to == maker_id)
    return db.session.execute(stmt.order_by(TaskInstance.due_date)).scalars().first()


def find_period_task(compliance_id: str, maker_id: str, period: str) -> TaskInstance | None:
    return db.session.execute(
        select(TaskInstance).where(
            TaskInstance.compliance_id == compliance_id,
            TaskInstance.assigned_to == maker_id,
            TaskInstance.period == period,
        )
    ).scalar_one_or_none()


def resolve_checker(definition: ComplianceDefinition, maker_id: str) -> Employee | None:
    """Pooled checker first, else any active checker of the department. Never the maker."""
    checker = pool_service.designated_checker(definition.id, exclude_id=maker_id)
    if checker is not None:
        return checker
    if not definition.department_code:
        return None
    candidates = directory_service.active_checkers(definition.department_code, exclude_id=maker_id)
    return candidates[0] if candidates else None


# ── Provisioning ──────────────────────────────────────────────────────────────


def _ineligibility(entry: AssignmentPoolEntry) -> str | None:
    if entry.status != "active":
        return "pool entry is inactive"
    employee = entry.employee
    if employee is None or not employee.is_active:
        return "employee is inactive"
    if employee.role != Role.MAKER:
        return "employee is not a maker"
    if entry.compliance is None or entry.compliance.status != "active":
        return "compliance is inactive"
    return None


def stage_task(
    definition: ComplianceDefinition,
    maker: Employee,
    today: date,
    *,
    checker_id: str | None = None,
    actor_id: str | None = None,
) -> tuple[TaskInstance, bool]:
    """Find or stage (flush only) the task for this period. Caller commits.

    Returns (task, created).
    """
    existing = find_open_task(definition.id, maker.id)
    if existing is not None:
        return existing, False

    due = derive_due_date(definition, today, current_app.config.get("DEFAULT_DUE_DAYS", 7))
    period = period_key(definition.frequency, due)
    existing = find_period_task(definition.id, maker.id, period)
    if existing is not None:
        return existing, False

    if checker_id is None:
        checker = resolve_checker(definition, maker.id)
        checker_id = checker.id if checker else None
    if checker_id == maker.id:
        raise ValidationFailed("Checker cannot be the maker", details={"checker_id": "same_as_maker"})

    task = TaskInstance(
        compliance_id=definition.id,
        assigned_to=maker.id,
        checker_id=checker_id,
        period=period,
        due_date=due,
        status="draft",
        escalation_level=0,
    )
    db.session.add(task)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        winner = find_period_task(definition.id, maker.id, period)
        if winner is None:
            raise Conflict("TaskInstance", "period", period) from exc
        return winner, False
    write_audit(
        entity_type="task", entity_id=task.id, action="task.provision",
        actor=actor_id or "system",
        diff={"period": period, "due_date": due, "assigned_to": maker.id, "checker_id": checker_id},
    )
    NotificationService.emit(
        type="assignment",
        priority="medium",
        recipient=maker.id,
        title=f"New compliance task: {definition.name}",
        message=f"{definition.compliance_code} for {period} is due on {due.isoformat()}.",
        task_id=task.id,
    )
    return task, True


def commit_staged(task: TaskInstance, definition_id: str, maker_id: str) -> TaskInstance:
    """Commit a staged task; on a lost insert race return the winner."""
    period = task.period
    notifications = _pending_notifications(task.id)
    try:
        commit_or_raise()
    except IntegrityError as exc:
        winner = find_period_task(definition_id, maker_id, period)
        if winner is None:
            raise Conflict("TaskInstance", "period", period) from exc
        logger.info("Provisioning race lost compliance=%s maker=%s period=%s; using existing task",
                    definition_id, maker_id, period)
        return winner
    change_feed.publish("compliance_assignments", "INSERT", task.to_dict())
    NotificationService.deliver(notifications)
    return task


def _pending_notifications(task_id: str):
    return Notification.query.filter_by(task_id=task_id).all()


def provision_for_entry(entry_id: str, today: date | None = None, actor_id: str | None = None) -> tuple[TaskInstance, bool]:
    """Provision the current-period task for one pool entry.

    Raises ValidationFailed when the entry is not an active maker binding
    on an active compliance.
    """
    entry = pool_service.get_entry(entry_id)
    reason = _ineligibility(entry)
    if reason:
        raise ValidationFailed(f"Cannot provision: {reason}", details={"entry_id": reason})
    today = today or date.today()
    task, created = stage_task(entry.compliance, entry.employee, today, actor_id=actor_id)
    if not created:
        return task, False
    committed = commit_staged(task, entry.compliance_id, entry.employee_id)
    return committed, committed is task


def provision_all(today: date | None = None) -> dict:
    """Walk every active pool entry; one failure does not stop the run."""
    today = today or date.today()
    summary = {"entries": 0, "created": 0, "existing": 0, "skipped": 0, "failed": []}
    entry_ids = db.session.execute(
        select(AssignmentPoolEntry.id).where(AssignmentPoolEntry.status == "active")
    ).scalars().all()
    for entry_id in entry_ids:
        summary["entries"] += 1
        entry = db.session.get(AssignmentPoolEntry, entry_id)
        if entry is None or _ineligibility(entry):
            summary["skipped"] += 1
            continue
        try:
            _task, created = provision_for_entry(entry_id, today=today)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Provisioning failed for pool entry %s", entry_id)
            summary["failed"].append({"entry_id": entry_id, "error": str(exc)})
            continue
        summary["created" if created else "existing"] += 1
    logger.info("Provisioning run: %d entries, %d created, %d existing, %d skipped, %d failed",
                summary["entries"], summary["created"], summary["existing"],
                summary["skipped"], len(summary["failed"]))
    return summary
