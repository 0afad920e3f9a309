"""
Compliance Desk
Escalation Evaluator.

Overdue open tasks are escalated by elapsed days past the due date:

    ≥ 5 days  → level 3  compliance-officer/executive tier
    ≥ 3 days  → level 2  department head
    ≥ 1 day   → level 1  maker's direct supervisor

The level only ever goes up while a task is open. Each raise appends one
EscalationRecord with the new level; evaluating a task whose level is
already current writes nothing, so sweeps are idempotent. The raise is a
conditional UPDATE (``escalation_level < new``) so two overlapping sweeps
cannot both append a record for the same level.

Terminal tasks are never evaluated; their open records are resolved by
the workflow when they close.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update

from compliance_desk.core.exceptions import Forbidden, NotFound, ValidationFailed
from compliance_desk.models import _utcnow, db
from compliance_desk.models.audit import write_audit
from compliance_desk.models.directory import Role
from compliance_desk.models.task import OPEN_STATUSES, EscalationRecord, TaskInstance
from compliance_desk.services import change_feed, directory_service
from compliance_desk.services.notification import NotificationService
from compliance_desk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

# (minimum days overdue, level), checked top-down
ESCALATION_THRESHOLDS = ((5, 3), (3, 2), (1, 1))

ESCALATION_TARGETS = {
    1: "maker's direct supervisor",
    2: "department head",
    3: "compliance-officer/executive tier",
}

_LEVEL_PRIORITY = {1: "medium", 2: "high", 3: "urgent"}


def days_overdue(due_date: date, today: date) -> int:
    return max(0, (today - due_date).days)


def compute_level(overdue_days: int) -> int:
    for threshold, level in ESCALATION_THRESHOLDS:
        if overdue_days >= threshold:
            return level
    return 0


def escalation_reason(overdue_days: int) -> str:
    return f"{overdue_days} days overdue"


def resolve_recipients(task: TaskInstance, level: int):
    """Return (display name, [employees]) for the authority at ``level``.

    Falls back to active admins when the supervisor or department head
    cannot be resolved, so an escalation always reaches someone.
    """
    person = None
    if level == 1:
        person = directory_service.supervisor_of(task.maker)
    elif level == 2:
        person = directory_service.department_head(
            task.compliance.department_code if task.compliance else None
        )
    if person is not None:
        return person.name, [person]
    admins = directory_service.active_admins()
    if level == 3:
        return ", ".join(a.name for a in admins) or None, admins
    return None, admins


# ── Evaluation ────────────────────────────────────────────────────────────────


def _evaluate(task: TaskInstance, today: date) -> EscalationRecord | None:
    """Raise the task's level if due. Stages the record and commits."""
    if task.status not in OPEN_STATUSES:
        return None
    overdue = days_overdue(task.due_date, today)
    level = compute_level(overdue)
    if level <= (task.escalation_level or 0):
        return None

    previous = task.escalation_level or 0
    result = db.session.execute(
        update(TaskInstance)
        .where(
            TaskInstance.id == task.id,
            TaskInstance.escalation_level < level,
            TaskInstance.status.in_(OPEN_STATUSES),
        )
        .values(escalation_level=level, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Another sweep or a workflow transition got there first
        db.session.rollback()
        logger.info("Escalation of task %s to L%d skipped: concurrent change", task.id, level)
        return None

    name, recipients = resolve_recipients(task, level)
    record = EscalationRecord(
        task_id=task.id,
        escalation_level=level,
        escalated_to=ESCALATION_TARGETS[level],
        escalated_to_name=name,
        escalated_to_employee_id=recipients[0].id if len(recipients) == 1 else None,
        reason=escalation_reason(overdue),
        escalated_at=_utcnow(),
    )
    db.session.add(record)
    db.session.flush()
    write_audit(
        entity_type="task", entity_id=task.id, action="task.escalate",
        diff={"escalation_level": {"old": previous, "new": level}, "days_overdue": overdue},
    )

    compliance_name = task.compliance.name if task.compliance else task.compliance_id
    notifications = [
        NotificationService.emit(
            type="escalation",
            priority=_LEVEL_PRIORITY[level],
            recipient=person.id,
            title=f"Escalation L{level}: {compliance_name}",
            message=f"Task for {task.period} is {record.reason}; escalated to {ESCALATION_TARGETS[level]}.",
            task_id=task.id,
        )
        for person in recipients
    ]
    commit_or_raise()
    db.session.refresh(task)

    logger.info("Task %s escalated L%d → L%d (%s)", task.id, previous, level, record.reason,
                extra={"task_id": task.id})
    change_feed.publish("compliance_assignments", "UPDATE", task.to_dict())
    change_feed.publish("escalation_items", "INSERT", record.to_dict())
    NotificationService.deliver(notifications)
    return record


def evaluate_task(task_id: str, today: date | None = None) -> dict:
    """On-demand evaluation of one task."""
    task = db.session.get(TaskInstance, task_id) if task_id else None
    if task is None:
        raise NotFound("TaskInstance", task_id)
    today = today or date.today()
    record = _evaluate(task, today)
    return {
        "task_id": task_id,
        "escalation_level": task.escalation_level,
        "days_overdue": days_overdue(task.due_date, today),
        "raised": record is not None,
        "record": record.to_dict() if record else None,
    }


def sweep(today: date | None = None) -> dict:
    """Evaluate every open, past-due task. Failures are isolated per task."""
    today = today or date.today()
    task_ids = db.session.execute(
        select(TaskInstance.id).where(
            TaskInstance.status.in_(OPEN_STATUSES),
            TaskInstance.due_date < today,
        )
    ).scalars().all()

    summary = {"evaluated": 0, "raised": 0, "unchanged": 0,
               "by_level": {1: 0, 2: 0, 3: 0}, "failed": []}
    for task_id in task_ids:
        summary["evaluated"] += 1
        try:
            task = db.session.get(TaskInstance, task_id)
            record = _evaluate(task, today) if task is not None else None
        except Exception as exc:
            db.session.rollback()
            logger.exception("Escalation sweep failed for task %s", task_id)
            summary["failed"].append({"task_id": task_id, "error": str(exc)})
            continue
        if record is None:
            summary["unchanged"] += 1
        else:
            summary["raised"] += 1
            summary["by_level"][record.escalation_level] += 1

    logger.info("Escalation sweep %s: %d evaluated, %d raised, %d failed",
                today.isoformat(), summary["evaluated"], summary["raised"], len(summary["failed"]))
    return summary


# ── Records ───────────────────────────────────────────────────────────────────


def resolve_open_records(task_id: str) -> int:
    """Mark every unresolved record of a task resolved (flush only)."""
    result = db.session.execute(
        update(EscalationRecord)
        .where(EscalationRecord.task_id == task_id, EscalationRecord.resolved.is_(False))
        .values(resolved=True, resolved_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def list_records(task_id=None, resolved=None, level=None, limit=200) -> list[EscalationRecord]:
    stmt = select(EscalationRecord)
    if task_id:
        stmt = stmt.where(EscalationRecord.task_id == task_id)
    if resolved is not None:
        stmt = stmt.where(EscalationRecord.resolved.is_(bool(resolved)))
    if level is not None:
        stmt = stmt.where(EscalationRecord.escalation_level == int(level))
    stmt = stmt.order_by(EscalationRecord.escalated_at.desc()).limit(limit)
    return db.session.execute(stmt).scalars().all()


def resolve_record(record_id: str, actor_id: str) -> EscalationRecord:
    """Admin closes an escalation record. The task's level is not lowered."""
    record = db.session.get(EscalationRecord, record_id) if record_id else None
    if record is None:
        raise NotFound("EscalationRecord", record_id)
    actor = directory_service.find_employee(actor_id)
    if actor is None or actor.role != Role.ADMIN:
        raise Forbidden(record.task_id, "resolve_escalation", actor=actor_id,
                        reason="only administrators can resolve escalations")
    if record.resolved:
        raise ValidationFailed("Escalation record is already resolved",
                               details={"record_id": record_id})
    record.resolved = True
    record.resolved_at = _utcnow()
    write_audit(
        entity_type="escalation", entity_id=record.id, action="escalation.resolve",
        actor=actor_id, diff={"task_id": record.task_id, "level": record.escalation_level},
    )
    commit_or_raise()
    change_feed.publish("escalation_items", "UPDATE", record.to_dict())
    return record
