"""
Compliance Desk
Workflow State Machine — maker/checker task lifecycle.

Manages TaskInstance status transitions with:
  - Transition table (TASK_TRANSITIONS in models.task)
  - Guards in fixed order: task exists → status matches → caller owns
    the edge → input valid. A failing guard mutates nothing.
  - Optimistic commit: ``UPDATE ... WHERE id = :id AND status = :expected``.
    Zero rows means another writer moved the task first; the caller gets
    PreconditionFailed and the task keeps the other writer's result.
  - Side effects: timestamps, remarks, escalation reset, audit row,
    notification intents, change-feed event.

Submit with evidence: guards run first, then the document is stored, and
only a successful upload lets the status write happen. A failed upload
leaves the task in draft.

Usage:
    from compliance_desk.services import workflow_service

    task = workflow_service.submit_task(task_id, actor_id=maker.id, remarks="done")
    task = workflow_service.approve_task(task_id, actor_id=checker.id)
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from compliance_desk.core.exceptions import Forbidden, NotFound, PreconditionFailed, ValidationFailed
from compliance_desk.integrations.document_store import DocumentUpload, store_document
from compliance_desk.models import _utcnow, db
from compliance_desk.models.audit import AuditLog, write_audit
from compliance_desk.models.directory import Employee, Role
from compliance_desk.models.task import TASK_TRANSITIONS, TERMINAL_STATUSES, EscalationRecord, TaskInstance
from compliance_desk.services import change_feed, directory_service, escalation_service
from compliance_desk.services.notification import NotificationService
from compliance_desk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

DEFAULT_APPROVE_REMARKS = "Approved by checker"
DEFAULT_REJECT_REMARKS = "Rejected by checker - requires revision"

# actions whose remarks are mandatory
_REMARKS_REQUIRED = frozenset({"submit", "send_back"})
# actions that put an open task back to the start: escalation starts over
_RESETS_ESCALATION = frozenset({"send_back", "reopen"})


def get_task(task_id: str) -> TaskInstance:
    task = db.session.get(TaskInstance, task_id) if task_id else None
    if task is None:
        raise NotFound("TaskInstance", task_id)
    return task


def can_perform(task: TaskInstance, action: str, actor: Employee | None) -> bool:
    """True when ``actor`` owns the edge for ``action`` on ``task`` (status not checked)."""
    rule = TASK_TRANSITIONS.get(action)
    if rule is None or actor is None or not actor.is_active:
        return False
    if actor.role == Role.ADMIN:
        return True
    if rule["actor"] == "maker":
        return task.assigned_to == actor.id
    if rule["actor"] == "checker":
        return task.checker_id is not None and task.checker_id == actor.id
    return False


def available_actions(task: TaskInstance, actor: Employee | None) -> list[str]:
    return [
        action for action, rule in TASK_TRANSITIONS.items()
        if task.status in rule["from"] and can_perform(task, action, actor)
    ]


def _new_values(task: TaskInstance, action: str, remarks: str | None, document_url: str | None) -> dict:
    now = _utcnow()
    values = {"status": TASK_TRANSITIONS[action]["to"], "updated_at": now}
    if action == "submit":
        values.update(submitted_at=now, maker_remarks=remarks, checker_remarks=None)
        if document_url:
            values["document_url"] = document_url
    elif action == "approve":
        values.update(completed_at=now, checker_remarks=remarks or DEFAULT_APPROVE_REMARKS)
    elif action == "reject":
        values.update(completed_at=now, checker_remarks=remarks or DEFAULT_REJECT_REMARKS)
    elif action == "send_back":
        values.update(checker_remarks=remarks, submitted_at=None)
    elif action == "reopen":
        values.update(submitted_at=None, completed_at=None)
    if action in _RESETS_ESCALATION:
        values["escalation_level"] = 0
    return values


def _stage_notifications(task: TaskInstance, action: str, actor: Employee) -> list:
    name = task.compliance.name if task.compliance else task.compliance_id
    if action == "submit":
        recipients = [task.checker_id] if task.checker_id else [a.id for a in directory_service.active_admins()]
        return [
            NotificationService.emit(
                type="approval", priority="medium", recipient=rid,
                title=f"Review required: {name}",
                message=f"{actor.name} submitted the {task.period} task for review.",
                task_id=task.id,
            )
            for rid in recipients
        ]
    template = {
        "approve": ("approval", "low", f"Approved: {name}"),
        "reject": ("alert", "high", f"Rejected: {name}"),
        "send_back": ("alert", "high", f"Sent back for rework: {name}"),
    }.get(action)
    if template is None:
        return []
    ntype, priority, title = template
    return [NotificationService.emit(
        type=ntype, priority=priority, recipient=task.assigned_to, title=title,
        message=task.checker_remarks or "", task_id=task.id,
    )]


def transition_task(
    task_id: str,
    action: str,
    actor_id: str,
    *,
    remarks: str | None = None,
    document: DocumentUpload | None = None,
    store=None,
) -> TaskInstance:
    """
    Execute one lifecycle action.

    Args:
        task_id: TaskInstance id.
        action: submit | approve | reject | send_back | reopen.
        actor_id: Employee performing the action.
        remarks: Maker remarks (submit) or checker remarks (others).
        document: Optional evidence file, submit only.
        store: Document store override (defaults to the app's configured one).

    Returns:
        The refreshed TaskInstance.

    Raises:
        NotFound, PreconditionFailed, Forbidden, ValidationFailed,
        UpstreamUnavailable.
    """
    rule = TASK_TRANSITIONS.get(action)
    if rule is None:
        raise ValidationFailed(f"Unknown action: {action}",
                               details={"action": sorted(TASK_TRANSITIONS)})

    task = get_task(task_id)
    current = task.status
    if current not in rule["from"]:
        raise PreconditionFailed(task.id, action, current=current, actor=actor_id,
                                 reason=f"allowed from {', '.join(sorted(rule['from']))}")

    actor = directory_service.find_employee(actor_id)
    if not can_perform(task, action, actor):
        raise Forbidden(task.id, action, current=current, actor=actor_id,
                        reason=f"only the assigned {rule['actor']} or an administrator may {action}")

    remarks = (remarks or "").strip() or None
    if action in _REMARKS_REQUIRED and not remarks:
        raise ValidationFailed("Remarks are required", details={"remarks": "required"})
    if document is not None and action != "submit":
        raise ValidationFailed("Documents can only be attached on submit", details={"document": action})

    document_url = store_document(document, store=store) if document is not None else None

    values = _new_values(task, action, remarks, document_url)
    result = db.session.execute(
        update(TaskInstance)
        .where(TaskInstance.id == task.id, TaskInstance.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        latest = db.session.get(TaskInstance, task.id)
        logger.info("Transition %s on task %s lost a concurrent update", action, task.id,
                    extra={"task_id": task.id})
        raise PreconditionFailed(task.id, action,
                                 current=latest.status if latest else None,
                                 actor=actor_id, reason="task was modified concurrently")

    resolved = 0
    if values["status"] in TERMINAL_STATUSES or action in _RESETS_ESCALATION:
        resolved = escalation_service.resolve_open_records(task.id)

    db.session.refresh(task)
    write_audit(
        entity_type="task", entity_id=task.id, action=f"task.{action}", actor=actor.id,
        diff={
            "status": {"old": current, "new": task.status},
            "remarks": remarks,
            "document_url": document_url,
            "escalations_resolved": resolved,
        },
    )
    notifications = _stage_notifications(task, action, actor)
    commit_or_raise()

    logger.info("Task %s: %s → %s by %s", task.id, current, task.status, actor.id,
                extra={"task_id": task.id})
    change_feed.publish("compliance_assignments", "UPDATE", task.to_dict())
    NotificationService.deliver(notifications)
    return task


def submit_task(task_id, actor_id, remarks, document=None, store=None):
    return transition_task(task_id, "submit", actor_id, remarks=remarks, document=document, store=store)


def approve_task(task_id, actor_id, remarks=None):
    return transition_task(task_id, "approve", actor_id, remarks=remarks)


def reject_task(task_id, actor_id, remarks=None):
    return transition_task(task_id, "reject", actor_id, remarks=remarks)


def send_back_task(task_id, actor_id, remarks):
    return transition_task(task_id, "send_back", actor_id, remarks=remarks)


def reopen_task(task_id, actor_id):
    return transition_task(task_id, "reopen", actor_id)


def task_history(task_id: str) -> dict:
    """Audit trail and escalation records for one task, oldest first."""
    get_task(task_id)
    audit = db.session.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == "task", AuditLog.entity_id == task_id)
        .order_by(AuditLog.timestamp, AuditLog.id)
    ).scalars().all()
    escalations = db.session.execute(
        select(EscalationRecord)
        .where(EscalationRecord.task_id == task_id)
        .order_by(EscalationRecord.escalated_at)
    ).scalars().all()
    return {
        "task_id": task_id,
        "events": [a.to_dict() for a in audit],
        "escalations": [e.to_dict() for e in escalations],
    }
