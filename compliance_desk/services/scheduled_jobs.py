"""
Compliance Desk
Scheduled Jobs.

Jobs:
    - task_provisioning: creates the current-period task for every active maker pool entry
    - escalation_sweep: raises escalation levels of overdue open tasks
    - due_soon_reminder: reminds makers and checkers of open tasks due within DUE_SOON_DAYS
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from sqlalchemy import select

from compliance_desk.models import _utcnow, db
from compliance_desk.models.notification import Notification
from compliance_desk.models.task import TaskInstance
from compliance_desk.services import escalation_service, provisioning_service
from compliance_desk.services.notification import NotificationService
from compliance_desk.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("task_provisioning")
def run_task_provisioning(app) -> dict[str, Any]:
    """Provision current-period tasks for all active maker pool entries."""
    return provisioning_service.provision_all(date.today())


@register_job("escalation_sweep")
def run_escalation_sweep(app) -> dict[str, Any]:
    """Raise escalation levels for overdue open tasks."""
    summary = escalation_service.sweep(date.today())
    summary["by_level"] = {str(k): v for k, v in summary["by_level"].items()}
    return summary


@register_job("due_soon_reminder")
def run_due_soon_reminder(app, today: date | None = None) -> dict[str, Any]:
    """Remind the responsible party of open tasks due soon (once per task per day)."""
    today = today or date.today()
    horizon = today + timedelta(days=app.config.get("DUE_SOON_DAYS", 3))
    results = {"tasks_due_soon": 0, "notifications_created": 0}

    tasks = db.session.execute(
        select(TaskInstance).where(
            TaskInstance.status.in_(("draft", "submitted")),
            TaskInstance.due_date >= today,
            TaskInstance.due_date <= horizon,
        )
    ).unique().scalars().all()

    created = []
    for task in tasks:
        results["tasks_due_soon"] += 1
        # draft waits on the maker, submitted waits on the checker
        recipient = task.assigned_to if task.status == "draft" else task.checker_id
        if not recipient or _reminded_recently(task.id, recipient):
            continue
        days_left = (task.due_date - today).days
        name = task.compliance.name if task.compliance else task.compliance_id
        created.append(NotificationService.emit(
            type="reminder",
            priority="high" if days_left <= 1 else "medium",
            recipient=recipient,
            title=f"Due {'today' if days_left == 0 else f'in {days_left} day(s)'}: {name}",
            message=f"Task for {task.period} is due on {task.due_date.isoformat()}.",
            task_id=task.id,
        ))
    db.session.commit()
    NotificationService.deliver(created)
    results["notifications_created"] = len(created)
    logger.info("Due-soon reminder: %d tasks, %d notifications",
                results["tasks_due_soon"], results["notifications_created"])
    return results


def _reminded_recently(task_id: str, recipient: str, hours: int = 20) -> bool:
    return db.session.execute(
        select(Notification.id).where(
            Notification.task_id == task_id,
            Notification.recipient == recipient,
            Notification.type == "reminder",
            Notification.created_at >= _utcnow() - timedelta(hours=hours),
        )
    ).first() is not None
