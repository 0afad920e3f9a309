"""
Notification & Scheduling Blueprint.

Provides:
    - The caller's notification inbox (list, unread count, mark read)
    - Scheduled job management (list, trigger, toggle)

Endpoints:
    GET    /api/v1/notifications                    ?unread_only&type&limit&offset
    GET    /api/v1/notifications/unread-count
    POST   /api/v1/notifications/<id>/read
    POST   /api/v1/notifications/read-all
    GET    /api/v1/scheduler/jobs                   (admin)
    POST   /api/v1/scheduler/jobs/<job_name>/trigger (admin)
    PATCH  /api/v1/scheduler/jobs/<job_name>/toggle  (admin) { enabled }
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from compliance_desk.blueprints import page_params
from compliance_desk.models import db
from compliance_desk.models.notification import Notification
from compliance_desk.middleware.actor_context import actor_required, admin_required
from compliance_desk.services.notification import NotificationService
from compliance_desk.services.scheduler_service import SchedulerService
from compliance_desk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  INBOX
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor, err = actor_required()
    if err:
        return err
    limit, offset = page_params(default_limit=50, max_limit=200)
    unread_only = request.args.get("unread_only", "").lower() in ("1", "true", "yes")
    items, total = NotificationService.list_for_recipient(
        actor.id, unread_only=unread_only, type=request.args.get("type"),
        limit=limit, offset=offset,
    )
    return jsonify({
        "items": NotificationService.serialize_for(items, actor.id),
        "total": total,
        "unread_count": NotificationService.unread_count(actor.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    actor, err = actor_required()
    if err:
        return err
    return jsonify({"unread_count": NotificationService.unread_count(actor.id)})


@notification_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    actor, err = actor_required()
    if err:
        return err
    notif = db.session.get(Notification, notification_id)
    # someone else's notification is reported as missing
    if not notif or not (notif.is_broadcast or notif.recipient == actor.id):
        return api_error(E.NOT_FOUND, "Notification not found")
    notif = NotificationService.mark_read(notification_id, actor.id)
    return jsonify(NotificationService.serialize_for([notif], actor.id)[0])


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    actor, err = actor_required()
    if err:
        return err
    count = NotificationService.mark_all_read(actor.id)
    return jsonify({"marked_read": count})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS MANAGEMENT
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    """List all registered jobs with their persisted status."""
    _actor, err = admin_required()
    if err:
        return err
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Manually trigger a scheduled job, even when it is disabled."""
    _actor, err = admin_required()
    if err:
        return err
    result = SchedulerService.run_job(job_name, force=True)
    if result.get("status") == "error" and "Unknown job" in (result.get("error") or ""):
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result)


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    """Enable or disable a scheduled job."""
    _actor, err = admin_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")

    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result)
