"""
Escalation Blueprint — sweeps, on-demand evaluation, records.

Endpoints:
    POST   /api/v1/escalations/sweep                 (admin) { today? }
    POST   /api/v1/tasks/<id>/escalation/evaluate    (admin) { today? }
    GET    /api/v1/escalations                       (admin) ?task_id&resolved&level
    POST   /api/v1/escalations/<id>/resolve          (admin)
"""

import logging

from flask import Blueprint, jsonify, request

from compliance_desk.middleware.actor_context import actor_required, admin_required
from compliance_desk.services import escalation_service
from compliance_desk.utils.errors import E, api_error, register_error_handlers
from compliance_desk.utils.helpers import parse_date

logger = logging.getLogger(__name__)

escalation_bp = Blueprint("escalation", __name__, url_prefix="/api/v1")
register_error_handlers(escalation_bp)


def _today_from_body():
    """Return (today, error). A missing value means the server's date."""
    raw = (request.get_json(silent=True) or {}).get("today")
    if not raw:
        return None, None
    today = parse_date(raw)
    if today is None:
        return None, api_error(E.VALIDATION_INVALID, "today must be YYYY-MM-DD")
    return today, None


@escalation_bp.route("/escalations/sweep", methods=["POST"])
def run_sweep():
    _actor, err = admin_required()
    if err:
        return err
    today, err = _today_from_body()
    if err:
        return err
    summary = escalation_service.sweep(today)
    summary["by_level"] = {str(k): v for k, v in summary["by_level"].items()}
    return jsonify(summary)


@escalation_bp.route("/tasks/<task_id>/escalation/evaluate", methods=["POST"])
def evaluate_task(task_id):
    _actor, err = admin_required()
    if err:
        return err
    today, err = _today_from_body()
    if err:
        return err
    return jsonify(escalation_service.evaluate_task(task_id, today))


@escalation_bp.route("/escalations", methods=["GET"])
def list_escalations():
    _actor, err = admin_required()
    if err:
        return err
    resolved = request.args.get("resolved")
    level = request.args.get("level")
    if level is not None and not level.isdigit():
        return api_error(E.VALIDATION_INVALID, "level must be an integer")
    records = escalation_service.list_records(
        task_id=request.args.get("task_id"),
        resolved=None if resolved is None else resolved.lower() in ("1", "true", "yes"),
        level=int(level) if level is not None else None,
    )
    return jsonify({"items": [r.to_dict() for r in records], "total": len(records)})


@escalation_bp.route("/escalations/<record_id>/resolve", methods=["POST"])
def resolve_escalation(record_id):
    """Admin guard lives in the service; non-admins get 403 from the handler."""
    actor, err = actor_required()
    if err:
        return err
    record = escalation_service.resolve_record(record_id, actor.id)
    return jsonify(record.to_dict())
