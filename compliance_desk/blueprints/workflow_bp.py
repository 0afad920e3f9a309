"""
Workflow Blueprint — task reads and maker/checker transitions.

Endpoints:
    GET    /api/v1/tasks                    ?status&priority&frequency&due=overdue|upcoming
    GET    /api/v1/tasks/worklist           tabbed view (assigned, completed, overdue, sendback[, unassigned])
    GET    /api/v1/tasks/<id>
    GET    /api/v1/tasks/<id>/history
    POST   /api/v1/tasks/<id>/submit        JSON { remarks } or multipart (remarks, document)
    POST   /api/v1/tasks/<id>/approve       { remarks? }
    POST   /api/v1/tasks/<id>/reject        { remarks? }
    POST   /api/v1/tasks/<id>/send-back     { remarks }
    POST   /api/v1/tasks/<id>/reopen

A task the caller may not see answers 404, same as a missing one, for reads
and transitions alike.
Guards (state, actor, input) are enforced in workflow_service.
"""

import logging
from datetime import date

from flask import Blueprint, jsonify, request

from compliance_desk.blueprints import paginate_items
from compliance_desk.core.exceptions import NotFound
from compliance_desk.integrations.document_store import DocumentUpload
from compliance_desk.middleware.actor_context import actor_required
from compliance_desk.services import visibility, workflow_service
from compliance_desk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _filters() -> dict:
    return {
        "status": request.args.get("status"),
        "priority": request.args.get("priority"),
        "frequency": request.args.get("frequency"),
        "due": request.args.get("due"),
    }


def _visible_task_or_404(task_id, actor):
    task = workflow_service.get_task(task_id)
    if not visibility.is_visible(task, visibility.Viewer.of(actor)):
        raise NotFound("TaskInstance", task_id)
    return task


def _task_payload(task, actor):
    data = visibility.serialize_task(task, date.today())
    data["available_actions"] = workflow_service.available_actions(task, actor)
    return data


@workflow_bp.route("/tasks", methods=["GET"])
def list_tasks():
    actor, err = actor_required()
    if err:
        return err
    today = date.today()
    tasks = visibility.apply_filters(
        visibility.visible_tasks(visibility.Viewer.of(actor)), today, **_filters()
    )
    page, total = paginate_items(tasks)
    return jsonify({
        "items": [visibility.serialize_task(t, today) for t in page],
        "total": total,
    })


@workflow_bp.route("/tasks/worklist", methods=["GET"])
def worklist():
    actor, err = actor_required()
    if err:
        return err
    return jsonify(visibility.build_worklist(visibility.Viewer.of(actor), **_filters()))


@workflow_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id):
    actor, err = actor_required()
    if err:
        return err
    return jsonify(_task_payload(_visible_task_or_404(task_id, actor), actor))


@workflow_bp.route("/tasks/<task_id>/history", methods=["GET"])
def task_history(task_id):
    actor, err = actor_required()
    if err:
        return err
    _visible_task_or_404(task_id, actor)
    return jsonify(workflow_service.task_history(task_id))


@workflow_bp.route("/tasks/<task_id>/submit", methods=["POST"])
def submit_task(task_id):
    """Maker submits; multipart requests may carry the evidence file as ``document``."""
    actor, err = actor_required()
    if err:
        return err
    _visible_task_or_404(task_id, actor)
    document = None
    if request.mimetype == "multipart/form-data":
        remarks = request.form.get("remarks")
        upload = request.files.get("document")
        if upload is not None and upload.filename:
            document = DocumentUpload(
                filename=upload.filename,
                content=upload.read(),
                content_type=upload.mimetype,
            )
    else:
        remarks = (request.get_json(silent=True) or {}).get("remarks")
    task = workflow_service.submit_task(task_id, actor.id, remarks, document=document)
    return jsonify(_task_payload(task, actor))


def _checker_action(task_id, action):
    actor, err = actor_required()
    if err:
        return err
    _visible_task_or_404(task_id, actor)
    remarks = (request.get_json(silent=True) or {}).get("remarks")
    task = workflow_service.transition_task(task_id, action, actor.id, remarks=remarks)
    return jsonify(_task_payload(task, actor))


@workflow_bp.route("/tasks/<task_id>/approve", methods=["POST"])
def approve_task(task_id):
    return _checker_action(task_id, "approve")


@workflow_bp.route("/tasks/<task_id>/reject", methods=["POST"])
def reject_task(task_id):
    return _checker_action(task_id, "reject")


@workflow_bp.route("/tasks/<task_id>/send-back", methods=["POST"])
def send_back_task(task_id):
    return _checker_action(task_id, "send_back")


@workflow_bp.route("/tasks/<task_id>/reopen", methods=["POST"])
def reopen_task(task_id):
    actor, err = actor_required()
    if err:
        return err
    _visible_task_or_404(task_id, actor)
    task = workflow_service.reopen_task(task_id, actor.id)
    return jsonify(_task_payload(task, actor))
