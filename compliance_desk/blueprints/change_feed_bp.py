"""
Change Feed Blueprint — polling endpoint for UI refresh.

Endpoints:
    GET /api/v1/changes?since=N&table=&limit=

Resume polling with ``since=latest_seq``; ``has_more`` means another page is
already waiting.

Administrators receive every event. Other callers only receive task events
(``compliance_assignments``) for tasks the visibility router lets them see,
judged on the record as it stood after the change.
"""

import logging
from types import SimpleNamespace

from flask import Blueprint, jsonify, request

from compliance_desk.middleware.actor_context import actor_required
from compliance_desk.models.directory import Role
from compliance_desk.services import change_feed
from compliance_desk.services.visibility import Viewer, is_visible
from compliance_desk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

change_feed_bp = Blueprint("change_feed", __name__, url_prefix="/api/v1")
register_error_handlers(change_feed_bp)

TASK_TABLE = "compliance_assignments"


def _visible_to(entry: dict, viewer: Viewer) -> bool:
    if viewer.role == Role.ADMIN:
        return True
    if entry["table"] != TASK_TABLE:
        return False
    record = entry["record"]
    task = SimpleNamespace(
        assigned_to=record.get("assigned_to"),
        checker_id=record.get("checker_id"),
        status=record.get("status"),
    )
    return is_visible(task, viewer)


@change_feed_bp.route("/changes", methods=["GET"])
def list_changes():
    actor, err = actor_required()
    if err:
        return err
    try:
        since = max(int(request.args.get("since", 0)), 0)
        limit = min(max(int(request.args.get("limit", 200)), 1), 1000)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "since and limit must be integers")

    viewer = Viewer.of(actor)
    feed = change_feed.changes_since(
        since,
        table=request.args.get("table") or None,
        limit=limit,
        predicate=lambda entry: _visible_to(entry, viewer),
    )
    return jsonify(feed)
