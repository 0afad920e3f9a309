"""
Compliance Blueprint — catalogue, assignment pool, smart assignment, provisioning.

Endpoints:
    GET    /api/v1/compliances                      ?department_code&status&frequency&risk_type
    POST   /api/v1/compliances                      (admin)
    GET    /api/v1/compliances/unassigned           (admin)
    GET    /api/v1/compliances/<id>
    PUT    /api/v1/compliances/<id>                 (admin)

    GET    /api/v1/compliances/<id>/pool            (admin) ?status
    POST   /api/v1/compliances/<id>/pool            (admin) { employee_id }
    PATCH  /api/v1/pool/<entry_id>                  (admin) { status }
    DELETE /api/v1/pool/<entry_id>                  (admin)

    GET    /api/v1/compliances/<id>/candidates      (admin)
    POST   /api/v1/compliances/<id>/assign          (admin) { maker_id, checker_id? }

    POST   /api/v1/pool/<entry_id>/provision        (admin)
    POST   /api/v1/provisioning/run                 (admin) { today? }

Layer contract:
    - Blueprint: parse input, resolve caller, call service, return JSON.
    - Business guards and commits live in the services.
"""

import logging

from flask import Blueprint, jsonify, request

from compliance_desk.middleware.actor_context import actor_required, admin_required
from compliance_desk.services import (
    assignment_advisor,
    compliance_service,
    pool_service,
    provisioning_service,
    visibility,
)
from compliance_desk.utils.errors import E, api_error, register_error_handlers
from compliance_desk.utils.helpers import parse_date

logger = logging.getLogger(__name__)

compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/v1")
register_error_handlers(compliance_bp)


# ── Catalogue ─────────────────────────────────────────────────────────────────


@compliance_bp.route("/compliances", methods=["GET"])
def list_compliances():
    _actor, err = actor_required()
    if err:
        return err
    items = compliance_service.list_definitions(
        department_code=request.args.get("department_code"),
        status=request.args.get("status"),
        frequency=request.args.get("frequency"),
        risk_type=request.args.get("risk_type"),
    )
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@compliance_bp.route("/compliances", methods=["POST"])
def create_compliance():
    _actor, err = admin_required()
    if err:
        return err
    definition = compliance_service.create_definition(request.get_json(silent=True) or {})
    return jsonify(definition.to_dict()), 201


@compliance_bp.route("/compliances/unassigned", methods=["GET"])
def list_unassigned():
    """Active compliances with no open task (admin worklist tab)."""
    actor, err = actor_required()
    if err:
        return err
    items = visibility.unassigned_for(visibility.Viewer.of(actor))
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@compliance_bp.route("/compliances/<compliance_id>", methods=["GET"])
def get_compliance(compliance_id):
    _actor, err = actor_required()
    if err:
        return err
    return jsonify(compliance_service.get_definition(compliance_id).to_dict())


@compliance_bp.route("/compliances/<compliance_id>", methods=["PUT"])
def update_compliance(compliance_id):
    _actor, err = admin_required()
    if err:
        return err
    definition = compliance_service.update_definition(compliance_id, request.get_json(silent=True) or {})
    return jsonify(definition.to_dict())


# ── Assignment pool ───────────────────────────────────────────────────────────


@compliance_bp.route("/compliances/<compliance_id>/pool", methods=["GET"])
def list_pool(compliance_id):
    _actor, err = admin_required()
    if err:
        return err
    entries = pool_service.list_pool(compliance_id, status=request.args.get("status"))
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@compliance_bp.route("/compliances/<compliance_id>/pool", methods=["POST"])
def add_pool_entry(compliance_id):
    actor, err = admin_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    employee_id = (data.get("employee_id") or "").strip()
    if not employee_id:
        return api_error(E.VALIDATION_REQUIRED, "employee_id is required")
    entry = pool_service.add_to_pool(compliance_id, employee_id, actor_id=actor.id)
    return jsonify(entry.to_dict()), 201


@compliance_bp.route("/pool/<entry_id>", methods=["PATCH"])
def update_pool_entry(entry_id):
    actor, err = admin_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required (active/inactive)")
    entry = pool_service.set_pool_status(entry_id, status, actor_id=actor.id)
    return jsonify(entry.to_dict())


@compliance_bp.route("/pool/<entry_id>", methods=["DELETE"])
def delete_pool_entry(entry_id):
    actor, err = admin_required()
    if err:
        return err
    pool_service.remove_from_pool(entry_id, actor_id=actor.id)
    return jsonify({"deleted": True, "id": entry_id})


# ── Smart assignment ──────────────────────────────────────────────────────────


@compliance_bp.route("/compliances/<compliance_id>/candidates", methods=["GET"])
def get_candidates(compliance_id):
    _actor, err = admin_required()
    if err:
        return err
    result = assignment_advisor.suggest_candidates(compliance_id)
    return jsonify({
        "compliance_id": result["compliance_id"],
        "department_code": result["department_code"],
        "makers": [e.to_dict() for e in result["makers"]],
        "checkers": [e.to_dict() for e in result["checkers"]],
    })


@compliance_bp.route("/compliances/<compliance_id>/assign", methods=["POST"])
def assign_compliance(compliance_id):
    """Admin check happens in the service so Forbidden carries context."""
    actor, err = actor_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    task = assignment_advisor.assign(
        compliance_id,
        maker_id=(data.get("maker_id") or "").strip(),
        checker_id=(data.get("checker_id") or "").strip() or None,
        actor_id=actor.id,
    )
    return jsonify(task.to_dict()), 201


# ── Provisioning ──────────────────────────────────────────────────────────────


@compliance_bp.route("/pool/<entry_id>/provision", methods=["POST"])
def provision_entry(entry_id):
    actor, err = admin_required()
    if err:
        return err
    task, created = provisioning_service.provision_for_entry(entry_id, actor_id=actor.id)
    return jsonify({"created": created, "task": task.to_dict()}), 201 if created else 200


@compliance_bp.route("/provisioning/run", methods=["POST"])
def run_provisioning():
    _actor, err = admin_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    today = parse_date(data.get("today"))
    if data.get("today") and today is None:
        return api_error(E.VALIDATION_INVALID, "today must be YYYY-MM-DD")
    return jsonify(provisioning_service.provision_all(today))
