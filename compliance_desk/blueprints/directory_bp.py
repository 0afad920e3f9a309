"""
Directory Blueprint — departments and employees.

Endpoints:
    GET    /api/v1/departments
    POST   /api/v1/departments              (admin)
    GET    /api/v1/employees                ?department_code&role&status
    POST   /api/v1/employees                (admin)
    GET    /api/v1/employees/<id>
    PUT    /api/v1/employees/<id>           (admin)
"""

import logging

from flask import Blueprint, jsonify, request

from compliance_desk.middleware.actor_context import actor_required, admin_required
from compliance_desk.services import directory_service
from compliance_desk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

directory_bp = Blueprint("directory", __name__, url_prefix="/api/v1")
register_error_handlers(directory_bp)


@directory_bp.route("/departments", methods=["GET"])
def list_departments():
    _actor, err = actor_required()
    if err:
        return err
    items = directory_service.list_departments(status=request.args.get("status"))
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@directory_bp.route("/departments", methods=["POST"])
def create_department():
    _actor, err = admin_required()
    if err:
        return err
    dept = directory_service.create_department(request.get_json(silent=True) or {})
    return jsonify(dept.to_dict()), 201


@directory_bp.route("/employees", methods=["GET"])
def list_employees():
    _actor, err = actor_required()
    if err:
        return err
    items = directory_service.list_employees(
        department_code=request.args.get("department_code"),
        role=request.args.get("role"),
        status=request.args.get("status"),
    )
    return jsonify({"items": [e.to_dict() for e in items], "total": len(items)})


@directory_bp.route("/employees", methods=["POST"])
def create_employee():
    _actor, err = admin_required()
    if err:
        return err
    employee = directory_service.create_employee(request.get_json(silent=True) or {})
    return jsonify(employee.to_dict()), 201


@directory_bp.route("/employees/<employee_id>", methods=["GET"])
def get_employee(employee_id):
    _actor, err = actor_required()
    if err:
        return err
    return jsonify(directory_service.get_employee(employee_id).to_dict())


@directory_bp.route("/employees/<employee_id>", methods=["PUT"])
def update_employee(employee_id):
    _actor, err = admin_required()
    if err:
        return err
    employee = directory_service.update_employee(employee_id, request.get_json(silent=True) or {})
    return jsonify(employee.to_dict())
