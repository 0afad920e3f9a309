"""
Compliance Desk
Compliance catalogue — CRUD for ComplianceDefinition master data.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from compliance_desk.core.exceptions import Conflict, NotFound, ValidationFailed
from compliance_desk.models import db
from compliance_desk.models.compliance import (
    DEFINITION_STATUSES,
    RISK_TIERS,
    ComplianceDefinition,
    normalize_frequency,
)
from compliance_desk.services import change_feed
from compliance_desk.utils.helpers import commit_or_raise, parse_date

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("name", "category", "description", "section", "compliance_type", "department_code")


def get_definition(compliance_id: str) -> ComplianceDefinition:
    definition = db.session.get(ComplianceDefinition, compliance_id) if compliance_id else None
    if definition is None:
        raise NotFound("ComplianceDefinition", compliance_id)
    return definition


def list_definitions(department_code=None, status=None, frequency=None, risk_type=None):
    stmt = select(ComplianceDefinition)
    if department_code:
        stmt = stmt.where(ComplianceDefinition.department_code == department_code)
    if status:
        stmt = stmt.where(ComplianceDefinition.status == status)
    if frequency:
        stmt = stmt.where(ComplianceDefinition.frequency == normalize_frequency(frequency))
    if risk_type:
        stmt = stmt.where(ComplianceDefinition.risk_type == risk_type.lower())
    return db.session.execute(stmt.order_by(ComplianceDefinition.compliance_code)).scalars().all()


def _apply(definition: ComplianceDefinition, data: dict) -> None:
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(definition, field, data[field])
    if "frequency" in data:
        definition.frequency = normalize_frequency(data["frequency"])
    if "risk_type" in data:
        risk = (data["risk_type"] or "").lower()
        if risk not in RISK_TIERS:
            raise ValidationFailed(f"Invalid risk_type '{data['risk_type']}'",
                                   details={"risk_type": sorted(RISK_TIERS)})
        definition.risk_type = risk
    if "status" in data:
        if data["status"] not in DEFINITION_STATUSES:
            raise ValidationFailed(f"Invalid status '{data['status']}'",
                                   details={"status": sorted(DEFINITION_STATUSES)})
        definition.status = data["status"]
    if "next_due" in data:
        if data["next_due"] and parse_date(data["next_due"]) is None:
            raise ValidationFailed("next_due must be YYYY-MM-DD", details={"next_due": "invalid"})
        definition.next_due = parse_date(data["next_due"])


def create_definition(data: dict) -> ComplianceDefinition:
    code = (data.get("compliance_code") or "").strip()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationFailed("compliance_code and name are required",
                               details={"compliance_code": "required", "name": "required"})
    definition = ComplianceDefinition(compliance_code=code)
    _apply(definition, data)
    definition.name = name
    db.session.add(definition)
    try:
        commit_or_raise()
    except IntegrityError as exc:
        raise Conflict("ComplianceDefinition", "compliance_code", code) from exc
    logger.info("Compliance created code=%s dept=%s freq=%s",
                code, definition.department_code, definition.frequency)
    change_feed.publish("compliances", "INSERT", definition.to_dict())
    return definition


def update_definition(compliance_id: str, data: dict) -> ComplianceDefinition:
    definition = get_definition(compliance_id)
    _apply(definition, data)
    commit_or_raise()
    change_feed.publish("compliances", "UPDATE", definition.to_dict())
    return definition
