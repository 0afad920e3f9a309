"""
Compliance Desk
Compliance catalogue models.

Models:
    - ComplianceDefinition: one regulatory obligation and its recurrence
    - AssignmentPoolEntry: eligibility binding employee ↔ compliance

A pool entry says *who may* work on a compliance. It never creates work by
itself; the task provisioner turns active maker entries into TaskInstances.
"""

from compliance_desk.models import _utcnow, _uuid, db


# ── Constants ────────────────────────────────────────────────────────────────

FREQUENCIES = frozenset({
    "daily", "weekly", "monthly", "quarterly", "half_yearly", "annually", "one_time",
})
RISK_TIERS = frozenset({"low", "medium", "high", "critical"})
DEFINITION_STATUSES = frozenset({"active", "inactive"})
POOL_STATUSES = frozenset({"active", "inactive"})


def normalize_frequency(value) -> str:
    """'Half-Yearly' → 'half_yearly'; unknown values fall back to 'one_time'."""
    key = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    aliases = {"yearly": "annually", "annual": "annually", "once": "one_time", "semi_annual": "half_yearly"}
    key = aliases.get(key, key)
    return key if key in FREQUENCIES else "one_time"


class ComplianceDefinition(db.Model):
    """Regulatory obligation owned by a department."""

    __tablename__ = "compliances"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    compliance_code = db.Column(db.String(40), unique=True, nullable=False,
                                comment="Business code, e.g. RBI-KYC-01")
    name = db.Column(db.String(300), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    section = db.Column(db.String(100), nullable=True, comment="Act / circular section reference")
    compliance_type = db.Column(db.String(60), nullable=True)
    department_code = db.Column(db.String(30), nullable=True, index=True)
    risk_type = db.Column(db.String(20), nullable=False, default="medium",
                          comment="low | medium | high | critical")
    frequency = db.Column(db.String(20), nullable=False, default="monthly",
                          comment="daily | weekly | monthly | quarterly | half_yearly | annually | one_time")
    next_due = db.Column(db.Date, nullable=True, comment="Explicit next due date; overrides recurrence")
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    pool_entries = db.relationship(
        "AssignmentPoolEntry", back_populates="compliance",
        cascade="all, delete-orphan", lazy="select",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "compliance_code": self.compliance_code,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "section": self.section,
            "compliance_type": self.compliance_type,
            "department_code": self.department_code,
            "risk_type": self.risk_type,
            "frequency": self.frequency,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ComplianceDefinition {self.compliance_code}: {self.name[:40]}>"


class AssignmentPoolEntry(db.Model):
    """Employee eligible to work on a compliance. At most one row per pair."""

    __tablename__ = "compliance_user_assignments"
    __table_args__ = (
        db.UniqueConstraint("compliance_id", "employee_id", name="uq_pool_compliance_employee"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    compliance_id = db.Column(
        db.String(36), db.ForeignKey("compliances.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    employee_id = db.Column(
        db.String(36), db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="active")
    assigned_by = db.Column(db.String(36), nullable=True, comment="Employee id of the admin")
    assigned_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    compliance = db.relationship("ComplianceDefinition", back_populates="pool_entries")
    employee = db.relationship("Employee", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "compliance_id": self.compliance_id,
            "employee_id": self.employee_id,
            "employee_name": self.employee.name if self.employee else None,
            "employee_role": self.employee.role.value if self.employee else None,
            "status": self.status,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }

    def __repr__(self):
        return f"<AssignmentPoolEntry {self.compliance_id}:{self.employee_id} {self.status}>"
