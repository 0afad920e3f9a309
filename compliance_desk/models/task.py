"""
Compliance Desk
Task domain model.

Models:
    - TaskInstance: one period's work item for a compliance (maker → checker)
    - EscalationRecord: append-only log of escalation raises per task

Lifecycle:
    draft ──submit──▶ submitted ──approve──▶ approved
      ▲                  │  └────reject───▶ rejected
      └────send_back─────┘                     │
      └──────────────reopen────────────────────┘

``escalated`` is not a status: it is ``escalation_level > 0`` layered on
any open status.
"""

from compliance_desk.models import _utcnow, _uuid, db


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = ("draft", "submitted", "approved", "rejected")
OPEN_STATUSES = frozenset({"draft", "submitted"})
TERMINAL_STATUSES = frozenset({"approved", "rejected"})

# action → allowed from-states, target state, party that owns the edge
TASK_TRANSITIONS = {
    "submit": {"from": {"draft"}, "to": "submitted", "actor": "maker"},
    "approve": {"from": {"submitted"}, "to": "approved", "actor": "checker"},
    "reject": {"from": {"submitted"}, "to": "rejected", "actor": "checker"},
    "send_back": {"from": {"submitted"}, "to": "draft", "actor": "checker"},
    "reopen": {"from": {"rejected"}, "to": "draft", "actor": "maker"},
}

MAX_ESCALATION_LEVEL = 3


class TaskInstance(db.Model):
    """
    Work item for one compliance in one recurrence period.

    Mutated only by the workflow service (status and remarks) and the
    escalation service (escalation_level). Never hard-deleted.
    """

    __tablename__ = "compliance_assignments"
    __table_args__ = (
        db.UniqueConstraint("compliance_id", "assigned_to", "period", name="uq_task_period"),
        db.CheckConstraint(
            "checker_id IS NULL OR checker_id <> assigned_to", name="ck_task_checker_not_maker",
        ),
        db.CheckConstraint("escalation_level >= 0", name="ck_task_escalation_level"),
        db.Index("idx_task_status_due", "status", "due_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    compliance_id = db.Column(
        db.String(36), db.ForeignKey("compliances.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.String(36), db.ForeignKey("employees.id"), nullable=False, index=True, comment="Maker",
    )
    checker_id = db.Column(
        db.String(36), db.ForeignKey("employees.id"), nullable=True, index=True,
    )
    period = db.Column(db.String(12), nullable=False, default="once",
                       comment="Recurrence period key: 2026-10, 2026-Q4, 2026-W42, ...")
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft | submitted | approved | rejected")

    maker_remarks = db.Column(db.Text, nullable=True)
    checker_remarks = db.Column(db.Text, nullable=True)
    document_url = db.Column(db.String(1000), nullable=True)

    escalation_level = db.Column(db.Integer, nullable=False, default=0)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    compliance = db.relationship("ComplianceDefinition", lazy="joined")
    maker = db.relationship("Employee", foreign_keys=[assigned_to], lazy="joined")
    checker = db.relationship("Employee", foreign_keys=[checker_id], lazy="joined")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self):
        c = self.compliance
        return {
            "id": self.id,
            "compliance_id": self.compliance_id,
            "compliance_code": c.compliance_code if c else None,
            "compliance_name": c.name if c else None,
            "category": c.category if c else None,
            "department_code": c.department_code if c else None,
            "frequency": c.frequency if c else None,
            "risk_type": c.risk_type if c else None,
            "assigned_to": self.assigned_to,
            "maker_name": self.maker.name if self.maker else None,
            "checker_id": self.checker_id,
            "checker_name": self.checker.name if self.checker else None,
            "period": self.period,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "maker_remarks": self.maker_remarks,
            "checker_remarks": self.checker_remarks,
            "document_url": self.document_url,
            "escalation_level": self.escalation_level,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TaskInstance {self.id[:8]} {self.period} {self.status} L{self.escalation_level}>"


class EscalationRecord(db.Model):
    """
    One escalation raise. Append-only; only ``resolved``/``resolved_at`` change.
    """

    __tablename__ = "escalation_items"
    __table_args__ = (
        db.Index("idx_escalation_task_level", "task_id", "escalation_level"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    task_id = db.Column(
        db.String(36), db.ForeignKey("compliance_assignments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    escalation_level = db.Column(db.Integer, nullable=False)
    escalated_to = db.Column(db.String(100), nullable=False, comment="Authority tier")
    escalated_to_name = db.Column(db.String(200), nullable=True, comment="Resolved person, if any")
    escalated_to_employee_id = db.Column(db.String(36), nullable=True)
    reason = db.Column(db.String(300), nullable=False)
    resolved = db.Column(db.Boolean, nullable=False, default=False, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escalated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    task = db.relationship("TaskInstance", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "escalation_level": self.escalation_level,
            "escalated_to": self.escalated_to,
            "escalated_to_name": self.escalated_to_name,
            "escalated_to_employee_id": self.escalated_to_employee_id,
            "reason": self.reason,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
        }

    def __repr__(self):
        return f"<EscalationRecord task={self.task_id[:8]} L{self.escalation_level}>"
