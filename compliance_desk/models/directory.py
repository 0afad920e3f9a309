"""
Compliance Desk
Directory domain model.

Models:
    - Department: organisational unit owning compliances
    - Employee: person with a role (maker / checker / admin) in a department

Role names arrive from HR exports in any casing ("Maker", "CHECKER",
"Admin"), so they are normalised into the closed ``Role`` enum at read time.
"""

from enum import Enum

from compliance_desk.models import _utcnow, _uuid, db


# ── Constants ────────────────────────────────────────────────────────────────

RECORD_STATUSES = frozenset({"active", "inactive"})


class Role(str, Enum):
    MAKER = "maker"
    CHECKER = "checker"
    ADMIN = "admin"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "Role":
        """Case-insensitive lookup; unknown or empty strings map to OTHER."""
        if isinstance(value, Role):
            return value
        normalized = (value or "").strip().lower()
        for role in cls:
            if role.value == normalized:
                return role
        return cls.OTHER


class Department(db.Model):
    """Organisational unit. ``code`` is the join key used by employees and compliances."""

    __tablename__ = "departments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    code = db.Column(db.String(30), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    head = db.Column(db.String(200), nullable=True, comment="Display name of the department head")
    head_employee_id = db.Column(
        db.String(36), db.ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True, comment="Employee notified on level-2 escalations",
    )
    status = db.Column(db.String(20), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "head": self.head,
            "head_employee_id": self.head_employee_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Department {self.code}>"


class Employee(db.Model):
    """
    Directory entry for one person.

    ``role_name`` is stored verbatim; use ``role`` for decisions.
    ``supervisor_id`` points to the maker's direct supervisor (level-1 escalation target).
    """

    __tablename__ = "employees"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    emp_id = db.Column(db.String(30), unique=True, nullable=False, comment="HR employee code")
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    department_code = db.Column(db.String(30), nullable=True, index=True)
    designation = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(40), nullable=True)
    role_name = db.Column(db.String(30), nullable=False, default="maker",
                          comment="maker | checker | admin (any casing)")
    supervisor_id = db.Column(
        db.String(36), db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def role(self) -> Role:
        return Role.parse(self.role_name)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "emp_id": self.emp_id,
            "name": self.name,
            "email": self.email,
            "department_code": self.department_code,
            "designation": self.designation,
            "phone": self.phone,
            "role": self.role.value,
            "role_name": self.role_name,
            "supervisor_id": self.supervisor_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Employee {self.emp_id}: {self.name} ({self.role.value})>"
