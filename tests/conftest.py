"""
Shared pytest fixtures for the Compliance Desk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org: one department (FIN) with admin, supervisor, head, makers, checkers
    - make_employee / make_compliance / make_task / pool: ORM factories
    - as_actor(emp): X-Employee-Id header dict for API calls
"""

from datetime import date
from types import SimpleNamespace

import pytest

from compliance_desk import create_app
from compliance_desk.models import db as _db
from compliance_desk.models.compliance import AssignmentPoolEntry, ComplianceDefinition
from compliance_desk.models.directory import Department, Employee
from compliance_desk.models.task import TaskInstance
from compliance_desk.services import change_feed
from compliance_desk.services.notification import clear_channels

TODAY = date(2026, 10, 19)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        change_feed.reset()
        clear_channels()
        yield
        change_feed.reset()
        clear_channels()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def as_actor():
    """Return a function building the X-Employee-Id header for an employee."""

    def _headers(employee):
        emp_id = employee if isinstance(employee, str) else employee.id
        return {"X-Employee-Id": emp_id}

    return _headers


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_employee():
    counter = {"n": 0}

    def _make(name=None, role="maker", department_code="FIN", status="active", supervisor=None):
        counter["n"] += 1
        n = counter["n"]
        emp = Employee(
            emp_id=f"E{n:04d}",
            name=name or f"Employee {n}",
            email=f"employee{n}@example.com",
            department_code=department_code,
            role_name=role,
            status=status,
            supervisor_id=supervisor.id if supervisor is not None else None,
        )
        _db.session.add(emp)
        _db.session.commit()
        return emp

    return _make


@pytest.fixture()
def make_compliance():
    counter = {"n": 0}

    def _make(department_code="FIN", frequency="monthly", status="active", next_due=None, name=None):
        counter["n"] += 1
        n = counter["n"]
        definition = ComplianceDefinition(
            compliance_code=f"CMP-{n:03d}",
            name=name or f"Compliance {n}",
            category="Regulatory",
            department_code=department_code,
            frequency=frequency,
            risk_type="high",
            status=status,
            next_due=next_due,
        )
        _db.session.add(definition)
        _db.session.commit()
        return definition

    return _make


@pytest.fixture()
def pool():
    """Bind an employee to a compliance directly (bypasses eligibility checks)."""

    def _bind(definition, employee, status="active"):
        entry = AssignmentPoolEntry(
            compliance_id=definition.id, employee_id=employee.id, status=status,
        )
        _db.session.add(entry)
        _db.session.commit()
        return entry

    return _bind


@pytest.fixture()
def make_task():
    """Create a TaskInstance at an arbitrary status (bypasses the state machine)."""
    counter = {"n": 0}

    def _make(definition, maker, checker=None, status="draft", due_date=TODAY,
              period=None, escalation_level=0, checker_remarks=None):
        counter["n"] += 1
        task = TaskInstance(
            compliance_id=definition.id,
            assigned_to=maker.id,
            checker_id=checker.id if checker is not None else None,
            period=period or f"T-{counter['n']:03d}",
            due_date=due_date,
            status=status,
            escalation_level=escalation_level,
            checker_remarks=checker_remarks,
        )
        _db.session.add(task)
        _db.session.commit()
        return task

    return _make


@pytest.fixture()
def org(make_employee):
    """Finance department with a full cast, plus one maker in another department."""
    admin = make_employee("Asha Admin", role="Admin", department_code="ADM")
    head = make_employee("Hari Head", role="checker")
    supervisor = make_employee("Sam Supervisor", role="checker")
    maker = make_employee("Mira Maker", role="Maker", supervisor=supervisor)
    maker2 = make_employee("Mo Maker", role="maker", supervisor=supervisor)
    checker = make_employee("Chen Checker", role="CHECKER")
    viewer = make_employee("Vic Viewer", role="auditor")
    outsider = make_employee("Olu Outsider", role="maker", department_code="OPS")

    dept = Department(code="FIN", name="Finance", head="Hari Head", head_employee_id=head.id)
    _db.session.add(dept)
    _db.session.add(Department(code="OPS", name="Operations"))
    _db.session.commit()

    return SimpleNamespace(
        department=dept, admin=admin, head=head, supervisor=supervisor,
        maker=maker, maker2=maker2, checker=checker, viewer=viewer, outsider=outsider,
    )
