"""
Tests — Directory Service, directory API and health probes.
"""

import pytest

from compliance_desk.core.exceptions import Conflict, NotFound, ValidationFailed
from compliance_desk.models import db
from compliance_desk.models.directory import Department, Role
from compliance_desk.services import directory_service


@pytest.mark.unit
class TestRoleParsing:

    @pytest.mark.parametrize("raw,role", [
        ("maker", Role.MAKER),
        ("Maker", Role.MAKER),
        (" CHECKER ", Role.CHECKER),
        ("Admin", Role.ADMIN),
        ("auditor", Role.OTHER),
        ("", Role.OTHER),
        (None, Role.OTHER),
        (Role.CHECKER, Role.CHECKER),
    ])
    def test_parse(self, raw, role):
        assert Role.parse(raw) is role


class TestLookups:

    def test_role_filter_is_case_insensitive(self, org):
        makers = directory_service.list_employees(department_code="FIN", role="MAKER")
        assert [e.name for e in makers] == ["Mira Maker", "Mo Maker"]

    def test_active_checkers_exclude(self, org):
        checkers = directory_service.active_checkers("FIN", exclude_id=org.checker.id)
        assert [e.name for e in checkers] == ["Hari Head", "Sam Supervisor"]

    def test_active_admins(self, org):
        assert [e.id for e in directory_service.active_admins()] == [org.admin.id]

    def test_find_by_email_ignores_case(self, org):
        assert directory_service.find_by_email("  EMPLOYEE1@Example.com ").id == org.admin.id

    def test_get_employee_missing(self):
        with pytest.raises(NotFound):
            directory_service.get_employee("nobody")

    def test_supervisor_of(self, org):
        assert directory_service.supervisor_of(org.maker).id == org.supervisor.id
        assert directory_service.supervisor_of(org.checker) is None

    def test_inactive_supervisor_is_not_returned(self, org):
        org.supervisor.status = "inactive"
        db.session.commit()
        assert directory_service.supervisor_of(org.maker) is None


class TestDepartmentHead:

    def test_head_by_employee_id(self, org):
        assert directory_service.department_head("FIN").id == org.head.id

    def test_head_by_name_when_no_id(self, org, make_employee):
        ops_head = make_employee("Oscar Ops", role="checker", department_code="OPS")
        dept = Department.query.filter_by(code="OPS").one()
        dept.head = "Oscar Ops"
        db.session.commit()

        assert directory_service.department_head("OPS").id == ops_head.id

    def test_inactive_head_is_not_returned(self, org):
        org.head.status = "inactive"
        db.session.commit()
        # the name match only considers active employees
        assert directory_service.department_head("FIN") is None

    def test_unknown_department(self, org):
        assert directory_service.department_head("NOPE") is None
        assert directory_service.department_head(None) is None


class TestMasterData:

    def test_create_department_uppercases_code(self):
        dept = directory_service.create_department({"code": "risk", "name": "Risk"})
        assert dept.code == "RISK"

    def test_duplicate_department(self, org):
        with pytest.raises(Conflict):
            directory_service.create_department({"code": "FIN", "name": "Finance again"})

    def test_department_requires_name(self):
        with pytest.raises(ValidationFailed):
            directory_service.create_department({"code": "X"})

    def test_create_employee_normalises_email(self):
        emp = directory_service.create_employee({
            "emp_id": "E9001", "name": "Nia New", "email": " Nia.New@Example.com",
            "department_code": "FIN", "role_name": "Checker",
        })
        assert emp.email == "nia.new@example.com"
        assert emp.role is Role.CHECKER

    def test_duplicate_email(self, org):
        with pytest.raises(Conflict):
            directory_service.create_employee({
                "emp_id": "E9002", "name": "Copy", "email": org.maker.email,
            })

    def test_employee_requires_fields(self):
        with pytest.raises(ValidationFailed) as exc_info:
            directory_service.create_employee({"name": "Only name"})
        assert set(exc_info.value.details) == {"emp_id", "email"}

    def test_cannot_supervise_self(self, org):
        with pytest.raises(ValidationFailed):
            directory_service.update_employee(org.maker.id, {"supervisor_id": org.maker.id})

    def test_unknown_supervisor(self, org):
        with pytest.raises(NotFound):
            directory_service.update_employee(org.maker.id, {"supervisor_id": "ghost"})

    def test_invalid_status(self, org):
        with pytest.raises(ValidationFailed):
            directory_service.update_employee(org.maker.id, {"status": "on_leave"})


class TestDirectoryAPI:

    def test_list_employees_by_role(self, client, org, as_actor):
        res = client.get("/api/v1/employees?department_code=FIN&role=checker", headers=as_actor(org.maker))
        assert res.status_code == 200
        assert res.get_json()["total"] == 3

    def test_unknown_actor_is_401(self, client, org):
        res = client.get("/api/v1/employees", headers={"X-Employee-Id": "ghost"})
        assert res.status_code == 401

    def test_inactive_actor_is_401(self, client, org, as_actor):
        org.maker.status = "inactive"
        db.session.commit()
        res = client.get("/api/v1/employees", headers=as_actor(org.maker))
        assert res.status_code == 401

    def test_create_employee_admin_only(self, client, org, as_actor):
        payload = {"emp_id": "E9100", "name": "Api Person", "email": "api@example.com", "role_name": "maker"}

        assert client.post("/api/v1/employees", json=payload, headers=as_actor(org.maker)).status_code == 403
        res = client.post("/api/v1/employees", json=payload, headers=as_actor(org.admin))
        assert res.status_code == 201
        assert res.get_json()["role"] == "maker"

    def test_update_employee(self, client, org, as_actor):
        res = client.put(f"/api/v1/employees/{org.maker2.id}", json={"designation": "Analyst"},
                         headers=as_actor(org.admin))
        assert res.get_json()["designation"] == "Analyst"

    def test_get_missing_employee(self, client, org, as_actor):
        res = client.get("/api/v1/employees/ghost", headers=as_actor(org.admin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_departments(self, client, org, as_actor):
        res = client.post("/api/v1/departments", json={"code": "tax", "name": "Tax"}, headers=as_actor(org.admin))
        assert res.status_code == 201
        res = client.get("/api/v1/departments", headers=as_actor(org.maker))
        assert [d["code"] for d in res.get_json()["items"]] == ["FIN", "OPS", "TAX"]


class TestHealth:

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}
        assert res.headers.get("X-Request-ID")

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        body = res.get_json()
        assert res.status_code == 200
        assert body["checks"]["database"]["status"] == "ok"
        assert "escalation_sweep" in body["checks"]["jobs"]["registered"]

    def test_unknown_api_route_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"]
