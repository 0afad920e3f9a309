"""
Tests — Workflow API (maker/checker lifecycle over HTTP).

Covers:
    1. Submit → checker sees the task; send back → maker sees it again in draft
    2. Competing approve/reject: one wins, the other answers 409
    3. Multipart submit with an evidence document
    4. Visibility: invisible tasks answer 404, drafts hidden from checkers
    5. Listing, worklist and history endpoints
"""

import io
from datetime import date, timedelta

import pytest

from compliance_desk.core.exceptions import UpstreamUnavailable
from compliance_desk.models import db
from compliance_desk.models.task import TaskInstance


class _FakeStore:
    def __init__(self):
        self.saved = []

    def store(self, data, name):
        self.saved.append((name, data))
        return f"https://docs.example.com/{name}"


@pytest.fixture()
def fake_store(app, monkeypatch):
    store = _FakeStore()
    monkeypatch.setitem(app.extensions, "document_store", store)
    return store


@pytest.fixture()
def task(org, make_compliance, make_task):
    compliance = make_compliance(name="GSTR-1 Filing")
    return make_task(compliance, org.maker, org.checker, due_date=date.today() + timedelta(days=2))


def _ids(res):
    return [t["id"] for t in res.get_json()["items"]]


class TestMakerCheckerRoundTrip:

    def test_submit_then_checker_sees_task(self, client, org, task, as_actor):
        assert task.id not in _ids(client.get("/api/v1/tasks", headers=as_actor(org.checker)))

        res = client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"},
                          headers=as_actor(org.maker))

        body = res.get_json()
        assert res.status_code == 200
        assert body["status"] == "submitted"
        assert body["submitted_at"] is not None
        assert body["maker_remarks"] == "done"
        assert body["available_actions"] == []
        assert task.id in _ids(client.get("/api/v1/tasks", headers=as_actor(org.checker)))

        res = client.get(f"/api/v1/tasks/{task.id}", headers=as_actor(org.checker))
        assert res.get_json()["available_actions"] == ["approve", "reject", "send_back"]

    def test_send_back_returns_task_to_maker(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))

        res = client.post(f"/api/v1/tasks/{task.id}/send-back", json={"remarks": "missing attachment"},
                          headers=as_actor(org.checker))

        body = res.get_json()
        assert body["status"] == "draft"
        assert body["checker_remarks"] == "missing attachment"
        maker_view = client.get(f"/api/v1/tasks/{task.id}", headers=as_actor(org.maker)).get_json()
        assert maker_view["status"] == "draft"
        assert maker_view["available_actions"] == ["submit"]
        assert client.get(f"/api/v1/tasks/{task.id}", headers=as_actor(org.checker)).status_code == 404

    def test_send_back_requires_remarks(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))

        res = client.post(f"/api/v1/tasks/{task.id}/send-back", json={}, headers=as_actor(org.checker))

        assert res.status_code == 422
        assert res.get_json()["details"] == {"remarks": "required"}

    def test_competing_decisions(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))

        approve = client.post(f"/api/v1/tasks/{task.id}/approve", json={}, headers=as_actor(org.checker))
        reject = client.post(f"/api/v1/tasks/{task.id}/reject", json={"remarks": "late"},
                             headers=as_actor(org.admin))

        assert approve.status_code == 200
        assert approve.get_json()["checker_remarks"] == "Approved by checker"
        assert reject.status_code == 409
        body = reject.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "approved"

    def test_reject_then_reopen(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))
        client.post(f"/api/v1/tasks/{task.id}/reject", json={}, headers=as_actor(org.checker))

        res = client.post(f"/api/v1/tasks/{task.id}/reopen", headers=as_actor(org.maker))

        assert res.get_json()["status"] == "draft"

    def test_wrong_actor_on_visible_task_is_403(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))

        res = client.post(f"/api/v1/tasks/{task.id}/approve", json={}, headers=as_actor(org.maker))

        assert res.status_code == 403
        assert res.get_json()["details"]["action"] == "approve"

    @pytest.mark.parametrize("who,action", [
        ("checker", "approve"),
        ("checker", "send-back"),
        ("maker2", "submit"),
        ("viewer", "submit"),
        ("outsider", "reject"),
    ])
    def test_transition_on_hidden_task_is_404(self, client, org, task, as_actor, who, action):
        res = client.post(f"/api/v1/tasks/{task.id}/{action}", json={"remarks": "x"},
                          headers=as_actor(getattr(org, who)))

        body = res.get_json()
        assert res.status_code == 404
        assert "current_status" not in (body.get("details") or {})
        assert db.session.get(TaskInstance, task.id).status == "draft"

    def test_reopen_hidden_task_is_404(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))
        client.post(f"/api/v1/tasks/{task.id}/reject", json={}, headers=as_actor(org.checker))

        res = client.post(f"/api/v1/tasks/{task.id}/reopen", headers=as_actor(org.maker2))

        assert res.status_code == 404
        assert db.session.get(TaskInstance, task.id).status == "rejected"

    def test_requires_actor_header(self, client, task):
        assert client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "x"}).status_code == 401


class TestEvidenceUpload:

    def test_multipart_submit_stores_document(self, client, org, task, as_actor, fake_store):
        res = client.post(
            f"/api/v1/tasks/{task.id}/submit",
            data={"remarks": "filed", "document": (io.BytesIO(b"%PDF-1.7"), "ack receipt.pdf")},
            content_type="multipart/form-data",
            headers=as_actor(org.maker),
        )

        body = res.get_json()
        assert res.status_code == 200
        assert body["document_url"] == "https://docs.example.com/ack_receipt.pdf"
        assert fake_store.saved == [("ack_receipt.pdf", b"%PDF-1.7")]

    def test_disallowed_file_type_keeps_draft(self, client, org, task, as_actor, fake_store):
        res = client.post(
            f"/api/v1/tasks/{task.id}/submit",
            data={"remarks": "filed", "document": (io.BytesIO(b"MZ"), "payload.exe")},
            content_type="multipart/form-data",
            headers=as_actor(org.maker),
        )

        assert res.status_code == 422
        assert fake_store.saved == []
        assert db.session.get(TaskInstance, task.id).status == "draft"

    def test_store_outage_is_503(self, client, org, task, as_actor, app, monkeypatch):
        class _Down:
            def store(self, data, name):
                raise UpstreamUnavailable("document store", "timeout")

        monkeypatch.setitem(app.extensions, "document_store", _Down())
        res = client.post(
            f"/api/v1/tasks/{task.id}/submit",
            data={"remarks": "filed", "document": (io.BytesIO(b"%PDF"), "a.pdf")},
            content_type="multipart/form-data",
            headers=as_actor(org.maker),
        )

        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_UPSTREAM_UNAVAILABLE"
        assert db.session.get(TaskInstance, task.id).document_url is None


class TestVisibilityOverHTTP:

    @pytest.mark.parametrize("who", ["maker2", "viewer", "outsider", "checker"])
    def test_draft_is_404_for_others(self, client, org, task, as_actor, who):
        res = client.get(f"/api/v1/tasks/{task.id}", headers=as_actor(getattr(org, who)))
        assert res.status_code == 404

    def test_admin_sees_any_task(self, client, org, task, as_actor):
        res = client.get(f"/api/v1/tasks/{task.id}", headers=as_actor(org.admin))
        assert res.status_code == 200
        assert res.get_json()["available_actions"] == ["submit"]

    def test_missing_task_is_404(self, client, org, as_actor):
        assert client.get("/api/v1/tasks/nope", headers=as_actor(org.admin)).status_code == 404

    def test_history_hidden_from_others(self, client, org, task, as_actor):
        assert client.get(f"/api/v1/tasks/{task.id}/history", headers=as_actor(org.maker2)).status_code == 404


class TestListingAndWorklist:

    def test_list_filters_and_pagination(self, client, org, make_compliance, make_task, as_actor):
        c = make_compliance()
        today = date.today()
        for offset in (-2, 1, 10):
            make_task(c, org.maker, org.checker, due_date=today + timedelta(days=offset))

        overdue = client.get("/api/v1/tasks?due=overdue", headers=as_actor(org.maker)).get_json()
        page = client.get("/api/v1/tasks?limit=2&offset=0", headers=as_actor(org.maker)).get_json()

        assert overdue["total"] == 1
        assert overdue["items"][0]["priority"] == "critical"
        assert overdue["items"][0]["overdue"] is True
        assert page["total"] == 3 and len(page["items"]) == 2

    def test_worklist_for_admin_includes_unassigned(self, client, org, make_compliance, task, as_actor):
        make_compliance()

        res = client.get("/api/v1/tasks/worklist", headers=as_actor(org.admin))

        body = res.get_json()
        assert body["counts"]["assigned"] == 1
        assert body["counts"]["unassigned"] == 1

    def test_history_lists_transitions(self, client, org, task, as_actor):
        client.post(f"/api/v1/tasks/{task.id}/submit", json={"remarks": "done"}, headers=as_actor(org.maker))
        client.post(f"/api/v1/tasks/{task.id}/approve", json={"remarks": "ok"}, headers=as_actor(org.checker))

        res = client.get(f"/api/v1/tasks/{task.id}/history", headers=as_actor(org.maker))

        actions = [e["action"] for e in res.get_json()["events"]]
        assert actions == ["task.submit", "task.approve"]
