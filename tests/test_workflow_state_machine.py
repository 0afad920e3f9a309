"""
State-machine tests for the maker/checker task lifecycle.

Edges (TASK_TRANSITIONS in ``compliance_desk/models/task.py``):
    - draft     -> submitted   (submit, maker)
    - submitted -> approved    (approve, checker)
    - submitted -> rejected    (reject, checker)
    - submitted -> draft       (send_back, checker)
    - rejected  -> draft       (reopen, maker)

For each edge:
    - The owning party moves the task and side effects are written.
    - Every other starting status fails with PreconditionFailed and mutates nothing.
    - The wrong party fails with Forbidden and mutates nothing.

Plus guard ordering, input validation, evidence upload and the optimistic
concurrency check.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from compliance_desk.core.exceptions import (
    Forbidden,
    NotFound,
    PreconditionFailed,
    UpstreamUnavailable,
    ValidationFailed,
)
from compliance_desk.integrations.document_store import DocumentUpload
from compliance_desk.models import db
from compliance_desk.models.audit import AuditLog
from compliance_desk.models.notification import Notification
from compliance_desk.models.task import TASK_STATUSES, TASK_TRANSITIONS, EscalationRecord, TaskInstance
from compliance_desk.services import change_feed, workflow_service
from compliance_desk.services.notification import register_channel

REMARKS = {"submit": "Filed on portal", "send_back": "Attach the acknowledgement"}


def _actor_for(org, action):
    return org.maker if TASK_TRANSITIONS[action]["actor"] == "maker" else org.checker


def _invalid_pairs():
    """(action, status) pairs where the action must not be accepted."""
    return [
        (action, status)
        for action, rule in TASK_TRANSITIONS.items()
        for status in TASK_STATUSES
        if status not in rule["from"]
    ]


@pytest.fixture()
def compliance(make_compliance):
    return make_compliance(name="GST Return")


# ═════════════════════════════════════════════════════════════════════════════
# Valid edges
# ═════════════════════════════════════════════════════════════════════════════


class TestValidTransitions:

    @pytest.mark.parametrize("action", sorted(TASK_TRANSITIONS))
    def test_owning_party_moves_task(self, org, compliance, make_task, action):
        rule = TASK_TRANSITIONS[action]
        start = sorted(rule["from"])[0]
        task = make_task(compliance, org.maker, org.checker, status=start)

        result = workflow_service.transition_task(
            task.id, action, _actor_for(org, action).id, remarks=REMARKS.get(action),
        )

        assert result.status == rule["to"]
        assert db.session.get(TaskInstance, task.id).status == rule["to"]

    def test_submit_records_remarks_and_timestamp(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, checker_remarks="old note")

        result = workflow_service.submit_task(task.id, org.maker.id, "  Filed  ")

        assert result.status == "submitted"
        assert result.maker_remarks == "Filed"
        assert result.submitted_at is not None
        assert result.checker_remarks is None

    def test_approve_without_remarks_uses_default(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        result = workflow_service.approve_task(task.id, org.checker.id)

        assert result.checker_remarks == workflow_service.DEFAULT_APPROVE_REMARKS
        assert result.completed_at is not None

    def test_reject_without_remarks_uses_default(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        result = workflow_service.reject_task(task.id, org.checker.id)

        assert result.status == "rejected"
        assert result.checker_remarks == workflow_service.DEFAULT_REJECT_REMARKS

    def test_send_back_clears_submission_and_resets_escalation(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted", escalation_level=2)
        db.session.add(EscalationRecord(task_id=task.id, escalation_level=2,
                                        escalated_to="department head", reason="3 days overdue"))
        db.session.commit()

        result = workflow_service.send_back_task(task.id, org.checker.id, "Wrong period")

        assert result.status == "draft"
        assert result.checker_remarks == "Wrong period"
        assert result.submitted_at is None
        assert result.escalation_level == 0
        assert all(r.resolved for r in EscalationRecord.query.filter_by(task_id=task.id))

    def test_terminal_action_resolves_open_escalations(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted", escalation_level=1)
        db.session.add(EscalationRecord(task_id=task.id, escalation_level=1,
                                        escalated_to="maker's direct supervisor", reason="1 days overdue"))
        db.session.commit()

        result = workflow_service.approve_task(task.id, org.checker.id)

        assert result.escalation_level == 1
        record = EscalationRecord.query.filter_by(task_id=task.id).one()
        assert record.resolved is True
        assert record.resolved_at is not None

    def test_reopen_returns_rejected_task_to_draft(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="rejected")

        result = workflow_service.reopen_task(task.id, org.maker.id)

        assert result.status == "draft"
        assert result.completed_at is None

    def test_admin_may_perform_any_edge(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        result = workflow_service.approve_task(task.id, org.admin.id)

        assert result.status == "approved"


# ═════════════════════════════════════════════════════════════════════════════
# Invalid starting states
# ═════════════════════════════════════════════════════════════════════════════


class TestInvalidTransitions:

    @pytest.mark.parametrize("action,status", _invalid_pairs())
    def test_wrong_status_is_precondition_failed(self, org, compliance, make_task, action, status):
        task = make_task(compliance, org.maker, org.checker, status=status)

        with pytest.raises(PreconditionFailed) as exc_info:
            workflow_service.transition_task(
                task.id, action, _actor_for(org, action).id, remarks=REMARKS.get(action),
            )

        assert type(exc_info.value) is PreconditionFailed
        assert exc_info.value.current_status == status
        assert db.session.get(TaskInstance, task.id).status == status

    def test_status_guard_runs_before_actor_guard(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="approved")

        # the outsider does not own the edge, but the state is checked first
        with pytest.raises(PreconditionFailed) as exc_info:
            workflow_service.approve_task(task.id, org.outsider.id)

        assert type(exc_info.value) is PreconditionFailed

    def test_missing_task_is_not_found(self, org):
        with pytest.raises(NotFound):
            workflow_service.submit_task("no-such-task", org.maker.id, "x")

    def test_unknown_action_is_validation_failed(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(ValidationFailed):
            workflow_service.transition_task(task.id, "escalate", org.maker.id)


# ═════════════════════════════════════════════════════════════════════════════
# Actor guard
# ═════════════════════════════════════════════════════════════════════════════


class TestActorGuard:

    def test_checker_cannot_submit(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(Forbidden):
            workflow_service.submit_task(task.id, org.checker.id, "done")

        assert db.session.get(TaskInstance, task.id).status == "draft"

    def test_maker_cannot_approve_own_task(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        with pytest.raises(Forbidden):
            workflow_service.approve_task(task.id, org.maker.id)

        assert db.session.get(TaskInstance, task.id).status == "submitted"

    def test_other_maker_cannot_submit(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(Forbidden):
            workflow_service.submit_task(task.id, org.maker2.id, "done")

    def test_unassigned_checker_cannot_approve(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        with pytest.raises(Forbidden):
            workflow_service.approve_task(task.id, org.supervisor.id)

    def test_task_without_checker_only_admin_approves(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, None, status="submitted")

        with pytest.raises(Forbidden):
            workflow_service.approve_task(task.id, org.checker.id)
        assert workflow_service.approve_task(task.id, org.admin.id).status == "approved"

    def test_inactive_employee_is_forbidden(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)
        org.maker.status = "inactive"
        db.session.commit()

        with pytest.raises(Forbidden):
            workflow_service.submit_task(task.id, org.maker.id, "done")


# ═════════════════════════════════════════════════════════════════════════════
# Input validation
# ═════════════════════════════════════════════════════════════════════════════


class TestInputValidation:

    @pytest.mark.parametrize("remarks", [None, "", "   "])
    def test_submit_requires_remarks(self, org, compliance, make_task, remarks):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(ValidationFailed):
            workflow_service.submit_task(task.id, org.maker.id, remarks)

        assert db.session.get(TaskInstance, task.id).status == "draft"

    def test_send_back_requires_remarks(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        with pytest.raises(ValidationFailed):
            workflow_service.send_back_task(task.id, org.checker.id, "")

        assert db.session.get(TaskInstance, task.id).status == "submitted"

    def test_document_only_on_submit(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")
        doc = DocumentUpload(filename="proof.pdf", content=b"%PDF")

        with pytest.raises(ValidationFailed):
            workflow_service.transition_task(task.id, "approve", org.checker.id, document=doc)


# ═════════════════════════════════════════════════════════════════════════════
# Evidence upload
# ═════════════════════════════════════════════════════════════════════════════


class _RecordingStore:
    def __init__(self):
        self.calls = []

    def store(self, data, name):
        self.calls.append((name, data))
        return f"https://docs.example.com/{name}"


class _FailingStore:
    def store(self, data, name):
        raise UpstreamUnavailable("document store", "timeout")


class TestEvidenceUpload:

    def test_submit_with_document_stores_url(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)
        store = _RecordingStore()

        result = workflow_service.submit_task(
            task.id, org.maker.id, "see attached",
            document=DocumentUpload(filename="GST return.pdf", content=b"%PDF-1.4"), store=store,
        )

        assert store.calls == [("GST_return.pdf", b"%PDF-1.4")]
        assert result.document_url == "https://docs.example.com/GST_return.pdf"

    def test_failed_upload_leaves_task_in_draft(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(UpstreamUnavailable):
            workflow_service.submit_task(
                task.id, org.maker.id, "see attached",
                document=DocumentUpload(filename="proof.pdf", content=b"%PDF"), store=_FailingStore(),
            )

        db.session.expire_all()
        task = db.session.get(TaskInstance, task.id)
        assert task.status == "draft"
        assert task.document_url is None

    def test_disallowed_extension_rejected_before_upload(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)
        store = _RecordingStore()

        with pytest.raises(ValidationFailed):
            workflow_service.submit_task(
                task.id, org.maker.id, "x",
                document=DocumentUpload(filename="run.exe", content=b"MZ"), store=store,
            )
        assert store.calls == []


# ═════════════════════════════════════════════════════════════════════════════
# Side effects
# ═════════════════════════════════════════════════════════════════════════════


class TestSideEffects:

    def test_submit_notifies_checker(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)
        delivered = []
        register_channel(delivered.append)

        workflow_service.submit_task(task.id, org.maker.id, "done")

        notes = Notification.query.filter_by(task_id=task.id).all()
        assert [(n.recipient, n.type) for n in notes] == [(org.checker.id, "approval")]
        assert delivered == notes

    def test_submit_without_checker_notifies_admins(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, None)

        workflow_service.submit_task(task.id, org.maker.id, "done")

        recipients = {n.recipient for n in Notification.query.filter_by(task_id=task.id)}
        assert recipients == {org.admin.id}

    @pytest.mark.parametrize("action,ntype", [
        ("approve", "approval"), ("reject", "alert"), ("send_back", "alert"),
    ])
    def test_checker_decision_notifies_maker(self, org, compliance, make_task, action, ntype):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        workflow_service.transition_task(task.id, action, org.checker.id, remarks="noted")

        note = Notification.query.filter_by(task_id=task.id).one()
        assert note.recipient == org.maker.id
        assert note.type == ntype

    def test_failing_channel_does_not_break_transition(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        def _broken(_notification):
            raise RuntimeError("smtp down")

        register_channel(_broken)
        result = workflow_service.submit_task(task.id, org.maker.id, "done")

        assert result.status == "submitted"

    def test_history_lists_audit_events_in_order(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)
        workflow_service.submit_task(task.id, org.maker.id, "v1")
        workflow_service.send_back_task(task.id, org.checker.id, "fix")
        workflow_service.submit_task(task.id, org.maker.id, "v2")
        workflow_service.approve_task(task.id, org.checker.id)

        history = workflow_service.task_history(task.id)

        assert [e["action"] for e in history["events"]] == [
            "task.submit", "task.send_back", "task.submit", "task.approve",
        ]
        assert history["events"][0]["diff"]["status"] == {"old": "draft", "new": "submitted"}

    def test_transition_publishes_change_event(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        workflow_service.submit_task(task.id, org.maker.id, "done")

        items = change_feed.changes_since(0, table="compliance_assignments")["items"]
        assert items[-1]["record"]["id"] == task.id
        assert items[-1]["record"]["status"] == "submitted"

    def test_failed_guard_writes_nothing(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker)

        with pytest.raises(Forbidden):
            workflow_service.submit_task(task.id, org.checker.id, "done")

        assert AuditLog.query.count() == 0
        assert Notification.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Optimistic concurrency
# ═════════════════════════════════════════════════════════════════════════════


class TestConcurrentUpdates:

    def test_stale_read_loses_to_committed_decision(self, org, compliance, make_task):
        """Checker B acts on a stale 'submitted' read after checker A approved."""
        task = make_task(compliance, org.maker, org.checker, status="submitted")
        db.session.execute(
            update(TaskInstance).where(TaskInstance.id == task.id)
            .values(status="approved").execution_options(synchronize_session=False)
        )
        db.session.commit()
        stale = db.session.get(TaskInstance, task.id)
        set_committed_value(stale, "status", "submitted")

        with pytest.raises(PreconditionFailed) as exc_info:
            workflow_service.reject_task(task.id, org.checker.id, "too late")

        assert exc_info.value.reason == "task was modified concurrently"
        assert exc_info.value.current_status == "approved"
        db.session.expire_all()
        assert db.session.get(TaskInstance, task.id).status == "approved"
        assert AuditLog.query.filter_by(action="task.reject").count() == 0

    def test_second_decision_sees_first(self, org, compliance, make_task):
        task = make_task(compliance, org.maker, org.checker, status="submitted")

        workflow_service.approve_task(task.id, org.checker.id)
        with pytest.raises(PreconditionFailed):
            workflow_service.reject_task(task.id, org.checker.id)

        assert db.session.get(TaskInstance, task.id).status == "approved"
