"""initial_compliance_workflow_schema

Create directory, compliance catalogue, assignment pool, task, escalation,
notification, audit and scheduler tables.

Revision ID: 0a1b2c3d4e51
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e51"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "employees" not in existing_tables:
        op.create_table(
            "employees",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("emp_id", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("department_code", sa.String(length=30), nullable=True),
            sa.Column("designation", sa.String(length=120), nullable=True),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("role_name", sa.String(length=30), nullable=False, server_default="maker"),
            sa.Column("supervisor_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["supervisor_id"], ["employees.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("emp_id"),
        )
        op.create_index("ix_employees_email", "employees", ["email"], unique=True)
        op.create_index("ix_employees_department_code", "employees", ["department_code"])
        op.create_index("ix_employees_status", "employees", ["status"])

    if "departments" not in existing_tables:
        op.create_table(
            "departments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("head", sa.String(length=200), nullable=True),
            sa.Column("head_employee_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["head_employee_id"], ["employees.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_departments_code", "departments", ["code"], unique=True)

    if "compliances" not in existing_tables:
        op.create_table(
            "compliances",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("compliance_code", sa.String(length=40), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("section", sa.String(length=100), nullable=True),
            sa.Column("compliance_type", sa.String(length=60), nullable=True),
            sa.Column("department_code", sa.String(length=30), nullable=True),
            sa.Column("risk_type", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("frequency", sa.String(length=20), nullable=False, server_default="monthly"),
            sa.Column("next_due", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("compliance_code"),
        )
        op.create_index("ix_compliances_department_code", "compliances", ["department_code"])
        op.create_index("ix_compliances_status", "compliances", ["status"])

    if "compliance_user_assignments" not in existing_tables:
        op.create_table(
            "compliance_user_assignments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("compliance_id", sa.String(length=36), nullable=False),
            sa.Column("employee_id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("assigned_by", sa.String(length=36), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["compliance_id"], ["compliances.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("compliance_id", "employee_id", name="uq_pool_compliance_employee"),
        )
        op.create_index("ix_compliance_user_assignments_compliance_id",
                        "compliance_user_assignments", ["compliance_id"])
        op.create_index("ix_compliance_user_assignments_employee_id",
                        "compliance_user_assignments", ["employee_id"])

    if "compliance_assignments" not in existing_tables:
        op.create_table(
            "compliance_assignments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("compliance_id", sa.String(length=36), nullable=False),
            sa.Column("assigned_to", sa.String(length=36), nullable=False),
            sa.Column("checker_id", sa.String(length=36), nullable=True),
            sa.Column("period", sa.String(length=12), nullable=False, server_default="once"),
            sa.Column("due_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("maker_remarks", sa.Text(), nullable=True),
            sa.Column("checker_remarks", sa.Text(), nullable=True),
            sa.Column("document_url", sa.String(length=1000), nullable=True),
            sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("checker_id IS NULL OR checker_id <> assigned_to",
                               name="ck_task_checker_not_maker"),
            sa.CheckConstraint("escalation_level >= 0", name="ck_task_escalation_level"),
            sa.ForeignKeyConstraint(["compliance_id"], ["compliances.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["employees.id"]),
            sa.ForeignKeyConstraint(["checker_id"], ["employees.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("compliance_id", "assigned_to", "period", name="uq_task_period"),
        )
        op.create_index("ix_compliance_assignments_compliance_id", "compliance_assignments", ["compliance_id"])
        op.create_index("ix_compliance_assignments_assigned_to", "compliance_assignments", ["assigned_to"])
        op.create_index("ix_compliance_assignments_checker_id", "compliance_assignments", ["checker_id"])
        op.create_index("idx_task_status_due", "compliance_assignments", ["status", "due_date"])

    if "escalation_items" not in existing_tables:
        op.create_table(
            "escalation_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("task_id", sa.String(length=36), nullable=False),
            sa.Column("escalation_level", sa.Integer(), nullable=False),
            sa.Column("escalated_to", sa.String(length=100), nullable=False),
            sa.Column("escalated_to_name", sa.String(length=200), nullable=True),
            sa.Column("escalated_to_employee_id", sa.String(length=36), nullable=True),
            sa.Column("reason", sa.String(length=300), nullable=False),
            sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["compliance_assignments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_escalation_items_task_id", "escalation_items", ["task_id"])
        op.create_index("ix_escalation_items_resolved", "escalation_items", ["resolved"])
        op.create_index("idx_escalation_task_level", "escalation_items", ["task_id", "escalation_level"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("recipient", sa.String(length=36), nullable=False, server_default="all"),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="alert"),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("task_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="unread"),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_task_id", "notifications", ["task_id"])
        op.create_index("idx_notification_recipient_status", "notifications", ["recipient", "status"])

    if "notification_reads" not in existing_tables:
        op.create_table(
            "notification_reads",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("notification_id", sa.String(length=36), nullable=False),
            sa.Column("employee_id", sa.String(length=36), nullable=False),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("notification_id", "employee_id", name="uq_notification_read"),
        )
        op.create_index("ix_notification_reads_notification_id", "notification_reads", ["notification_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "audit_logs",
        "notification_reads",
        "notifications",
        "escalation_items",
        "compliance_assignments",
        "compliance_user_assignments",
        "compliances",
        "departments",
        "employees",
    ):
        op.drop_table(table)
