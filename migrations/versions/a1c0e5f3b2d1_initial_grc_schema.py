"""initial_grc_schema

Creates the compliance tracker schema:
  - tenants, users
  - controls, kpis, kpi_executions, evidences, grc_reviews
  - risks, risk_assessments
  - action_plans (+ partial unique indexes: one open plan per origin)
  - audit_logs

Revision ID: a1c0e5f3b2d1
Revises:
Create Date: 2026-10-17 09:12:40.218503
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c0e5f3b2d1'
down_revision = None
branch_labels = None
depends_on = None

_OPEN_RISK = sa.text("risk_id IS NOT NULL AND status <> 'done'")
_OPEN_EXECUTION = sa.text("execution_id IS NOT NULL AND status <> 'done'")


def _tenant_fk():
    return sa.Column(
        "tenant_id", sa.Integer(),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )


def _user_fk(name):
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def _timestamps(updated=True):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return cols


def upgrade():
    # ── Tenancy ───────────────────────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    # ── Controls & KPIs ───────────────────────────────────────────────────
    op.create_table(
        "controls",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("control_code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("frequency", sa.String(length=30), nullable=True),
        sa.Column("framework", sa.String(length=50), nullable=True),
        sa.Column("owner_name", sa.String(length=150), nullable=True),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("tenant_id", "control_code", name="uq_controls_tenant_code"),
    )
    op.create_index("ix_controls_tenant_id", "controls", ["tenant_id"])

    op.create_table(
        "kpis",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("control_id", sa.Integer(), sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kpi_code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("kpi_type", sa.String(length=20), nullable=False),
        sa.Column("target_operator", sa.String(length=10), nullable=False),
        sa.Column("target_value", sa.Float(), nullable=True),
        sa.Column("target_boolean", sa.Boolean(), nullable=True),
        sa.Column("warning_buffer_pct", sa.Float(), nullable=False),
        sa.Column("evidence_required", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "kpi_code", name="uq_kpis_tenant_code"),
    )
    op.create_index("ix_kpis_tenant_id", "kpis", ["tenant_id"])
    op.create_index("ix_kpis_control_id", "kpis", ["control_id"])

    op.create_table(
        "kpi_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("control_id", sa.Integer(), sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kpi_id", sa.Integer(), sa.ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("result_numeric", sa.Float(), nullable=True),
        sa.Column("result_boolean", sa.Boolean(), nullable=True),
        sa.Column("result_notes", sa.Text(), nullable=True),
        sa.Column("auto_status", sa.String(length=20), nullable=False),
        sa.Column("workflow_status", sa.String(length=20), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_due_date", sa.DateTime(timezone=True), nullable=True),
        _user_fk("created_by"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "kpi_id", "period_start", name="uq_kpi_executions_period"),
    )
    op.create_index("ix_kpi_executions_tenant_id", "kpi_executions", ["tenant_id"])
    op.create_index("ix_kpi_executions_control_id", "kpi_executions", ["control_id"])
    op.create_index("ix_kpi_executions_kpi_id", "kpi_executions", ["kpi_id"])
    op.create_index("ix_kpi_executions_workflow_status", "kpi_executions", ["workflow_status"])
    op.create_index("ix_kpi_executions_tenant_workflow", "kpi_executions", ["tenant_id", "workflow_status"])

    op.create_table(
        "evidences",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("execution_id", sa.Integer(),
                  sa.ForeignKey("kpi_executions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("file_url", sa.String(length=1000), nullable=True),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        _user_fk("created_by"),
        *_timestamps(updated=False),
    )
    op.create_index("ix_evidences_tenant_id", "evidences", ["tenant_id"])
    op.create_index("ix_evidences_execution_id", "evidences", ["execution_id"])

    op.create_table(
        "grc_reviews",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("execution_id", sa.Integer(),
                  sa.ForeignKey("kpi_executions.id", ondelete="CASCADE"), nullable=False),
        _user_fk("reviewer_user_id"),
        sa.Column("decision", sa.String(length=20), nullable=False),
        sa.Column("review_comment", sa.Text(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "execution_id", name="uq_grc_reviews_execution"),
    )
    op.create_index("ix_grc_reviews_tenant_id", "grc_reviews", ["tenant_id"])
    op.create_index("ix_grc_reviews_execution_id", "grc_reviews", ["execution_id"])

    # ── Risks ─────────────────────────────────────────────────────────────
    op.create_table(
        "risks",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("domain", sa.String(length=100), nullable=True),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=True),
        sa.Column("impact", sa.Integer(), nullable=False),
        sa.Column("likelihood", sa.Integer(), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("classification", sa.String(length=20), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_risks_tenant_id", "risks", ["tenant_id"])
    op.create_index("ix_risks_status", "risks", ["status"])
    op.create_index("ix_risks_classification", "risks", ["classification"])

    op.create_table(
        "risk_assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("risk_id", sa.Integer(), sa.ForeignKey("risks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("impact", sa.Integer(), nullable=False),
        sa.Column("likelihood", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("classification", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _user_fk("assessed_by"),
        sa.Column("assessed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_risk_assessments_tenant_id", "risk_assessments", ["tenant_id"])
    op.create_index("ix_risk_assessments_risk_id", "risk_assessments", ["risk_id"])

    # ── Action plans ──────────────────────────────────────────────────────
    op.create_table(
        "action_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("risk_id", sa.Integer(), sa.ForeignKey("risks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("execution_id", sa.Integer(),
                  sa.ForeignKey("kpi_executions.id", ondelete="SET NULL"), nullable=True),
        sa.Column("control_id", sa.Integer(), sa.ForeignKey("controls.id", ondelete="SET NULL"), nullable=True),
        sa.Column("kpi_id", sa.Integer(), sa.ForeignKey("kpis.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("responsible_name", sa.String(length=200), nullable=True),
        _user_fk("owner_user_id"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("risk_id IS NULL OR execution_id IS NULL", name="ck_action_plans_single_origin"),
    )
    for col in ("tenant_id", "risk_id", "execution_id", "control_id", "kpi_id", "status"):
        op.create_index(f"ix_action_plans_{col}", "action_plans", [col])
    op.create_index(
        "uq_action_plans_open_per_risk", "action_plans", ["tenant_id", "risk_id"],
        unique=True, postgresql_where=_OPEN_RISK, sqlite_where=_OPEN_RISK,
    )
    op.create_index(
        "uq_action_plans_open_per_execution", "action_plans", ["tenant_id", "execution_id"],
        unique=True, postgresql_where=_OPEN_EXECUTION, sqlite_where=_OPEN_EXECUTION,
    )

    # ── Audit ─────────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        _user_fk("actor_user_id"),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["tenant_id", "entity_type", "entity_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade():
    for table in (
        "audit_logs", "action_plans", "risk_assessments", "risks",
        "grc_reviews", "evidences", "kpi_executions", "kpis", "controls",
        "users", "tenants",
    ):
        op.drop_table(table)
