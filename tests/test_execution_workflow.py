"""
Tests for grc/services/execution_workflow.py

Covers:
  1. Transition table: valid edges, terminal states, unknown actions
  2. submit_execution: evidence gate, auto-status, due date, remediation
  3. save_execution_result: parsing, recompute, terminal guard
  4. upsert_execution_for_period: create vs update, boolean inference
  5. Evidence and bulk recompute
"""

from datetime import datetime, timedelta, timezone

import pytest

from grc.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from grc.models import db
from grc.models.action_plan import ActionPlan
from grc.models.audit import AuditLog
from grc.models.compliance import KpiExecution
from grc.services import execution_workflow as wf


def _audit_actions(execution_id):
    return [
        row.action
        for row in AuditLog.query.filter_by(entity_type="execution", entity_id=str(execution_id))
        .order_by(AuditLog.id)
    ]


# ── 1. Transition table ─────────────────────────────────────────────────────


class TestTransition:
    @pytest.mark.parametrize("current,action,expected", [
        ("in_progress", "submit", "submitted"),
        ("needs_changes", "submit", "submitted"),
        ("submitted", "start_review", "under_review"),
        ("needs_changes", "start_review", "under_review"),
        ("submitted", "approve", "approved"),
        ("under_review", "reject", "rejected"),
        ("under_review", "request_changes", "needs_changes"),
    ])
    def test_valid_edges(self, make_kpi, make_execution, current, action, expected):
        execution = make_execution(make_kpi(), workflow_status=current)
        assert wf.transition(execution, action).value == expected

    @pytest.mark.parametrize("terminal", ["approved", "rejected"])
    def test_terminal_states_refuse_everything(self, make_kpi, make_execution, terminal):
        execution = make_execution(make_kpi(), workflow_status=terminal)
        for action in wf.WORKFLOW_TRANSITIONS:
            with pytest.raises(InvalidTransitionError, match="final state"):
                wf.transition(execution, action)

    def test_approve_requires_submission(self, make_kpi, make_execution):
        execution = make_execution(make_kpi(), workflow_status="in_progress")
        with pytest.raises(InvalidTransitionError):
            wf.transition(execution, "approve")

    def test_unknown_action(self, make_kpi, make_execution):
        execution = make_execution(make_kpi())
        with pytest.raises(InvalidTransitionError, match="unknown action"):
            wf.transition(execution, "teleport")

    def test_transition_does_not_mutate(self, make_kpi, make_execution):
        execution = make_execution(make_kpi())
        wf.transition(execution, "submit")
        assert execution.workflow_status == "in_progress"


# ── 2. submit_execution ─────────────────────────────────────────────────────


class TestSubmitExecution:
    def test_submit_in_target_sets_fields_and_creates_no_plan(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), result_numeric=100)
        before = datetime.now(timezone.utc)

        wf.submit_execution(ctx, execution.id)

        assert execution.workflow_status == "submitted"
        assert execution.auto_status == "in_target"
        assert execution.submitted_at is not None
        due = execution.review_due_date
        if due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        assert timedelta(days=4, hours=23) < due - before <= timedelta(days=5, minutes=1)
        assert ActionPlan.query.filter_by(execution_id=execution.id).count() == 0
        assert "execution.submitted" in _audit_actions(execution.id)

    def test_submit_out_of_target_opens_high_priority_plan(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(code="KPI-OUT"), result_numeric=50)

        wf.submit_execution(ctx, execution.id)

        plan = ActionPlan.query.filter_by(execution_id=execution.id).one()
        assert plan.priority == "high"
        assert plan.status == "not_started"
        assert plan.title == "Action plan • CTL-KPI-OUT • KPI-OUT"
        assert (plan.due_date - datetime.now(timezone.utc).date()).days == 14

    def test_submit_warning_opens_medium_priority_plan(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), result_numeric=96)
        wf.submit_execution(ctx, execution.id)
        assert ActionPlan.query.filter_by(execution_id=execution.id).one().priority == "medium"

    def test_resubmit_does_not_duplicate_plan(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), result_numeric=50)
        wf.submit_execution(ctx, execution.id)
        wf.submit_execution(ctx, execution.id)
        assert ActionPlan.query.filter_by(execution_id=execution.id).count() == 1

    def test_evidence_gate_blocks_without_writes(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(evidence_required=True), result_numeric=100)

        with pytest.raises(ValidationError, match="requires evidence"):
            wf.submit_execution(ctx, execution.id)

        assert execution.workflow_status == "in_progress"
        assert execution.submitted_at is None
        assert _audit_actions(execution.id) == []

    def test_evidence_gate_passes_with_evidence(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(evidence_required=True), result_numeric=100)
        wf.add_evidence(ctx, execution.id, "Access review export", file_url="s3://bucket/export.xlsx")

        wf.submit_execution(ctx, execution.id)

        assert execution.workflow_status == "submitted"

    @pytest.mark.parametrize("terminal", ["approved", "rejected"])
    def test_submit_terminal_raises_and_writes_nothing(self, ctx, make_kpi, make_execution, terminal):
        execution = make_execution(make_kpi(), result_numeric=50, workflow_status=terminal)

        with pytest.raises(InvalidTransitionError):
            wf.submit_execution(ctx, execution.id)

        assert execution.workflow_status == terminal
        assert execution.auto_status == "unknown"
        assert ActionPlan.query.count() == 0
        assert _audit_actions(execution.id) == []

    def test_submit_other_tenant_is_not_found(self, other_tenant, make_kpi, make_execution):
        from grc.core.context import TenantContext

        execution = make_execution(make_kpi())
        with pytest.raises(NotFoundError):
            wf.submit_execution(TenantContext(tenant_id=other_tenant.id), execution.id)


# ── 3. save_execution_result ────────────────────────────────────────────────


class TestSaveExecutionResult:
    def test_updates_result_and_auto_status_only(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), result_numeric=50, workflow_status="needs_changes")

        wf.save_execution_result(ctx, execution.id, result_numeric="97,5", result_notes="Recounted")

        assert execution.result_numeric == 97.5
        assert execution.auto_status == "warning"
        assert execution.result_notes == "Recounted"
        assert execution.workflow_status == "needs_changes"
        assert "execution.result_saved" in _audit_actions(execution.id)

    @pytest.mark.parametrize("bad", ["abc", "nan", "inf", float("inf"), True])
    def test_malformed_numeric_rejected(self, ctx, make_kpi, make_execution, bad):
        execution = make_execution(make_kpi(), result_numeric=100)
        with pytest.raises(ValidationError):
            wf.save_execution_result(ctx, execution.id, result_numeric=bad)
        assert execution.result_numeric == 100

    def test_malformed_boolean_rejected(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(kpi_type="boolean", target_boolean=True, target_value=None))
        with pytest.raises(ValidationError):
            wf.save_execution_result(ctx, execution.id, result_boolean="maybe")

    def test_terminal_execution_is_read_only(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), result_numeric=100, workflow_status="approved")
        with pytest.raises(InvalidTransitionError):
            wf.save_execution_result(ctx, execution.id, result_numeric=1)
        assert execution.result_numeric == 100


# ── 4. upsert_execution_for_period ──────────────────────────────────────────


class TestUpsertForPeriod:
    def test_creates_then_updates_same_month(self, ctx, make_kpi):
        kpi = make_kpi()

        first, created = wf.upsert_execution_for_period(ctx, kpi.id, "2026-02", result_numeric=90)
        second, created_again = wf.upsert_execution_for_period(ctx, kpi.id, "2026-02", result_numeric=101)

        assert created is True and created_again is False
        assert first.id == second.id
        assert second.period_start.isoformat() == "2026-02-01"
        assert second.period_end.isoformat() == "2026-02-28"
        assert second.auto_status == "in_target"
        assert KpiExecution.query.filter_by(kpi_id=kpi.id).count() == 1

    def test_boolean_kpi_infers_result_from_numeric(self, ctx, make_kpi):
        kpi = make_kpi(kpi_type="boolean", target_boolean=True, target_value=None)

        execution, _ = wf.upsert_execution_for_period(ctx, kpi.id, "2026-03", result_numeric=0)

        assert execution.result_boolean is False
        assert execution.auto_status == "out_of_target"

    @pytest.mark.parametrize("period", ["2026-13", "03/2026", "", "2026-3"])
    def test_bad_period(self, ctx, make_kpi, period):
        with pytest.raises(ValidationError):
            wf.upsert_execution_for_period(ctx, make_kpi().id, period, result_numeric=1)


# ── 5. Evidence & recompute ─────────────────────────────────────────────────


class TestEvidenceAndRecompute:
    def test_add_evidence_requires_title_or_url(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi())
        with pytest.raises(ValidationError):
            wf.add_evidence(ctx, execution.id, "  ")

    def test_add_evidence_blocked_on_terminal(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi(), workflow_status="rejected")
        with pytest.raises(InvalidTransitionError):
            wf.add_evidence(ctx, execution.id, "late evidence")

    def test_delete_evidence(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi())
        evidence = wf.add_evidence(ctx, execution.id, "screenshot")
        wf.delete_evidence(ctx, evidence.id)
        assert wf.count_evidences(ctx.tenant_id, execution.id) == 0

    def test_recompute_all_after_target_change(self, ctx, make_kpi, make_execution):
        kpi = make_kpi()
        execution = make_execution(kpi, result_numeric=96, auto_status="unknown")

        result = wf.recompute_all_auto_statuses(ctx)
        assert result == {"total": 1, "changed": 1}
        assert execution.auto_status == "warning"

        kpi.target_value = 90
        db.session.flush()
        wf.recompute_auto_status(ctx, execution.id)
        assert execution.auto_status == "in_target"

    def test_recompute_all_is_tenant_scoped(self, ctx, other_tenant, make_control, make_kpi, make_execution):
        foreign_kpi = make_kpi(code="KPI-X", control=make_control(code="CTL-X", tenant_id=other_tenant.id))
        foreign = make_execution(foreign_kpi, result_numeric=10)

        assert wf.recompute_all_auto_statuses(ctx)["total"] == 0
        assert foreign.auto_status == "unknown"
