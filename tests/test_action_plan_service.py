"""
Tests for grc/services/action_plan_service.py

Manual plans, status changes (done stamps completed_at, reopening is
refused while the origin has another open plan), and list filters.
"""

import pytest

from grc.core.exceptions import InvariantViolationError, NotFoundError, ValidationError
from grc.models import db
from grc.models.action_plan import ActionPlan
from grc.services import action_plan_service as aps
from grc.services import remediation_trigger


class TestCreateManualPlan:
    def test_plan_without_origin(self, ctx):
        plan = aps.create_manual_plan(ctx, {
            "title": "Refresh SoD matrix", "priority": "high", "due_date": "2026-12-31",
        })
        assert plan.origin_type == "manual"
        assert plan.priority == "high"
        assert plan.status == "not_started"
        assert plan.due_date.isoformat() == "2026-12-31"

    def test_manual_plans_are_unbounded(self, ctx):
        for _ in range(3):
            aps.create_manual_plan(ctx, {"title": "Same title"})
        assert ActionPlan.query.count() == 3

    def test_execution_origin_copies_control_and_kpi(self, ctx, make_kpi, make_execution):
        execution = make_execution(make_kpi())
        plan = aps.create_manual_plan(ctx, {"title": "Fix", "execution_id": execution.id})
        assert (plan.control_id, plan.kpi_id) == (execution.control_id, execution.kpi_id)

    def test_origin_with_open_plan_raises(self, ctx, make_risk):
        risk = make_risk(classification="critical")
        remediation_trigger.ensure_action_plan_for_risk(ctx, risk.id)

        with pytest.raises(InvariantViolationError):
            aps.create_manual_plan(ctx, {"title": "Second", "risk_id": risk.id})
        assert ActionPlan.query.filter_by(risk_id=risk.id).count() == 1

    def test_done_plan_for_busy_origin_is_allowed(self, ctx, make_risk):
        risk = make_risk(classification="critical")
        remediation_trigger.ensure_action_plan_for_risk(ctx, risk.id)

        plan = aps.create_manual_plan(ctx, {"title": "Historic", "risk_id": risk.id, "status": "done"})

        assert plan.completed_at is not None

    def test_two_origins_rejected(self, ctx, make_risk, make_kpi, make_execution):
        with pytest.raises(ValidationError):
            aps.create_manual_plan(ctx, {
                "title": "x", "risk_id": make_risk().id, "execution_id": make_execution(make_kpi()).id,
            })

    def test_title_required(self, ctx):
        with pytest.raises(ValidationError, match="title"):
            aps.create_manual_plan(ctx, {})

    def test_invalid_priority(self, ctx):
        with pytest.raises(ValidationError):
            aps.create_manual_plan(ctx, {"title": "x", "priority": "urgent!!"})

    def test_foreign_origin_is_not_found(self, ctx, other_tenant, make_risk):
        risk = make_risk(tenant_id=other_tenant.id)
        with pytest.raises(NotFoundError):
            aps.create_manual_plan(ctx, {"title": "x", "risk_id": risk.id})


class TestUpdateStatus:
    def test_done_stamps_and_reopen_clears_completed_at(self, ctx):
        plan = aps.create_manual_plan(ctx, {"title": "x"})

        aps.update_action_plan_status(ctx, plan.id, "completed")
        assert plan.status == "done" and plan.completed_at is not None

        aps.update_action_plan_status(ctx, plan.id, "in_progress")
        assert plan.completed_at is None

    def test_reopen_refused_when_origin_has_another_open_plan(self, ctx, make_risk):
        risk = make_risk(classification="critical")
        first = remediation_trigger.ensure_action_plan_for_risk(ctx, risk.id)
        aps.update_action_plan_status(ctx, first.plan_id, "done")
        remediation_trigger.ensure_action_plan_for_risk(ctx, risk.id)

        with pytest.raises(InvariantViolationError):
            aps.update_action_plan_status(ctx, first.plan_id, "in_progress")

        assert db.session.get(ActionPlan, first.plan_id).status == "done"

    def test_same_status_is_a_no_op(self, ctx):
        plan = aps.create_manual_plan(ctx, {"title": "x", "status": "blocked"})
        assert aps.update_action_plan_status(ctx, plan.id, "blocked") is plan

    def test_invalid_status(self, ctx):
        plan = aps.create_manual_plan(ctx, {"title": "x"})
        with pytest.raises(ValidationError):
            aps.update_action_plan_status(ctx, plan.id, "abandoned")


class TestListActionPlans:
    @pytest.fixture()
    def plans(self, ctx, make_risk, make_kpi, make_execution):
        risk_outcome = remediation_trigger.ensure_action_plan_for_risk(ctx, make_risk(classification="high").id)
        execution = make_execution(make_kpi(), auto_status="out_of_target")
        execution_outcome = remediation_trigger.ensure_action_plan_for_execution(
            ctx, execution.id, "auto_status", "Below target",
        )
        manual = aps.create_manual_plan(ctx, {"title": "Manual", "status": "done"})
        return risk_outcome.plan_id, execution_outcome.plan_id, manual.id

    def test_open_filter(self, ctx, plans):
        risk_plan, execution_plan, _ = plans
        ids = {p.id for p in aps.list_action_plans(ctx, {"status": "open"})}
        assert ids == {risk_plan, execution_plan}

    @pytest.mark.parametrize("origin,index", [("risk", 0), ("execution", 1), ("manual", 2)])
    def test_origin_filter(self, ctx, plans, origin, index):
        assert [p.id for p in aps.list_action_plans(ctx, {"origin_type": origin})] == [plans[index]]

    def test_tenant_isolation(self, plans, other_tenant):
        from grc.core.context import TenantContext

        assert aps.list_action_plans(TenantContext(other_tenant.id)).count() == 0
