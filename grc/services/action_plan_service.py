"""
Action plan service: manual plans, status updates, listing.

Automatic plans are opened by ``remediation_trigger``; this module covers
what users do by hand. Reopening a done plan is refused with
InvariantViolationError when its origin already has another open plan.

Transaction policy: functions flush, never commit. The route handler commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from grc.core.context import TenantContext
from grc.core.enums import ActionPlanStatus, Priority
from grc.core.exceptions import InvariantViolationError, ValidationError
from grc.models import db
from grc.models.action_plan import ActionPlan
from grc.models.audit import write_audit
from grc.models.compliance import KpiExecution
from grc.models.risk import Risk
from grc.services import remediation_trigger
from grc.services.helpers.scoped_queries import get_scoped
from grc.utils.helpers import parse_date

logger = logging.getLogger(__name__)


def create_manual_plan(ctx: TenantContext, data: dict) -> ActionPlan:
    """Create a plan by hand.

    A plan tied to a risk or execution respects the one-open-plan rule and
    raises InvariantViolationError when that origin already has one open.
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if data.get("risk_id") and data.get("execution_id"):
        raise ValidationError(
            "An action plan has at most one origin: risk_id or execution_id",
            details={"origin": "ambiguous"},
        )

    due_date = parse_date(data.get("due_date"))
    if data.get("due_date") and due_date is None:
        raise ValidationError(
            f"due_date is not a valid date: {data['due_date']!r}", details={"due_date": "invalid"},
        )

    plan = ActionPlan(
        tenant_id=ctx.tenant_id,
        title=title[:300],
        description=data.get("description", ""),
        responsible_name=data.get("responsible_name"),
        due_date=due_date,
        priority=Priority.parse(data.get("priority") or Priority.MEDIUM, field="priority").value,
        status=ActionPlanStatus.parse(data.get("status") or ActionPlanStatus.NOT_STARTED, field="status").value,
    )
    if plan.status == ActionPlanStatus.DONE.value:
        plan.completed_at = datetime.now(timezone.utc)
    if data.get("risk_id"):
        plan.risk_id = get_scoped(Risk, data["risk_id"], tenant_id=ctx.tenant_id).id
    if data.get("execution_id"):
        execution = get_scoped(KpiExecution, data["execution_id"], tenant_id=ctx.tenant_id)
        plan.execution_id = execution.id
        plan.control_id = execution.control_id
        plan.kpi_id = execution.kpi_id

    if plan.origin_type != "manual" and plan.is_open:
        existing = remediation_trigger.find_open_plan(
            ctx.tenant_id, risk_id=plan.risk_id, execution_id=plan.execution_id,
        )
        if existing is not None:
            raise InvariantViolationError(
                plan.origin_type, plan.risk_id or plan.execution_id, existing.id,
            )

    outcome = remediation_trigger.insert_plan(ctx, plan, strict=True)
    return db.session.get(ActionPlan, outcome.plan_id)


def update_action_plan_status(ctx: TenantContext, plan_id: int, status) -> ActionPlan:
    """Move a plan to ``status``; done stamps completed_at, reopening clears it."""
    plan = get_scoped(ActionPlan, plan_id, tenant_id=ctx.tenant_id)
    new_status = ActionPlanStatus.parse(status, field="status")
    old_status = plan.status
    if new_status.value == old_status:
        return plan

    reopening = old_status == ActionPlanStatus.DONE.value
    if reopening and plan.origin_type != "manual":
        existing = remediation_trigger.find_open_plan(
            ctx.tenant_id, risk_id=plan.risk_id, execution_id=plan.execution_id,
        )
        if existing is not None and existing.id != plan.id:
            raise InvariantViolationError(
                plan.origin_type, plan.risk_id or plan.execution_id, existing.id,
            )

    try:
        with db.session.begin_nested():
            plan.status = new_status.value
            plan.completed_at = (
                datetime.now(timezone.utc) if new_status is ActionPlanStatus.DONE else None
            )
            db.session.flush()
    except IntegrityError:
        raise InvariantViolationError(plan.origin_type, plan.risk_id or plan.execution_id) from None

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="action_plan",
        entity_id=plan.id,
        action="action_plan.status_changed",
        actor_user_id=ctx.user_id,
        diff={"status": {"old": old_status, "new": plan.status}},
    )
    logger.info("Action plan %s %s → %s tenant=%s", plan.id, old_status, plan.status, ctx.tenant_id)
    return plan


def list_action_plans(ctx: TenantContext, filters: dict | None = None):
    """Query of the tenant's plans, filtered by status / origin; caller paginates."""
    filters = filters or {}
    query = ActionPlan.query_for_tenant(ctx.tenant_id)

    status = filters.get("status")
    if status == "open":
        query = query.filter(ActionPlan.status != ActionPlanStatus.DONE.value)
    elif status:
        query = query.filter(ActionPlan.status == ActionPlanStatus.parse(status, field="status").value)

    for key in ("risk_id", "execution_id", "control_id", "kpi_id"):
        if filters.get(key) not in (None, ""):
            query = query.filter(getattr(ActionPlan, key) == filters[key])

    origin = filters.get("origin_type")
    if origin == "risk":
        query = query.filter(ActionPlan.risk_id.isnot(None))
    elif origin == "execution":
        query = query.filter(ActionPlan.execution_id.isnot(None))
    elif origin == "manual":
        query = query.filter(ActionPlan.risk_id.is_(None), ActionPlan.execution_id.is_(None))

    return query.order_by(ActionPlan.due_date.is_(None), ActionPlan.due_date, ActionPlan.id)
