"""Remediation trigger: opens action plans for risky risks and failing executions.

Transaction policy: functions flush, never commit. The caller (route
handler, or the workflow service that invoked the trigger) commits.

Both origin flavours share one shape:

    1. an open plan (status <> 'done') already exists for the origin
       → nothing is written, outcome ``already_open``
    2. the creation condition does not hold
       → nothing is written, outcome ``classification_ok`` / ``auto_status_ok``
    3. otherwise a plan is inserted → outcome ``created``

Step 1 and the insert are not a read-then-write race: the insert runs in a
SAVEPOINT against the partial unique indexes on ``action_plans``, so when
two triggers for one origin interleave, the loser's insert fails, is rolled
back to the savepoint, and is reported as ``already_open``. Pass
``strict=True`` to get InvariantViolationError instead.

Rule A: a risk-sourced plan is never closed automatically when the risk's
classification later improves. Execution-sourced plans are closed by an
approving review (``close_action_plans_for_execution``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from grc.core.context import TenantContext
from grc.core.enums import ActionPlanStatus, Classification, Priority, Status, Trigger
from grc.core.exceptions import InvariantViolationError
from grc.models import db
from grc.models.action_plan import ActionPlan
from grc.models.audit import write_audit
from grc.models.auth import User
from grc.models.compliance import KpiExecution
from grc.models.risk import Risk
from grc.services.helpers.scoped_queries import get_scoped
from grc.services.helpers.settings import setting

logger = logging.getLogger(__name__)

REASON_ALREADY_OPEN = "already_open"
REASON_CLASSIFICATION_OK = "classification_ok"
REASON_AUTO_STATUS_OK = "auto_status_ok"

_RISK_TRIGGER_CLASSES = {Classification.HIGH, Classification.CRITICAL}
_EXECUTION_TRIGGER_STATUSES = {Status.OUT_OF_TARGET, Status.WARNING}


@dataclass(frozen=True)
class TriggerOutcome:
    created: bool
    reason: str | None = None
    plan_id: int | None = None

    def to_dict(self) -> dict:
        return {"created": self.created, "reason": self.reason, "plan_id": self.plan_id}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def find_open_plan(tenant_id: int, *, risk_id: int | None = None, execution_id: int | None = None):
    """Return the open plan for one origin, or None."""
    stmt = select(ActionPlan).where(
        ActionPlan.tenant_id == tenant_id,
        ActionPlan.status != ActionPlanStatus.DONE.value,
    )
    if risk_id is not None:
        stmt = stmt.where(ActionPlan.risk_id == risk_id)
    elif execution_id is not None:
        stmt = stmt.where(ActionPlan.execution_id == execution_id)
    else:
        raise ValueError("find_open_plan requires risk_id or execution_id")
    return db.session.execute(stmt.order_by(ActionPlan.id).limit(1)).scalar_one_or_none()


def _already_open(origin_type: str, origin_id: int, plan: ActionPlan | None, strict: bool) -> TriggerOutcome:
    plan_id = plan.id if plan is not None else None
    if strict:
        raise InvariantViolationError(origin_type, origin_id, plan_id)
    logger.debug("Action plan already open for %s id=%s (plan id=%s)", origin_type, origin_id, plan_id)
    return TriggerOutcome(created=False, reason=REASON_ALREADY_OPEN, plan_id=plan_id)


def insert_plan(ctx: TenantContext, plan: ActionPlan, *, strict: bool = False) -> TriggerOutcome:
    """Insert ``plan`` inside a savepoint, honouring the one-open-plan-per-origin index.

    Returns ``created`` or ``already_open``; raises InvariantViolationError
    instead of ``already_open`` when ``strict``.
    """
    origin_type = plan.origin_type
    origin_id = plan.risk_id if origin_type == "risk" else plan.execution_id
    try:
        with db.session.begin_nested():
            db.session.add(plan)
            db.session.flush()
    except IntegrityError:
        if origin_type == "manual":
            raise
        existing = find_open_plan(
            ctx.tenant_id,
            risk_id=plan.risk_id if origin_type == "risk" else None,
            execution_id=plan.execution_id if origin_type == "execution" else None,
        )
        if existing is None:
            raise
        logger.warning(
            "Concurrent action plan insert lost for %s id=%s tenant=%s",
            origin_type, origin_id, ctx.tenant_id,
        )
        return _already_open(origin_type, origin_id, existing, strict)

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="action_plan",
        entity_id=plan.id,
        action="action_plan.created",
        actor_user_id=ctx.user_id,
        diff={"origin_type": origin_type, "origin_id": origin_id, "priority": plan.priority},
    )
    logger.info(
        "Action plan %s created for %s id=%s tenant=%s priority=%s",
        plan.id, origin_type, origin_id, ctx.tenant_id, plan.priority,
    )
    return TriggerOutcome(created=True, plan_id=plan.id)


def _resolve_owner(tenant_id: int, responsible_name: str | None) -> int | None:
    """Map a free-text responsible to a user: exact email first, then a unique name."""
    if not responsible_name:
        return None
    needle = responsible_name.strip().lower()
    by_email = db.session.execute(
        select(User.id).where(User.tenant_id == tenant_id, func.lower(User.email) == needle).limit(1)
    ).scalar_one_or_none()
    if by_email is not None:
        return by_email
    by_name = db.session.execute(
        select(User.id).where(User.tenant_id == tenant_id, func.lower(User.name) == needle).limit(2)
    ).scalars().all()
    return by_name[0] if len(by_name) == 1 else None


# ── From a risk ──────────────────────────────────────────────────────────────


def ensure_action_plan_for_risk(
    ctx: TenantContext,
    risk_id: int,
    due_in_days: int | None = None,
    *,
    responsible_name: str | None = None,
    strict: bool = False,
) -> TriggerOutcome:
    """Open a plan for a high/critical risk unless one is already open.

    Priority mirrors the classification: critical → critical, high → high.
    """
    risk = get_scoped(Risk, risk_id, tenant_id=ctx.tenant_id)
    if due_in_days is None:
        due_in_days = setting("GRC_RISK_PLAN_DUE_DAYS")

    existing = find_open_plan(ctx.tenant_id, risk_id=risk.id)
    if existing is not None:
        return _already_open("risk", risk.id, existing, strict)

    classification = Classification.parse(risk.classification)
    if classification not in _RISK_TRIGGER_CLASSES:
        return TriggerOutcome(created=False, reason=REASON_CLASSIFICATION_OK)

    priority = Priority.CRITICAL if classification is Classification.CRITICAL else Priority.HIGH
    responsible = responsible_name.strip() if responsible_name and responsible_name.strip() else None
    plan = ActionPlan(
        tenant_id=ctx.tenant_id,
        risk_id=risk.id,
        title=f"Action plan • Risk • {risk.title}",
        description=(
            f"Generated automatically from a risk classified as {classification.value}.\n\n"
            f"Risk: {risk.title}\n"
            f"Domain: {risk.domain or '-'}\n"
            f"Risk status: {risk.status}\n"
            f"Impact: {risk.impact}\n"
            f"Likelihood: {risk.likelihood}\n"
            f"Score: {risk.risk_score}\n"
        ),
        responsible_name=responsible,
        owner_user_id=_resolve_owner(ctx.tenant_id, responsible),
        due_date=_today() + timedelta(days=int(due_in_days)),
        priority=priority.value,
        status=ActionPlanStatus.NOT_STARTED.value,
    )
    return insert_plan(ctx, plan, strict=strict)


# ── From an execution ───────────────────────────────────────────────────────


def ensure_action_plan_for_execution(
    ctx: TenantContext,
    execution_id: int,
    trigger,
    reason: str,
    due_in_days: int | None = None,
    *,
    strict: bool = False,
) -> TriggerOutcome:
    """Open a plan for an execution that failed its target or a GRC review.

    Creates when ``trigger`` is grc_review, or the execution's auto-status is
    out_of_target / warning. Priority: high for out_of_target, else medium.
    """
    trigger = Trigger.parse(trigger, field="trigger")
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    if due_in_days is None:
        due_in_days = setting("GRC_SUBMISSION_PLAN_DUE_DAYS")

    existing = find_open_plan(ctx.tenant_id, execution_id=execution.id)
    if existing is not None:
        return _already_open("execution", execution.id, existing, strict)

    auto_status = Status.parse(execution.auto_status)
    if trigger is not Trigger.GRC_REVIEW and auto_status not in _EXECUTION_TRIGGER_STATUSES:
        return TriggerOutcome(created=False, reason=REASON_AUTO_STATUS_OK)

    priority = Priority.HIGH if auto_status is Status.OUT_OF_TARGET else Priority.MEDIUM
    control = execution.control
    kpi = execution.kpi
    plan = ActionPlan(
        tenant_id=ctx.tenant_id,
        execution_id=execution.id,
        control_id=execution.control_id,
        kpi_id=execution.kpi_id,
        title=f"Action plan • {control.control_code} • {kpi.kpi_code}",
        description=(
            f"{reason}\n\n"
            f"Control: {control.control_code} - {control.name}\n"
            f"KPI: {kpi.kpi_code} - {kpi.name}\n"
            f"Trigger: {trigger.value}\n"
            f"auto_status: {execution.auto_status}\n"
            f"workflow_status: {execution.workflow_status}"
        ),
        due_date=_today() + timedelta(days=int(due_in_days)),
        priority=priority.value,
        status=ActionPlanStatus.NOT_STARTED.value,
    )
    return insert_plan(ctx, plan, strict=strict)


def close_action_plans_for_execution(ctx: TenantContext, execution_id: int) -> int:
    """Mark every open plan of one execution as done. Returns how many were closed."""
    plans = db.session.execute(
        select(ActionPlan).where(
            ActionPlan.tenant_id == ctx.tenant_id,
            ActionPlan.execution_id == execution_id,
            ActionPlan.status != ActionPlanStatus.DONE.value,
        )
    ).scalars().all()

    now = datetime.now(timezone.utc)
    for plan in plans:
        old_status = plan.status
        plan.status = ActionPlanStatus.DONE.value
        plan.completed_at = now
        write_audit(
            tenant_id=ctx.tenant_id,
            entity_type="action_plan",
            entity_id=plan.id,
            action="action_plan.closed",
            actor_user_id=ctx.user_id,
            diff={"status": {"old": old_status, "new": plan.status}, "execution_id": execution_id},
        )
    db.session.flush()
    if plans:
        logger.info("Closed %d action plan(s) for execution id=%s tenant=%s",
                    len(plans), execution_id, ctx.tenant_id)
    return len(plans)
