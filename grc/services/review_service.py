"""
GRC review: the reviewer's explicit decision on a submitted execution.

Decision effects:
    approved       → execution approved, its open action plans closed
    needs_changes  → execution needs_changes, plan ensured (trigger grc_review)
    rejected       → execution rejected, plan ensured (trigger grc_review)

The automatic decision (``compute_automatic_decision``) is only a
suggestion shown to the reviewer; nothing here persists or acts on it.

Transaction policy: functions flush, never commit. The route handler commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from grc.core.context import TenantContext
from grc.core.enums import Decision, SuggestedDecision, Trigger, WorkflowStatus
from grc.core.exceptions import ValidationError
from grc.models import db
from grc.models.audit import write_audit
from grc.models.compliance import GrcReview, KpiExecution
from grc.services import execution_workflow, remediation_trigger
from grc.services.helpers.scoped_queries import get_scoped
from grc.services.helpers.settings import setting
from grc.services.status_evaluator import compute_automatic_decision

logger = logging.getLogger(__name__)

_ACTION_BY_DECISION = {
    Decision.APPROVED: "approve",
    Decision.NEEDS_CHANGES: "request_changes",
    Decision.REJECTED: "reject",
}

_QUEUE_STATUSES = (
    WorkflowStatus.SUBMITTED.value,
    WorkflowStatus.UNDER_REVIEW.value,
    WorkflowStatus.NEEDS_CHANGES.value,
)


def submit_review(ctx: TenantContext, execution_id: int, decision, comment: str) -> GrcReview:
    """Record the reviewer's decision and apply its workflow and remediation effects.

    Raises:
        NotFoundError: execution missing or owned by another tenant.
        ValidationError: empty comment or unknown decision.
        InvalidTransitionError: execution is not awaiting review.
    """
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)

    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("A review comment is required", details={"comment": "required"})
    decision = Decision.parse(decision, field="decision")

    previous = execution_workflow.current_status(execution)
    target = execution_workflow.transition(execution, _ACTION_BY_DECISION[decision])

    now = datetime.now(timezone.utc)
    review = db.session.execute(
        select(GrcReview).where(
            GrcReview.tenant_id == ctx.tenant_id,
            GrcReview.execution_id == execution.id,
        )
    ).scalar_one_or_none()
    if review is None:
        review = GrcReview(tenant_id=ctx.tenant_id, execution_id=execution.id)
        db.session.add(review)
    review.decision = decision.value
    review.review_comment = comment
    review.reviewer_user_id = ctx.user_id
    review.reviewed_at = now

    execution.workflow_status = target.value
    execution.reviewed_at = now
    db.session.flush()

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.reviewed",
        actor_user_id=ctx.user_id,
        diff={
            "decision": decision.value,
            "workflow_status": {"old": previous.value, "new": target.value},
            "review_id": review.id,
        },
    )
    logger.info(
        "Execution %s reviewed tenant=%s decision=%s",
        execution.id, ctx.tenant_id, decision.value,
    )

    if decision is Decision.APPROVED:
        remediation_trigger.close_action_plans_for_execution(ctx, execution.id)
    else:
        remediation_trigger.ensure_action_plan_for_execution(
            ctx,
            execution.id,
            Trigger.GRC_REVIEW,
            reason=f"GRC review decided '{decision.value}': {comment}",
            due_in_days=setting("GRC_REVIEW_PLAN_DUE_DAYS"),
        )
    return review


def finalize_review(
    ctx: TenantContext,
    execution_id: int,
    decision,
    comment: str | None = None,
    adjusted_value=None,
) -> tuple[KpiExecution, GrcReview | None]:
    """Reviewer closes the review screen, optionally correcting the numeric result.

    ``adjusted_value`` is saved (auto-status recomputed) before the decision
    is applied. ``under_review`` only moves the execution into review; no
    GrcReview row is written for it.

    Returns:
        (execution, review): review is None for ``under_review``.
    """
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    decision = SuggestedDecision.parse(decision, field="decision")

    if adjusted_value is not None and adjusted_value != "":
        execution_workflow.save_execution_result(
            ctx,
            execution.id,
            result_numeric=adjusted_value,
            result_boolean=execution.result_boolean,
            result_notes=execution.result_notes,
        )

    if decision is SuggestedDecision.UNDER_REVIEW:
        if execution_workflow.current_status(execution) is not WorkflowStatus.UNDER_REVIEW:
            execution_workflow.start_review(ctx, execution.id)
        return execution, None

    review = submit_review(ctx, execution.id, decision.value, comment)
    return execution, review


def automatic_decision_for_execution(ctx: TenantContext, execution_id: int, value=None) -> dict:
    """Suggested decision for an execution, optionally for a reviewer-adjusted value."""
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    if value is None or value == "":
        value = execution.result_numeric
    else:
        value = execution_workflow.coerce_numeric(value)
    suggestion = compute_automatic_decision(
        execution.kpi, value, execution.auto_status, execution.result_boolean,
    )
    return {
        "execution_id": execution.id,
        "value": value,
        "auto_status": execution.auto_status,
        "suggested_decision": suggestion.value,
    }


def fetch_review_queue(ctx: TenantContext) -> list[KpiExecution]:
    """Executions waiting on a reviewer, earliest review due date first."""
    stmt = (
        select(KpiExecution)
        .where(
            KpiExecution.tenant_id == ctx.tenant_id,
            KpiExecution.workflow_status.in_(_QUEUE_STATUSES),
        )
        .order_by(
            KpiExecution.review_due_date.is_(None),
            KpiExecution.review_due_date,
            KpiExecution.id,
        )
    )
    return db.session.execute(stmt).scalars().all()
