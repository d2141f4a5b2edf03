"""
KPI Execution Workflow: lifecycle of one period's measurement.

Manages execution status transitions with:
  - One transition table (WORKFLOW_TRANSITIONS) and one ``transition()``
  - Terminal guard: approved / rejected executions accept no further writes
  - Evidence gate: KPIs with evidence_required need ≥1 evidence to submit
  - Auto-status recomputation on every result save and before submission
  - Remediation trigger on submission

State diagram:

    in_progress ──submit──▶ submitted ──start_review──▶ under_review
         ▲                      │  ▲                        │
         │                      │  └────────submit──────────┤
         │                      ▼                           ▼
         └──────────── needs_changes ◀──request_changes─────┤
                        (resubmittable, start_review)       │
                                               approve / reject
                                                            ▼
                                                approved | rejected  (terminal)

Transaction policy: functions flush, never commit. The route handler commits.

Usage:
    from grc.services.execution_workflow import submit_execution

    execution = submit_execution(ctx, execution_id=42)
"""

from __future__ import annotations

import calendar
import logging
import math
import re
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select

from grc.core.context import TenantContext
from grc.core.enums import Status, Trigger, WorkflowStatus
from grc.core.exceptions import InvalidTransitionError, ValidationError
from grc.models import db
from grc.models.audit import write_audit
from grc.models.compliance import Evidence, Kpi, KpiExecution
from grc.services import remediation_trigger
from grc.services.helpers.scoped_queries import get_scoped
from grc.services.helpers.settings import setting
from grc.services.status_evaluator import evaluate_status

logger = logging.getLogger(__name__)

_W = WorkflowStatus
_REVIEWABLE = frozenset({_W.SUBMITTED, _W.UNDER_REVIEW, _W.NEEDS_CHANGES})

WORKFLOW_TRANSITIONS = {
    "submit": {"from": frozenset({_W.IN_PROGRESS, _W.SUBMITTED, _W.UNDER_REVIEW, _W.NEEDS_CHANGES}),
               "to": _W.SUBMITTED},
    "start_review": {"from": _REVIEWABLE, "to": _W.UNDER_REVIEW},
    "request_changes": {"from": _REVIEWABLE, "to": _W.NEEDS_CHANGES},
    "approve": {"from": _REVIEWABLE, "to": _W.APPROVED},
    "reject": {"from": _REVIEWABLE, "to": _W.REJECTED},
}

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def current_status(execution: KpiExecution) -> WorkflowStatus:
    return WorkflowStatus.parse(execution.workflow_status or WorkflowStatus.IN_PROGRESS.value)


def transition(execution: KpiExecution, action: str) -> WorkflowStatus:
    """Return the status ``action`` leads to, or raise InvalidTransitionError.

    Pure: does not mutate ``execution``.
    """
    rule = WORKFLOW_TRANSITIONS.get(action)
    current = current_status(execution)
    if rule is None:
        raise InvalidTransitionError(execution.id, current.value, action, "unknown action")
    if current.is_terminal:
        raise InvalidTransitionError(
            execution.id, current.value, rule["to"].value, "execution is already in a final state",
        )
    if current not in rule["from"]:
        raise InvalidTransitionError(execution.id, current.value, rule["to"].value)
    return rule["to"]


def ensure_not_terminal(execution: KpiExecution, target: str = "update") -> None:
    current = current_status(execution)
    if current.is_terminal:
        raise InvalidTransitionError(
            execution.id, current.value, target, "execution is already in a final state",
        )


# ── Result parsing ───────────────────────────────────────────────────────────


def coerce_numeric(value, *, field: str = "result_numeric") -> float | None:
    """Parse a numeric input; accepts '5,4'. Rejects booleans, NaN and infinities."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"})
    try:
        number = float(str(value).strip().replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field} must be a number, got {value!r}", details={field: "invalid"},
        ) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", details={field: "invalid"})
    return number


_TRUE_TOKENS = {"true", "1", "yes", "sim", "y", "s"}
_FALSE_TOKENS = {"false", "0", "no", "nao", "não", "n"}


def coerce_boolean(value, *, field: str = "result_boolean") -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    token = str(value).strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValidationError(
        f"{field} must be true or false, got {value!r}", details={field: "invalid"},
    )


def _boolean_from_numeric(value: float | None) -> bool | None:
    if value == 1:
        return True
    if value == 0:
        return False
    return None


def parse_period(period: str) -> tuple[date, date]:
    """'2026-03' → (2026-03-01, 2026-03-31)."""
    match = _PERIOD_RE.match(str(period or "").strip())
    if not match:
        raise ValidationError("period must be formatted YYYY-MM", details={"period": "invalid"})
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError("period month must be 01-12", details={"period": "invalid"})
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


# ── Auto-status ──────────────────────────────────────────────────────────────


def apply_auto_status(execution: KpiExecution, buffer_pct: float | None = None) -> Status:
    status = evaluate_status(execution.kpi, execution, buffer_pct)
    execution.auto_status = status.value
    return status


def recompute_auto_status(ctx: TenantContext, execution_id: int) -> KpiExecution:
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    apply_auto_status(execution)
    db.session.flush()
    return execution


def recompute_all_auto_statuses(ctx: TenantContext, buffer_pct: float | None = None) -> dict:
    """Re-evaluate every execution of the tenant, e.g. after KPI targets changed.

    Returns ``{"total": n, "changed": m}``.
    """
    executions = db.session.execute(
        select(KpiExecution).where(KpiExecution.tenant_id == ctx.tenant_id)
    ).scalars().all()
    changed = 0
    for execution in executions:
        before = execution.auto_status
        if apply_auto_status(execution, buffer_pct).value != before:
            changed += 1
    db.session.flush()
    logger.info("Recomputed auto-status tenant=%s total=%d changed=%d", ctx.tenant_id, len(executions), changed)
    return {"total": len(executions), "changed": changed}


# ── Results ──────────────────────────────────────────────────────────────────


def _assign_result(execution: KpiExecution, kpi: Kpi, numeric, boolean, notes) -> None:
    result_numeric = coerce_numeric(numeric)
    result_boolean = coerce_boolean(boolean)
    if result_boolean is None and kpi.is_boolean:
        result_boolean = _boolean_from_numeric(result_numeric)
    execution.result_numeric = result_numeric
    execution.result_boolean = result_boolean
    execution.result_notes = notes


def save_execution_result(
    ctx: TenantContext,
    execution_id: int,
    result_numeric=None,
    result_boolean=None,
    result_notes: str | None = None,
) -> KpiExecution:
    """Overwrite the result of a non-final execution and recompute its auto-status.

    ``workflow_status`` is left unchanged.
    """
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    ensure_not_terminal(execution, "save_result")

    before = {
        "result_numeric": execution.result_numeric,
        "result_boolean": execution.result_boolean,
        "auto_status": execution.auto_status,
    }
    _assign_result(execution, execution.kpi, result_numeric, result_boolean, result_notes)
    status = apply_auto_status(execution)
    db.session.flush()

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.result_saved",
        actor_user_id=ctx.user_id,
        diff={
            "before": before,
            "after": {
                "result_numeric": execution.result_numeric,
                "result_boolean": execution.result_boolean,
                "auto_status": status.value,
            },
        },
    )
    return execution


def upsert_execution_for_period(
    ctx: TenantContext,
    kpi_id: int,
    period: str,
    result_numeric=None,
    result_boolean=None,
    result_notes: str | None = None,
) -> tuple[KpiExecution, bool]:
    """Create or update the execution of ``kpi_id`` for the month ``period`` (YYYY-MM).

    Returns:
        (execution, created)
    """
    kpi = get_scoped(Kpi, kpi_id, tenant_id=ctx.tenant_id)
    period_start, period_end = parse_period(period)

    execution = db.session.execute(
        select(KpiExecution).where(
            KpiExecution.tenant_id == ctx.tenant_id,
            KpiExecution.kpi_id == kpi.id,
            KpiExecution.period_start == period_start,
        )
    ).scalar_one_or_none()

    if execution is not None:
        return save_execution_result(ctx, execution.id, result_numeric, result_boolean, result_notes), False

    execution = KpiExecution(
        tenant_id=ctx.tenant_id,
        control_id=kpi.control_id,
        kpi_id=kpi.id,
        period_start=period_start,
        period_end=period_end,
        workflow_status=WorkflowStatus.IN_PROGRESS.value,
        created_by=ctx.user_id,
    )
    execution.kpi = kpi
    _assign_result(execution, kpi, result_numeric, result_boolean, result_notes)
    apply_auto_status(execution)
    db.session.add(execution)
    db.session.flush()

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.result_saved",
        actor_user_id=ctx.user_id,
        diff={"created": True, "period": period, "auto_status": execution.auto_status},
    )
    logger.info("Execution %s created kpi=%s period=%s tenant=%s", execution.id, kpi.id, period, ctx.tenant_id)
    return execution, True


# ── Evidence ─────────────────────────────────────────────────────────────────


def count_evidences(tenant_id: int, execution_id: int) -> int:
    return db.session.execute(
        select(func.count(Evidence.id)).where(
            Evidence.tenant_id == tenant_id, Evidence.execution_id == execution_id,
        )
    ).scalar_one()


def add_evidence(
    ctx: TenantContext,
    execution_id: int,
    title: str,
    file_url: str | None = None,
    mime_type: str | None = None,
) -> Evidence:
    """Register evidence metadata on a non-final execution."""
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    ensure_not_terminal(execution, "add_evidence")
    title = (title or "").strip() or (file_url or "").strip()
    if not title:
        raise ValidationError("title or file_url is required", details={"title": "required"})

    evidence = Evidence(
        tenant_id=ctx.tenant_id,
        execution_id=execution.id,
        title=title[:300],
        file_url=file_url,
        mime_type=mime_type,
        created_by=ctx.user_id,
    )
    db.session.add(evidence)
    db.session.flush()
    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.evidence_added",
        actor_user_id=ctx.user_id,
        diff={"evidence_id": evidence.id, "title": evidence.title},
    )
    return evidence


def delete_evidence(ctx: TenantContext, evidence_id: int) -> None:
    evidence = get_scoped(Evidence, evidence_id, tenant_id=ctx.tenant_id)
    ensure_not_terminal(evidence.execution, "delete_evidence")
    execution_id = evidence.execution_id
    db.session.delete(evidence)
    db.session.flush()
    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution_id,
        action="execution.evidence_removed",
        actor_user_id=ctx.user_id,
        diff={"evidence_id": evidence_id},
    )


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_execution(ctx: TenantContext, execution_id: int) -> KpiExecution:
    """Send an execution to GRC review.

    Steps:
        1. refuse final states (InvalidTransitionError)
        2. evidence gate (ValidationError)
        3. recompute auto_status
        4. status → submitted, review due in GRC_REVIEW_DUE_DAYS
        5. remediation trigger (auto_status)

    Nothing is written when step 1 or 2 fails.
    """
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    previous = current_status(execution)
    target = transition(execution, "submit")

    if execution.kpi.evidence_required and count_evidences(ctx.tenant_id, execution.id) < 1:
        raise ValidationError(
            "This KPI requires evidence. Add at least one evidence before submitting.",
            details={"evidence": "required"},
        )

    status = apply_auto_status(execution)
    now = _now()
    execution.workflow_status = target.value
    execution.submitted_at = now
    execution.review_due_date = now + timedelta(days=int(setting("GRC_REVIEW_DUE_DAYS")))
    db.session.flush()

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.submitted",
        actor_user_id=ctx.user_id,
        diff={
            "workflow_status": {"old": previous.value, "new": target.value},
            "auto_status": status.value,
        },
    )
    logger.info("Execution %s submitted tenant=%s auto_status=%s", execution.id, ctx.tenant_id, status.value)

    remediation_trigger.ensure_action_plan_for_execution(
        ctx,
        execution.id,
        Trigger.AUTO_STATUS,
        reason="Execution submitted with a result out of target or inside the warning band.",
        due_in_days=setting("GRC_SUBMISSION_PLAN_DUE_DAYS"),
    )
    return execution


def start_review(ctx: TenantContext, execution_id: int) -> KpiExecution:
    """Reviewer picks up a submitted execution, or one returned with needs_changes."""
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    previous = current_status(execution)
    execution.workflow_status = transition(execution, "start_review").value
    db.session.flush()
    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="execution",
        entity_id=execution.id,
        action="execution.review_started",
        actor_user_id=ctx.user_id,
        diff={"workflow_status": {"old": previous.value, "new": execution.workflow_status}},
    )
    return execution
