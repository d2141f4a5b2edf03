"""
Risk register service: creation and impact × likelihood assessments.

Every assessment:
  1. clamps impact / likelihood to 1-5 and classifies the score
  2. appends an immutable RiskAssessment row
  3. overwrites the risk's live scoring fields
  4. runs the remediation trigger for the risk

A downgrade never closes an existing risk plan.

Transaction policy: functions flush, never commit. The route handler commits.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from grc.core.context import TenantContext
from grc.core.exceptions import ValidationError
from grc.models import db
from grc.models.audit import write_audit
from grc.models.risk import RISK_STATUSES, Risk, RiskAssessment
from grc.services import remediation_trigger
from grc.services.helpers.scoped_queries import get_scoped
from grc.services.risk_scoring import score_risk

logger = logging.getLogger(__name__)


def _validate_status(status: str | None) -> str:
    status = (status or "identified").strip().lower()
    if status not in RISK_STATUSES:
        raise ValidationError(
            f"Invalid risk status: {status!r}. Expected one of: {', '.join(sorted(RISK_STATUSES))}",
            details={"status": "invalid"},
        )
    return status


def create_risk(ctx: TenantContext, data: dict) -> Risk:
    """Register a risk; initial impact / likelihood default to 1 and are scored."""
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    score = score_risk(data.get("impact", 1), data.get("likelihood", 1))
    risk = Risk(
        tenant_id=ctx.tenant_id,
        title=title[:300],
        description=data.get("description", ""),
        domain=data.get("domain", ""),
        source=data.get("source", ""),
        status=_validate_status(data.get("status")),
        impact=score.impact,
        likelihood=score.likelihood,
        risk_score=score.score,
        classification=score.classification.value,
    )
    db.session.add(risk)
    db.session.flush()
    logger.info("Risk %s created tenant=%s classification=%s", risk.id, ctx.tenant_id, risk.classification)
    return risk


def add_risk_assessment(
    ctx: TenantContext,
    risk_id: int,
    impact,
    likelihood,
    notes: str | None = None,
    *,
    responsible_name: str | None = None,
    due_in_days: int | None = None,
) -> tuple[RiskAssessment, remediation_trigger.TriggerOutcome]:
    """Score and record a new assessment, then ensure a plan for high/critical risks.

    Returns:
        (assessment, trigger outcome)
    """
    risk = get_scoped(Risk, risk_id, tenant_id=ctx.tenant_id)
    score = score_risk(impact, likelihood)

    assessment = RiskAssessment(
        tenant_id=ctx.tenant_id,
        risk_id=risk.id,
        impact=score.impact,
        likelihood=score.likelihood,
        score=score.score,
        classification=score.classification.value,
        notes=notes,
        assessed_by=ctx.user_id,
    )
    db.session.add(assessment)

    before = {"score": risk.risk_score, "classification": risk.classification}
    risk.impact = score.impact
    risk.likelihood = score.likelihood
    risk.risk_score = score.score
    risk.classification = score.classification.value
    db.session.flush()

    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="risk",
        entity_id=risk.id,
        action="risk.assessed",
        actor_user_id=ctx.user_id,
        diff={"before": before, "after": score.to_dict(), "assessment_id": assessment.id},
    )
    logger.info(
        "Risk %s assessed tenant=%s score=%d classification=%s",
        risk.id, ctx.tenant_id, score.score, score.classification.value,
    )

    outcome = remediation_trigger.ensure_action_plan_for_risk(
        ctx, risk.id, due_in_days, responsible_name=responsible_name,
    )
    return assessment, outcome


def list_assessments(ctx: TenantContext, risk_id: int) -> list[RiskAssessment]:
    """Assessment history of a risk, newest first."""
    risk = get_scoped(Risk, risk_id, tenant_id=ctx.tenant_id)
    return db.session.execute(
        select(RiskAssessment)
        .where(RiskAssessment.tenant_id == ctx.tenant_id, RiskAssessment.risk_id == risk.id)
        .order_by(RiskAssessment.id.desc())
    ).scalars().all()
