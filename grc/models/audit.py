"""
GRC Compliance Tracker
Audit trail.

One append-only row per lifecycle event (KPI configuration, execution
workflow steps, risk assessments, action plan changes). Rows are written in
the same transaction as the change they describe and are never updated.
"""

import json

from grc.models import db
from grc.models.base import TenantModel, iso, utcnow

AUDIT_ENTITY_TYPES = {"kpi", "execution", "risk", "action_plan"}

AUDIT_ACTIONS = {
    # KPI configuration
    "kpi.config_updated",
    # Execution lifecycle
    "execution.result_saved",
    "execution.submitted",
    "execution.review_started",
    "execution.reviewed",
    "execution.evidence_added",
    "execution.evidence_removed",
    # Risk
    "risk.assessed",
    # Action plans
    "action_plan.created",
    "action_plan.status_changed",
    "action_plan.closed",
}


class AuditLog(TenantModel):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "tenant_id", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Null for system-triggered entries",
    )
    diff_json = db.Column(db.Text, default="{}", comment="{field: {old, new}} or event metadata")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def diff(self) -> dict:
        return json.loads(self.diff_json) if self.diff_json else {}

    @classmethod
    def trail(cls, tenant_id: int, entity_type: str, entity_id):
        """Query of one entity's events, oldest first."""
        return cls.query_for_tenant(tenant_id).filter_by(
            entity_type=entity_type, entity_id=str(entity_id),
        ).order_by(cls.id)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLog {self.id} {self.action} {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    tenant_id: int,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """Append one audit row in the caller's transaction (flush only).

    ``entity_type`` and ``action`` must come from the closed vocabularies
    above; a typo raises ValueError instead of writing an unqueryable row.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity_type: {entity_type!r}")
    if action not in AUDIT_ACTIONS or not action.startswith(f"{entity_type}."):
        raise ValueError(f"Unknown audit action {action!r} for {entity_type}")

    row = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(row)
    db.session.flush()
    return row
