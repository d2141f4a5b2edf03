"""
GRC Compliance Tracker
Action plan (remediation) model.

An action plan originates from exactly one of:
    - a Risk           (risk_id set)
    - a KpiExecution   (execution_id set, control_id/kpi_id copied for listing)
    - nothing          (manual plan)

Invariant: per origin, at most one plan with status <> 'done'. Enforced
in the database by two partial unique indexes so that concurrent triggers
cannot both insert.
"""

from grc.core.enums import ActionPlanStatus, Priority
from grc.models import db
from grc.models.base import TenantModel, iso, utcnow

_OPEN = "status <> 'done'"


class ActionPlan(TenantModel):
    __tablename__ = "action_plans"
    __table_args__ = (
        db.Index(
            "uq_action_plans_open_per_risk",
            "tenant_id", "risk_id",
            unique=True,
            postgresql_where=db.text(f"risk_id IS NOT NULL AND {_OPEN}"),
            sqlite_where=db.text(f"risk_id IS NOT NULL AND {_OPEN}"),
        ),
        db.Index(
            "uq_action_plans_open_per_execution",
            "tenant_id", "execution_id",
            unique=True,
            postgresql_where=db.text(f"execution_id IS NOT NULL AND {_OPEN}"),
            sqlite_where=db.text(f"execution_id IS NOT NULL AND {_OPEN}"),
        ),
        db.CheckConstraint(
            "risk_id IS NULL OR execution_id IS NULL", name="ck_action_plans_single_origin",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Origin
    risk_id = db.Column(db.Integer, db.ForeignKey("risks.id", ondelete="SET NULL"), nullable=True, index=True)
    execution_id = db.Column(
        db.Integer, db.ForeignKey("kpi_executions.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    control_id = db.Column(db.Integer, db.ForeignKey("controls.id", ondelete="SET NULL"), nullable=True, index=True)
    kpi_id = db.Column(db.Integer, db.ForeignKey("kpis.id", ondelete="SET NULL"), nullable=True, index=True)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    responsible_name = db.Column(db.String(200), nullable=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    priority = db.Column(db.String(20), nullable=False, default=Priority.MEDIUM.value)
    status = db.Column(db.String(20), nullable=False, default=ActionPlanStatus.NOT_STARTED.value, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status != ActionPlanStatus.DONE.value

    @property
    def origin_type(self) -> str:
        if self.risk_id is not None:
            return "risk"
        if self.execution_id is not None:
            return "execution"
        return "manual"

    def to_dict(self):
        return {
            "id": self.id,
            "origin_type": self.origin_type,
            "risk_id": self.risk_id,
            "execution_id": self.execution_id,
            "control_id": self.control_id,
            "kpi_id": self.kpi_id,
            "title": self.title,
            "description": self.description,
            "responsible_name": self.responsible_name,
            "owner_user_id": self.owner_user_id,
            "due_date": iso(self.due_date),
            "priority": self.priority,
            "status": self.status,
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ActionPlan {self.id} {self.origin_type} {self.status}>"
