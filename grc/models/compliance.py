"""
GRC Compliance Tracker
Compliance domain models.

Models:
    - Control: a compliance control (SOX, ISO 27001, LGPD ...)
    - Kpi: measurable indicator of a control, with a configurable target
    - KpiExecution: one measurement of a KPI for one period (month)
    - Evidence: metadata of a file attached to an execution
    - GrcReview: the reviewer's decision on an execution (one per execution)

Architecture chain: Control → Kpi → KpiExecution → Evidence / GrcReview
"""

from grc.core.enums import KpiType, Operator, Status, WorkflowStatus
from grc.models import db
from grc.models.base import TenantModel, iso, utcnow

DEFAULT_WARNING_BUFFER = 0.05
MAX_WARNING_BUFFER = 0.5


# ═══════════════════════════════════════════════════════════════════════════
#  CONTROL
# ═══════════════════════════════════════════════════════════════════════════

class Control(TenantModel):
    __tablename__ = "controls"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "control_code", name="uq_controls_tenant_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    control_code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    frequency = db.Column(db.String(30), default="monthly")
    framework = db.Column(db.String(50), default="", comment="SOX | ISO 27001 | LGPD | ...")
    owner_name = db.Column(db.String(150), default="")
    owner_email = db.Column(db.String(255), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    kpis = db.relationship("Kpi", back_populates="control", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "control_code": self.control_code,
            "name": self.name,
            "description": self.description,
            "frequency": self.frequency,
            "framework": self.framework,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Control {self.control_code}>"


# ═══════════════════════════════════════════════════════════════════════════
#  KPI
# ═══════════════════════════════════════════════════════════════════════════

class Kpi(TenantModel):
    """
    A KPI with its target configuration.

    Numeric/percent KPIs compare ``result_numeric`` against ``target_value``
    with ``target_operator``; boolean KPIs compare ``result_boolean`` against
    ``target_boolean``. When ``is_active`` is false the target is ignored.
    """

    __tablename__ = "kpis"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "kpi_code", name="uq_kpis_tenant_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    control_id = db.Column(
        db.Integer, db.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kpi_code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    kpi_type = db.Column(db.String(20), nullable=False, default=KpiType.NUMBER.value)
    target_operator = db.Column(db.String(10), nullable=False, default=Operator.GTE.value)
    target_value = db.Column(db.Float, nullable=True)
    target_boolean = db.Column(db.Boolean, nullable=True)
    warning_buffer_pct = db.Column(
        db.Float, nullable=False, default=DEFAULT_WARNING_BUFFER, comment="0.00 – 0.50",
    )
    evidence_required = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    control = db.relationship("Control", back_populates="kpis")
    executions = db.relationship("KpiExecution", back_populates="kpi", lazy="dynamic")

    @property
    def is_boolean(self) -> bool:
        return self.kpi_type == KpiType.BOOLEAN.value

    def to_dict(self):
        return {
            "id": self.id,
            "control_id": self.control_id,
            "control_code": self.control.control_code if self.control else None,
            "kpi_code": self.kpi_code,
            "name": self.name,
            "description": self.description,
            "kpi_type": self.kpi_type,
            "target_operator": self.target_operator,
            "target_value": self.target_value,
            "target_boolean": self.target_boolean,
            "warning_buffer_pct": self.warning_buffer_pct,
            "evidence_required": self.evidence_required,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Kpi {self.kpi_code}>"


# ═══════════════════════════════════════════════════════════════════════════
#  EXECUTION
# ═══════════════════════════════════════════════════════════════════════════

class KpiExecution(TenantModel):
    """
    One measurement of a KPI for one period.

    ``auto_status`` is derived from the result and persisted;
    ``workflow_status`` only changes through the execution workflow.
    """

    __tablename__ = "kpi_executions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "kpi_id", "period_start", name="uq_kpi_executions_period"),
        db.Index("ix_kpi_executions_tenant_workflow", "tenant_id", "workflow_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    control_id = db.Column(
        db.Integer, db.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kpi_id = db.Column(
        db.Integer, db.ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    result_numeric = db.Column(db.Float, nullable=True)
    result_boolean = db.Column(db.Boolean, nullable=True)
    result_notes = db.Column(db.Text, nullable=True)

    auto_status = db.Column(db.String(20), nullable=False, default=Status.UNKNOWN.value)
    workflow_status = db.Column(
        db.String(20), nullable=False, default=WorkflowStatus.IN_PROGRESS.value, index=True,
    )
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    kpi = db.relationship("Kpi", back_populates="executions")
    control = db.relationship("Control")
    evidences = db.relationship("Evidence", back_populates="execution", lazy="dynamic")
    review = db.relationship("GrcReview", back_populates="execution", uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "control_id": self.control_id,
            "kpi_id": self.kpi_id,
            "period_start": iso(self.period_start),
            "period_end": iso(self.period_end),
            "result_numeric": self.result_numeric,
            "result_boolean": self.result_boolean,
            "result_notes": self.result_notes,
            "auto_status": self.auto_status,
            "workflow_status": self.workflow_status,
            "submitted_at": iso(self.submitted_at),
            "reviewed_at": iso(self.reviewed_at),
            "review_due_date": iso(self.review_due_date),
            "evidence_count": self.evidences.count(),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<KpiExecution {self.id} kpi={self.kpi_id} {self.period_start}>"


class Evidence(TenantModel):
    """Evidence metadata. The file itself lives in external storage."""

    __tablename__ = "evidences"

    id = db.Column(db.Integer, primary_key=True)
    execution_id = db.Column(
        db.Integer, db.ForeignKey("kpi_executions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    file_url = db.Column(db.String(1000), nullable=True)
    mime_type = db.Column(db.String(100), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    execution = db.relationship("KpiExecution", back_populates="evidences")

    def to_dict(self):
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "title": self.title,
            "file_url": self.file_url,
            "mime_type": self.mime_type,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }


class GrcReview(TenantModel):
    """Reviewer decision on an execution. Upserted; at most one per execution."""

    __tablename__ = "grc_reviews"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "execution_id", name="uq_grc_reviews_execution"),
    )

    id = db.Column(db.Integer, primary_key=True)
    execution_id = db.Column(
        db.Integer, db.ForeignKey("kpi_executions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reviewer_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    decision = db.Column(db.String(20), nullable=False)
    review_comment = db.Column(db.Text, nullable=False)
    reviewed_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    execution = db.relationship("KpiExecution", back_populates="review")

    def to_dict(self):
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "reviewer_user_id": self.reviewer_user_id,
            "decision": self.decision,
            "review_comment": self.review_comment,
            "reviewed_at": iso(self.reviewed_at),
        }
