"""
GRC Compliance Tracker
Risk domain models.

Models:
    - Risk: a risk with impact × likelihood scoring and classification
    - RiskAssessment: immutable history row, one per assessment

The live impact/likelihood/score/classification on Risk always mirror the
most recent RiskAssessment.
"""

from grc.core.enums import Classification
from grc.models import db
from grc.models.base import TenantModel, iso, utcnow

RISK_STATUSES = {"identified", "analysed", "mitigating", "accepted", "closed"}


class Risk(TenantModel):
    __tablename__ = "risks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    domain = db.Column(db.String(100), default="", comment="Business / Cyber / Compliance ...")
    source = db.Column(db.String(100), default="", comment="Internal audit / SOX / ISO 27001 ...")
    status = db.Column(db.String(30), default="identified", index=True)

    impact = db.Column(db.Integer, nullable=False, default=1, comment="1-5 scale")
    likelihood = db.Column(db.Integer, nullable=False, default=1, comment="1-5 scale")
    risk_score = db.Column(db.Integer, nullable=False, default=1, comment="impact × likelihood")
    classification = db.Column(
        db.String(20), nullable=False, default=Classification.LOW.value, index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assessments = db.relationship(
        "RiskAssessment", back_populates="risk", lazy="dynamic",
        order_by="RiskAssessment.id.desc()",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "domain": self.domain,
            "source": self.source,
            "status": self.status,
            "impact": self.impact,
            "likelihood": self.likelihood,
            "risk_score": self.risk_score,
            "classification": self.classification,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Risk {self.id}: {self.title[:40]}>"


class RiskAssessment(TenantModel):
    """Append-only. Never updated after insert."""

    __tablename__ = "risk_assessments"

    id = db.Column(db.Integer, primary_key=True)
    risk_id = db.Column(
        db.Integer, db.ForeignKey("risks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    impact = db.Column(db.Integer, nullable=False)
    likelihood = db.Column(db.Integer, nullable=False)
    score = db.Column(db.Integer, nullable=False)
    classification = db.Column(db.String(20), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    assessed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assessed_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    risk = db.relationship("Risk", back_populates="assessments")

    def to_dict(self):
        return {
            "id": self.id,
            "risk_id": self.risk_id,
            "impact": self.impact,
            "likelihood": self.likelihood,
            "score": self.score,
            "classification": self.classification,
            "notes": self.notes,
            "assessed_by": self.assessed_by,
            "assessed_at": iso(self.assessed_at),
        }
