"""
GRC Compliance Tracker
Risk blueprint: risk register, assessments and risk-sourced action plans.

Endpoints summary:
    RISK        /api/v1/risks                          GET, POST
                /api/v1/risks/<id>                     GET
    ASSESSMENT  /api/v1/risks/<id>/assessments         GET, POST
    PLAN        /api/v1/risks/<id>/action-plan         POST   (ensure, no-op when open / low risk)
"""

import logging

from flask import Blueprint, jsonify, request

from grc.blueprints import current_context, json_body, paginate_query
from grc.models import db
from grc.models.risk import Risk
from grc.services import remediation_trigger, risk_service
from grc.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

risk_bp = Blueprint("risk", __name__, url_prefix="/api/v1")


@risk_bp.route("/risks", methods=["GET"])
def list_risks():
    ctx = current_context()
    q = Risk.query_for_tenant(ctx.tenant_id)
    for field in ("status", "classification", "domain"):
        value = request.args.get(field)
        if value:
            q = q.filter(getattr(Risk, field) == value)
    risks, total = paginate_query(q.order_by(Risk.risk_score.desc(), Risk.id))
    return jsonify({"items": [r.to_dict() for r in risks], "total": total})


@risk_bp.route("/risks", methods=["POST"])
def create_risk():
    risk = risk_service.create_risk(current_context(), json_body())
    db.session.commit()
    return jsonify(risk.to_dict()), 201


@risk_bp.route("/risks/<int:risk_id>", methods=["GET"])
def get_risk(risk_id):
    risk = get_scoped(Risk, risk_id, tenant_id=current_context().tenant_id)
    return jsonify(risk.to_dict())


@risk_bp.route("/risks/<int:risk_id>/assessments", methods=["GET"])
def list_assessments(risk_id):
    items = risk_service.list_assessments(current_context(), risk_id)
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@risk_bp.route("/risks/<int:risk_id>/assessments", methods=["POST"])
def add_assessment(risk_id):
    data = json_body()
    assessment, outcome = risk_service.add_risk_assessment(
        current_context(),
        risk_id,
        data.get("impact"),
        data.get("likelihood"),
        data.get("notes"),
        responsible_name=data.get("responsible_name"),
        due_in_days=data.get("due_in_days"),
    )
    db.session.commit()
    return jsonify({
        "assessment": assessment.to_dict(),
        "risk": assessment.risk.to_dict(),
        "action_plan": outcome.to_dict(),
    }), 201


@risk_bp.route("/risks/<int:risk_id>/action-plan", methods=["POST"])
def ensure_action_plan(risk_id):
    data = json_body()
    outcome = remediation_trigger.ensure_action_plan_for_risk(
        current_context(),
        risk_id,
        data.get("due_in_days"),
        responsible_name=data.get("responsible_name"),
    )
    db.session.commit()
    return jsonify(outcome.to_dict()), 201 if outcome.created else 200
