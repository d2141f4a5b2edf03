"""
GRC Compliance Tracker
Action plan blueprint.

Endpoints summary:
    PLAN   /api/v1/action-plans                                  GET, POST
           /api/v1/action-plans/<id>                             GET
           /api/v1/action-plans/<id>/status                      PATCH
           /api/v1/executions/<id>/action-plans/close            POST

List filters: status (or "open"), origin_type, risk_id, execution_id,
control_id, kpi_id.
"""

import logging

from flask import Blueprint, jsonify, request

from grc.blueprints import current_context, json_body, paginate_query
from grc.models import db
from grc.models.action_plan import ActionPlan
from grc.models.compliance import KpiExecution
from grc.services import action_plan_service, remediation_trigger
from grc.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

action_plan_bp = Blueprint("action_plan", __name__, url_prefix="/api/v1")


@action_plan_bp.route("/action-plans", methods=["GET"])
def list_action_plans():
    filters = {
        "status": request.args.get("status"),
        "origin_type": request.args.get("origin_type"),
    }
    for key in ("risk_id", "execution_id", "control_id", "kpi_id"):
        filters[key] = request.args.get(key, type=int)
    q = action_plan_service.list_action_plans(current_context(), filters)
    plans, total = paginate_query(q)
    return jsonify({"items": [p.to_dict() for p in plans], "total": total})


@action_plan_bp.route("/action-plans", methods=["POST"])
def create_action_plan():
    plan = action_plan_service.create_manual_plan(current_context(), json_body())
    db.session.commit()
    return jsonify(plan.to_dict()), 201


@action_plan_bp.route("/action-plans/<int:plan_id>", methods=["GET"])
def get_action_plan(plan_id):
    plan = get_scoped(ActionPlan, plan_id, tenant_id=current_context().tenant_id)
    return jsonify(plan.to_dict())


@action_plan_bp.route("/action-plans/<int:plan_id>/status", methods=["PATCH"])
def update_status(plan_id):
    data = json_body()
    plan = action_plan_service.update_action_plan_status(current_context(), plan_id, data.get("status"))
    db.session.commit()
    return jsonify(plan.to_dict())


@action_plan_bp.route("/executions/<int:execution_id>/action-plans/close", methods=["POST"])
def close_for_execution(execution_id):
    ctx = current_context()
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    closed = remediation_trigger.close_action_plans_for_execution(ctx, execution.id)
    db.session.commit()
    return jsonify({"execution_id": execution.id, "closed": closed})
