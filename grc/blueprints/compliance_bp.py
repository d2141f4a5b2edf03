"""
GRC Compliance Tracker
Compliance blueprint: controls, KPIs, executions, evidence and GRC reviews.

Endpoints summary:
    CONTROL    /api/v1/controls                                GET, POST
               /api/v1/controls/<id>/kpis                      GET, POST

    KPI        /api/v1/kpis/<id>                               GET
               /api/v1/kpis/<id>/config                        PUT
               /api/v1/kpis/preview                            POST   (draft config, no writes)
               /api/v1/kpis/<id>/executions                    GET
               /api/v1/kpis/<id>/executions/<period>           PUT    (upsert YYYY-MM)

    EXECUTION  /api/v1/executions/<id>                         GET
               /api/v1/executions/<id>/result                  PUT
               /api/v1/executions/<id>/submit                  POST
               /api/v1/executions/<id>/start-review            POST
               /api/v1/executions/<id>/recompute               POST
               /api/v1/executions/recompute                    POST   (whole tenant)
               /api/v1/executions/<id>/evidences               GET, POST
               /api/v1/evidences/<id>                          DELETE
               /api/v1/executions/<id>/audit                   GET    (event trail)

    REVIEW     /api/v1/reviews/queue                           GET
               /api/v1/executions/<id>/review                  GET, POST
               /api/v1/executions/<id>/review/finalize         POST
               /api/v1/executions/<id>/automatic-decision      GET

Service exceptions are not caught here; the app-level error handlers turn
them into JSON responses and roll the session back.
"""

import logging

from flask import Blueprint, jsonify, request

from grc.blueprints import current_context, json_body, paginate_query
from grc.models import db
from grc.models.audit import AuditLog
from grc.models.compliance import Control, Evidence, GrcReview, Kpi, KpiExecution
from grc.services import execution_workflow, kpi_service, review_service
from grc.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  CONTROLS & KPIs
# ═══════════════════════════════════════════════════════════════════════════

@compliance_bp.route("/controls", methods=["GET"])
def list_controls():
    ctx = current_context()
    q = Control.query_for_tenant(ctx.tenant_id)
    framework = request.args.get("framework")
    if framework:
        q = q.filter_by(framework=framework)
    controls, total = paginate_query(q.order_by(Control.control_code))
    return jsonify({"items": [c.to_dict() for c in controls], "total": total})


@compliance_bp.route("/controls", methods=["POST"])
def create_control():
    control = kpi_service.create_control(current_context(), json_body())
    db.session.commit()
    return jsonify(control.to_dict()), 201


@compliance_bp.route("/controls/<int:control_id>/kpis", methods=["GET"])
def list_kpis(control_id):
    ctx = current_context()
    control = get_scoped(Control, control_id, tenant_id=ctx.tenant_id)
    q = Kpi.query_for_tenant(ctx.tenant_id).filter_by(control_id=control.id)
    kpis, total = paginate_query(q.order_by(Kpi.kpi_code))
    return jsonify({"items": [k.to_dict() for k in kpis], "total": total})


@compliance_bp.route("/controls/<int:control_id>/kpis", methods=["POST"])
def create_kpi(control_id):
    kpi = kpi_service.create_kpi(current_context(), control_id, json_body())
    db.session.commit()
    return jsonify(kpi.to_dict()), 201


@compliance_bp.route("/kpis/<int:kpi_id>", methods=["GET"])
def get_kpi(kpi_id):
    kpi = get_scoped(Kpi, kpi_id, tenant_id=current_context().tenant_id)
    return jsonify(kpi.to_dict())


@compliance_bp.route("/kpis/<int:kpi_id>/config", methods=["PUT"])
def update_kpi_config(kpi_id):
    kpi = kpi_service.update_kpi_config(current_context(), kpi_id, json_body())
    db.session.commit()
    return jsonify(kpi.to_dict())


@compliance_bp.route("/kpis/preview", methods=["POST"])
def preview_kpi():
    return jsonify(kpi_service.preview(json_body()))


# ═══════════════════════════════════════════════════════════════════════════
#  EXECUTIONS
# ═══════════════════════════════════════════════════════════════════════════

@compliance_bp.route("/kpis/<int:kpi_id>/executions", methods=["GET"])
def list_executions(kpi_id):
    ctx = current_context()
    kpi = get_scoped(Kpi, kpi_id, tenant_id=ctx.tenant_id)
    q = KpiExecution.query_for_tenant(ctx.tenant_id).filter_by(kpi_id=kpi.id)
    status = request.args.get("workflow_status")
    if status:
        q = q.filter_by(workflow_status=status)
    executions, total = paginate_query(q.order_by(KpiExecution.period_start.desc()))
    return jsonify({"items": [e.to_dict() for e in executions], "total": total})


@compliance_bp.route("/kpis/<int:kpi_id>/executions/<period>", methods=["PUT"])
def upsert_execution(kpi_id, period):
    data = json_body()
    execution, created = execution_workflow.upsert_execution_for_period(
        current_context(),
        kpi_id,
        period,
        result_numeric=data.get("result_numeric"),
        result_boolean=data.get("result_boolean"),
        result_notes=data.get("result_notes"),
    )
    db.session.commit()
    return jsonify(execution.to_dict()), 201 if created else 200


@compliance_bp.route("/executions/<int:execution_id>", methods=["GET"])
def get_execution(execution_id):
    execution = get_scoped(KpiExecution, execution_id, tenant_id=current_context().tenant_id)
    return jsonify(execution.to_dict())


@compliance_bp.route("/executions/<int:execution_id>/result", methods=["PUT"])
def save_result(execution_id):
    data = json_body()
    execution = execution_workflow.save_execution_result(
        current_context(),
        execution_id,
        result_numeric=data.get("result_numeric"),
        result_boolean=data.get("result_boolean"),
        result_notes=data.get("result_notes"),
    )
    db.session.commit()
    return jsonify(execution.to_dict())


@compliance_bp.route("/executions/<int:execution_id>/submit", methods=["POST"])
def submit_execution(execution_id):
    execution = execution_workflow.submit_execution(current_context(), execution_id)
    db.session.commit()
    return jsonify(execution.to_dict())


@compliance_bp.route("/executions/<int:execution_id>/start-review", methods=["POST"])
def start_review(execution_id):
    execution = execution_workflow.start_review(current_context(), execution_id)
    db.session.commit()
    return jsonify(execution.to_dict())


@compliance_bp.route("/executions/<int:execution_id>/recompute", methods=["POST"])
def recompute_execution(execution_id):
    execution = execution_workflow.recompute_auto_status(current_context(), execution_id)
    db.session.commit()
    return jsonify(execution.to_dict())


@compliance_bp.route("/executions/recompute", methods=["POST"])
def recompute_all():
    data = json_body()
    result = execution_workflow.recompute_all_auto_statuses(
        current_context(), data.get("buffer_pct"),
    )
    db.session.commit()
    return jsonify(result)


# ── Evidence ────────────────────────────────────────────────────────────────

@compliance_bp.route("/executions/<int:execution_id>/evidences", methods=["GET"])
def list_evidences(execution_id):
    ctx = current_context()
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    items = (
        Evidence.query_for_tenant(ctx.tenant_id)
        .filter_by(execution_id=execution.id)
        .order_by(Evidence.id)
        .all()
    )
    return jsonify({"items": [e.to_dict() for e in items], "total": len(items)})


@compliance_bp.route("/executions/<int:execution_id>/evidences", methods=["POST"])
def add_evidence(execution_id):
    data = json_body()
    evidence = execution_workflow.add_evidence(
        current_context(),
        execution_id,
        data.get("title"),
        file_url=data.get("file_url"),
        mime_type=data.get("mime_type"),
    )
    db.session.commit()
    return jsonify(evidence.to_dict()), 201


@compliance_bp.route("/evidences/<int:evidence_id>", methods=["DELETE"])
def delete_evidence(evidence_id):
    execution_workflow.delete_evidence(current_context(), evidence_id)
    db.session.commit()
    return jsonify({"deleted": True, "id": evidence_id})


# ═══════════════════════════════════════════════════════════════════════════
#  GRC REVIEW
# ═══════════════════════════════════════════════════════════════════════════

@compliance_bp.route("/reviews/queue", methods=["GET"])
def review_queue():
    items = review_service.fetch_review_queue(current_context())
    return jsonify({"items": [e.to_dict() for e in items], "total": len(items)})


@compliance_bp.route("/executions/<int:execution_id>/review", methods=["GET"])
def get_review(execution_id):
    ctx = current_context()
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    review = GrcReview.query_for_tenant(ctx.tenant_id).filter_by(execution_id=execution.id).first()
    return jsonify({"execution": execution.to_dict(), "review": review.to_dict() if review else None})


@compliance_bp.route("/executions/<int:execution_id>/review", methods=["POST"])
def submit_review(execution_id):
    data = json_body()
    review = review_service.submit_review(
        current_context(), execution_id, data.get("decision"), data.get("comment"),
    )
    db.session.commit()
    return jsonify(review.to_dict()), 201


@compliance_bp.route("/executions/<int:execution_id>/review/finalize", methods=["POST"])
def finalize_review(execution_id):
    data = json_body()
    execution, review = review_service.finalize_review(
        current_context(),
        execution_id,
        data.get("decision"),
        comment=data.get("comment"),
        adjusted_value=data.get("adjusted_value"),
    )
    db.session.commit()
    return jsonify({"execution": execution.to_dict(), "review": review.to_dict() if review else None})


@compliance_bp.route("/executions/<int:execution_id>/automatic-decision", methods=["GET"])
def automatic_decision(execution_id):
    return jsonify(review_service.automatic_decision_for_execution(
        current_context(), execution_id, request.args.get("value"),
    ))


@compliance_bp.route("/executions/<int:execution_id>/audit", methods=["GET"])
def execution_audit_trail(execution_id):
    ctx = current_context()
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    rows = AuditLog.trail(ctx.tenant_id, "execution", execution.id).all()
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})
