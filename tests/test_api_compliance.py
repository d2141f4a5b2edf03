"""
GRC Compliance Tracker
Tests: Compliance API.

Covers:
    - Tenant header resolution (400 / 404 / 403) and health check
    - Control & KPI CRUD + config update + preview
    - Execution upsert, result save, submit, recompute
    - Evidence gate through the API
    - Review queue, review decision, finalize, automatic decision
    - Error JSON shape {error, code, details}
"""

import pytest

from grc.models import db as _db
from grc.models.auth import Tenant


def _create_control(client, headers, **kw):
    payload = {"control_code": "ITGC-01", "name": "User access review", "framework": "SOX"}
    payload.update(kw)
    res = client.post("/api/v1/controls", json=payload, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _create_kpi(client, headers, **kw):
    control = _create_control(client, headers)
    payload = {"kpi_code": "KPI-UAR", "name": "Accounts reviewed", "target_value": 100}
    payload.update(kw)
    res = client.post(f"/api/v1/controls/{control['id']}/kpis", json=payload, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _upsert(client, headers, kpi_id, period="2026-03", **body):
    return client.put(f"/api/v1/kpis/{kpi_id}/executions/{period}", json=body, headers=headers)


def _submitted_execution(client, headers, value=50):
    kpi = _create_kpi(client, headers)
    execution = _upsert(client, headers, kpi["id"], result_numeric=value).get_json()
    res = client.post(f"/api/v1/executions/{execution['id']}/submit", headers=headers)
    assert res.status_code == 200
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# TENANT CONTEXT
# ═════════════════════════════════════════════════════════════════════════════

class TestTenantHeaders:
    def test_health_needs_no_tenant(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_missing_tenant_header(self, client):
        res = client.get("/api/v1/controls")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_TENANT_REQUIRED"

    def test_non_numeric_tenant_header(self, client):
        res = client.get("/api/v1/controls", headers={"X-Tenant-ID": "acme"})
        assert res.status_code == 400

    def test_unknown_tenant(self, client):
        res = client.get("/api/v1/controls", headers={"X-Tenant-ID": "9999"})
        assert res.status_code == 404

    def test_user_from_another_tenant(self, client, default_tenant, reviewer):
        other = Tenant(name="Other", slug="other")
        _db.session.add(other)
        _db.session.commit()
        res = client.get(
            "/api/v1/controls",
            headers={"X-Tenant-ID": str(other.id), "X-User-ID": str(reviewer.id)},
        )
        assert res.status_code == 403

    def test_deactivated_tenant(self, client, default_tenant):
        default_tenant.is_active = False
        _db.session.commit()
        res = client.get("/api/v1/controls", headers={"X-Tenant-ID": str(default_tenant.id)})
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# CONTROLS & KPIs
# ═════════════════════════════════════════════════════════════════════════════

class TestControlsAndKpis:
    def test_create_and_list(self, client, headers):
        kpi = _create_kpi(client, headers, target_operator="higher_is_better")
        assert kpi["target_operator"] == "gte"

        res = client.get(f"/api/v1/controls/{kpi['control_id']}/kpis", headers=headers)
        assert res.get_json()["total"] == 1

    def test_duplicate_control_is_409(self, client, headers):
        _create_control(client, headers)
        res = client.post("/api/v1/controls", json={"control_code": "ITGC-01", "name": "x"}, headers=headers)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_missing_target_is_422_with_details(self, client, headers):
        control = _create_control(client, headers)
        res = client.post(
            f"/api/v1/controls/{control['id']}/kpis", json={"kpi_code": "K", "name": "x"}, headers=headers,
        )
        body = res.get_json()
        assert res.status_code == 422
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"target_value": "required"}

    def test_config_update(self, client, headers):
        kpi = _create_kpi(client, headers)
        res = client.put(
            f"/api/v1/kpis/{kpi['id']}/config", json={"warning_buffer_pct": 0.2}, headers=headers,
        )
        assert res.status_code == 200
        assert res.get_json()["warning_buffer_pct"] == 0.2

    def test_preview_writes_nothing(self, client, headers):
        res = client.post("/api/v1/kpis/preview", json={
            "target_operator": "lte", "target_value": 5, "warning_buffer_pct": 0.1, "result_numeric": 5.4,
        }, headers=headers)
        assert res.get_json()["status"] == "warning"
        assert client.get("/api/v1/controls", headers=headers).get_json()["total"] == 0

    def test_other_tenant_kpi_is_404(self, client, headers):
        kpi = _create_kpi(client, headers)
        other = Tenant(name="Other", slug="other")
        _db.session.add(other)
        _db.session.commit()
        res = client.get(f"/api/v1/kpis/{kpi['id']}", headers={"X-Tenant-ID": str(other.id)})
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# EXECUTIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestExecutions:
    def test_upsert_creates_then_updates(self, client, headers):
        kpi = _create_kpi(client, headers)

        first = _upsert(client, headers, kpi["id"], result_numeric=96)
        second = _upsert(client, headers, kpi["id"], result_numeric="101")

        assert first.status_code == 201
        assert first.get_json()["auto_status"] == "warning"
        assert second.status_code == 200
        assert second.get_json()["id"] == first.get_json()["id"]
        assert second.get_json()["auto_status"] == "in_target"

    def test_bad_period_is_422(self, client, headers):
        kpi = _create_kpi(client, headers)
        assert _upsert(client, headers, kpi["id"], period="2026-13", result_numeric=1).status_code == 422

    def test_malformed_result_is_422(self, client, headers):
        kpi = _create_kpi(client, headers)
        execution = _upsert(client, headers, kpi["id"]).get_json()
        res = client.put(
            f"/api/v1/executions/{execution['id']}/result", json={"result_numeric": "lots"}, headers=headers,
        )
        assert res.status_code == 422

    def test_submit_out_of_target_opens_plan(self, client, headers):
        execution = _submitted_execution(client, headers, value=50)

        assert execution["workflow_status"] == "submitted"
        assert execution["review_due_date"] is not None
        plans = client.get(
            f"/api/v1/action-plans?execution_id={execution['id']}", headers=headers,
        ).get_json()
        assert plans["total"] == 1
        assert plans["items"][0]["priority"] == "high"

    def test_evidence_gate(self, client, headers):
        kpi = _create_kpi(client, headers, evidence_required=True)
        execution = _upsert(client, headers, kpi["id"], result_numeric=100).get_json()

        blocked = client.post(f"/api/v1/executions/{execution['id']}/submit", headers=headers)
        assert blocked.status_code == 422
        assert "evidence" in blocked.get_json()["error"]

        added = client.post(
            f"/api/v1/executions/{execution['id']}/evidences",
            json={"title": "Signed review", "file_url": "https://files.example/uar.pdf"},
            headers=headers,
        )
        assert added.status_code == 201
        assert client.post(f"/api/v1/executions/{execution['id']}/submit", headers=headers).status_code == 200

    def test_delete_evidence(self, client, headers):
        kpi = _create_kpi(client, headers)
        execution = _upsert(client, headers, kpi["id"]).get_json()
        evidence = client.post(
            f"/api/v1/executions/{execution['id']}/evidences", json={"title": "x"}, headers=headers,
        ).get_json()

        assert client.delete(f"/api/v1/evidences/{evidence['id']}", headers=headers).status_code == 200
        listed = client.get(f"/api/v1/executions/{execution['id']}/evidences", headers=headers)
        assert listed.get_json()["total"] == 0

    def test_recompute_all(self, client, headers):
        kpi = _create_kpi(client, headers)
        _upsert(client, headers, kpi["id"], result_numeric=90)
        res = client.post("/api/v1/executions/recompute", json={"buffer_pct": 0.2}, headers=headers)
        assert res.get_json() == {"total": 1, "changed": 1}


# ═════════════════════════════════════════════════════════════════════════════
# GRC REVIEW
# ═════════════════════════════════════════════════════════════════════════════

class TestReview:
    def test_queue_lists_submitted(self, client, headers):
        execution = _submitted_execution(client, headers)
        queue = client.get("/api/v1/reviews/queue", headers=headers).get_json()
        assert [e["id"] for e in queue["items"]] == [execution["id"]]

    def test_approve_closes_plan(self, client, headers):
        execution = _submitted_execution(client, headers)

        res = client.post(
            f"/api/v1/executions/{execution['id']}/review",
            json={"decision": "approved", "comment": "Compensating control in place"},
            headers=headers,
        )

        assert res.status_code == 201
        assert res.get_json()["decision"] == "approved"
        open_plans = client.get("/api/v1/action-plans?status=open", headers=headers).get_json()
        assert open_plans["total"] == 0

    def test_review_requires_comment(self, client, headers):
        execution = _submitted_execution(client, headers)
        res = client.post(
            f"/api/v1/executions/{execution['id']}/review", json={"decision": "approved"}, headers=headers,
        )
        assert res.status_code == 422
        detail = client.get(f"/api/v1/executions/{execution['id']}", headers=headers).get_json()
        assert detail["workflow_status"] == "submitted"

    def test_terminal_execution_is_409(self, client, headers):
        execution = _submitted_execution(client, headers)
        url = f"/api/v1/executions/{execution['id']}/review"
        client.post(url, json={"decision": "rejected", "comment": "no"}, headers=headers)

        res = client.post(url, json={"decision": "approved", "comment": "yes"}, headers=headers)

        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["current_status"] == "rejected"

    def test_finalize_with_adjusted_value(self, client, headers):
        execution = _submitted_execution(client, headers)
        res = client.post(f"/api/v1/executions/{execution['id']}/review/finalize", json={
            "decision": "approved", "comment": "Recounted", "adjusted_value": 100,
        }, headers=headers)
        body = res.get_json()
        assert body["execution"]["auto_status"] == "in_target"
        assert body["review"]["decision"] == "approved"

    def test_automatic_decision(self, client, headers):
        execution = _submitted_execution(client, headers, value=96)
        res = client.get(f"/api/v1/executions/{execution['id']}/automatic-decision", headers=headers)
        assert res.get_json()["suggested_decision"] == "needs_changes"

    @pytest.mark.parametrize("value,expected", [("100", "approved"), ("10", "rejected")])
    def test_automatic_decision_for_candidate_value(self, client, headers, value, expected):
        execution = _submitted_execution(client, headers, value=96)
        res = client.get(
            f"/api/v1/executions/{execution['id']}/automatic-decision?value={value}", headers=headers,
        )
        assert res.get_json()["suggested_decision"] == expected


# ═════════════════════════════════════════════════════════════════════════════
# AUDIT TRAIL
# ═════════════════════════════════════════════════════════════════════════════

class TestAuditTrail:
    def test_lifecycle_events_in_order(self, client, headers, reviewer):
        execution = _submitted_execution(client, headers, value=100)
        client.post(
            f"/api/v1/executions/{execution['id']}/review",
            json={"decision": "approved", "comment": "ok"},
            headers=headers,
        )

        trail = client.get(f"/api/v1/executions/{execution['id']}/audit", headers=headers).get_json()

        assert [e["action"] for e in trail["items"]] == [
            "execution.result_saved", "execution.submitted", "execution.reviewed",
        ]
        assert trail["items"][-1]["actor_user_id"] == reviewer.id
