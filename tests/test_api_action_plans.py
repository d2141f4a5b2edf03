"""
GRC Compliance Tracker
Tests: Action Plan API.

Covers:
    - Manual plan create / get / list filters
    - Status patch: done stamps completed_at, reopen conflict → 409
    - One open plan per origin surfaced as ERR_INVARIANT_VIOLATION
    - Close-all for an execution
"""


def _create_plan(client, headers, **kw):
    payload = {"title": "Update SoD ruleset", "priority": "high", "due_date": "2026-11-30"}
    payload.update(kw)
    res = client.post("/api/v1/action-plans", json=payload, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _critical_risk_with_plan(client, headers):
    risk = client.post(
        "/api/v1/risks", json={"title": "Shared admin account", "impact": 5, "likelihood": 5}, headers=headers,
    ).get_json()
    outcome = client.post(f"/api/v1/risks/{risk['id']}/action-plan", headers=headers).get_json()
    return risk, outcome["plan_id"]


class TestManualPlans:
    def test_create_and_get(self, client, headers):
        plan = _create_plan(client, headers)
        assert plan["origin_type"] == "manual"
        assert plan["status"] == "not_started"

        res = client.get(f"/api/v1/action-plans/{plan['id']}", headers=headers)
        assert res.get_json()["due_date"] == "2026-11-30"

    def test_bad_due_date(self, client, headers):
        res = client.post("/api/v1/action-plans", json={"title": "x", "due_date": "next week"}, headers=headers)
        assert res.status_code == 422

    def test_second_open_plan_for_risk_is_409(self, client, headers):
        risk, plan_id = _critical_risk_with_plan(client, headers)

        res = client.post("/api/v1/action-plans", json={"title": "dup", "risk_id": risk["id"]}, headers=headers)

        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "ERR_INVARIANT_VIOLATION"
        assert body["details"]["open_plan_id"] == plan_id


class TestStatusPatch:
    def test_done_and_reopen(self, client, headers):
        plan = _create_plan(client, headers)
        url = f"/api/v1/action-plans/{plan['id']}/status"

        done = client.patch(url, json={"status": "done"}, headers=headers).get_json()
        assert done["completed_at"] is not None

        reopened = client.patch(url, json={"status": "in_progress"}, headers=headers).get_json()
        assert reopened["completed_at"] is None

    def test_reopen_with_other_open_plan_is_409(self, client, headers):
        risk, plan_id = _critical_risk_with_plan(client, headers)
        client.patch(f"/api/v1/action-plans/{plan_id}/status", json={"status": "done"}, headers=headers)
        client.post(f"/api/v1/risks/{risk['id']}/action-plan", headers=headers)

        res = client.patch(f"/api/v1/action-plans/{plan_id}/status", json={"status": "blocked"}, headers=headers)

        assert res.status_code == 409
        assert client.get(f"/api/v1/action-plans/{plan_id}", headers=headers).get_json()["status"] == "done"

    def test_invalid_status_is_422(self, client, headers):
        plan = _create_plan(client, headers)
        res = client.patch(f"/api/v1/action-plans/{plan['id']}/status", json={"status": "??"}, headers=headers)
        assert res.status_code == 422


class TestListAndClose:
    def test_filters(self, client, headers):
        risk, plan_id = _critical_risk_with_plan(client, headers)
        manual = _create_plan(client, headers)

        by_risk = client.get(f"/api/v1/action-plans?risk_id={risk['id']}", headers=headers).get_json()
        by_origin = client.get("/api/v1/action-plans?origin_type=manual", headers=headers).get_json()

        assert [p["id"] for p in by_risk["items"]] == [plan_id]
        assert [p["id"] for p in by_origin["items"]] == [manual["id"]]

    def test_close_for_execution(self, client, headers):
        control = client.post(
            "/api/v1/controls", json={"control_code": "C1", "name": "Backups"}, headers=headers,
        ).get_json()
        kpi = client.post(
            f"/api/v1/controls/{control['id']}/kpis",
            json={"kpi_code": "K1", "name": "Restore tests", "kpi_type": "boolean", "target_boolean": True},
            headers=headers,
        ).get_json()
        execution = client.put(
            f"/api/v1/kpis/{kpi['id']}/executions/2026-05", json={"result_boolean": "no"}, headers=headers,
        ).get_json()
        client.post(f"/api/v1/executions/{execution['id']}/submit", headers=headers)

        res = client.post(f"/api/v1/executions/{execution['id']}/action-plans/close", headers=headers)

        assert res.get_json() == {"execution_id": execution["id"], "closed": 1}
        open_plans = client.get("/api/v1/action-plans?status=open", headers=headers).get_json()
        assert open_plans["total"] == 0
