"""
Shared pytest fixtures for the GRC Compliance Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant / reviewer / ctx: tenant, user and TenantContext
    - make_control / make_kpi / make_execution / make_risk: row factories
    - headers: X-Tenant-ID / X-User-ID headers for API tests
"""

from datetime import date

import pytest

from grc import create_app
from grc.core.context import TenantContext
from grc.models import db as _db


def _ensure_default_tenant():
    """Create the default tenant and its reviewer user if missing."""
    from grc.models.auth import Tenant, User

    t = Tenant.query.filter_by(slug="test-default").first()
    if not t:
        t = Tenant(name="Test Default", slug="test-default")
        _db.session.add(t)
        _db.session.flush()
        _db.session.add(User(tenant_id=t.id, email="reviewer@test.local", name="Rita Reviewer"))
        _db.session.commit()
    return t.id


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    from grc.models.auth import Tenant
    return Tenant.query.filter_by(slug="test-default").first()


@pytest.fixture()
def reviewer(default_tenant):
    from grc.models.auth import User
    return User.query.filter_by(tenant_id=default_tenant.id, email="reviewer@test.local").first()


@pytest.fixture()
def ctx(default_tenant, reviewer):
    return TenantContext(tenant_id=default_tenant.id, user_id=reviewer.id)


@pytest.fixture()
def other_tenant():
    from grc.models.auth import Tenant
    t = Tenant(name="Other Corp", slug="other-corp")
    _db.session.add(t)
    _db.session.flush()
    return t


@pytest.fixture()
def headers(default_tenant, reviewer):
    return {"X-Tenant-ID": str(default_tenant.id), "X-User-ID": str(reviewer.id)}


# ── Row factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_control(default_tenant):
    from grc.models.compliance import Control

    def _make(code="CTL-01", name="Access review", tenant_id=None):
        control = Control(
            tenant_id=tenant_id or default_tenant.id,
            control_code=code,
            name=name,
            framework="SOX",
        )
        _db.session.add(control)
        _db.session.flush()
        return control

    return _make


@pytest.fixture()
def make_kpi(default_tenant, make_control):
    """Numeric gte KPI with target 100 and buffer 0.05 unless overridden."""
    from grc.models.compliance import Kpi

    def _make(code="KPI-01", control=None, **overrides):
        control = control or make_control(code=f"CTL-{code}")
        values = {
            "kpi_type": "number",
            "target_operator": "gte",
            "target_value": 100.0,
            "target_boolean": None,
            "warning_buffer_pct": 0.05,
            "evidence_required": False,
            "is_active": True,
        }
        values.update(overrides)
        kpi = Kpi(
            tenant_id=control.tenant_id,
            control_id=control.id,
            kpi_code=code,
            name=f"{code} coverage",
            **values,
        )
        _db.session.add(kpi)
        _db.session.flush()
        return kpi

    return _make


@pytest.fixture()
def make_execution():
    from grc.models.compliance import KpiExecution

    def _make(kpi, result_numeric=None, result_boolean=None,
              workflow_status="in_progress", auto_status="unknown", period_start=None):
        period_start = period_start or date(2026, 3, 1)
        execution = KpiExecution(
            tenant_id=kpi.tenant_id,
            control_id=kpi.control_id,
            kpi_id=kpi.id,
            period_start=period_start,
            period_end=period_start.replace(day=28),
            result_numeric=result_numeric,
            result_boolean=result_boolean,
            workflow_status=workflow_status,
            auto_status=auto_status,
        )
        _db.session.add(execution)
        _db.session.flush()
        return execution

    return _make


@pytest.fixture()
def make_risk(default_tenant):
    from grc.models.risk import Risk

    def _make(title="Privileged access misuse", classification="low", impact=1, likelihood=1,
              tenant_id=None):
        risk = Risk(
            tenant_id=tenant_id or default_tenant.id,
            title=title,
            domain="Cyber",
            impact=impact,
            likelihood=likelihood,
            risk_score=impact * likelihood,
            classification=classification,
        )
        _db.session.add(risk)
        _db.session.flush()
        return risk

    return _make
