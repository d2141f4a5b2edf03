"""
Control & KPI configuration service.

Target configuration rules (create and update):
  - kpi_type / target_operator parsed at the edge (synonyms accepted)
  - boolean KPIs need target_boolean (or a 1/0 target_value)
  - numeric and percent KPIs need a finite target_value
  - warning_buffer_pct within [0, 0.5]

``preview`` evaluates a draft configuration against a sample result with
the same evaluator that classifies persisted executions.

Transaction policy: functions flush, never commit. The route handler commits.
"""

from __future__ import annotations

import logging
import math

from sqlalchemy import select

from grc.core.context import TenantContext
from grc.core.enums import KpiType, Operator
from grc.core.exceptions import ConflictError, ValidationError
from grc.models import db
from grc.models.audit import write_audit
from grc.models.compliance import MAX_WARNING_BUFFER, Control, Kpi
from grc.services.execution_workflow import coerce_boolean, coerce_numeric
from grc.services.helpers.scoped_queries import get_scoped
from grc.services.helpers.settings import setting
from grc.services.status_evaluator import KpiConfig, preview_status, warning_band

logger = logging.getLogger(__name__)

_CONFIG_FIELDS = (
    "kpi_type", "target_operator", "target_value", "target_boolean",
    "warning_buffer_pct", "evidence_required", "is_active",
)


def _require(data: dict, field: str) -> str:
    value = (data.get(field) or "").strip() if isinstance(data.get(field), str) else data.get(field)
    if not value:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return value


def _validate_buffer(value) -> float:
    if value is None or value == "":
        return float(setting("GRC_DEFAULT_WARNING_BUFFER"))
    buffer = coerce_numeric(value, field="warning_buffer_pct")
    if buffer is None or not 0 <= buffer <= MAX_WARNING_BUFFER:
        raise ValidationError(
            f"warning_buffer_pct must be between 0 and {MAX_WARNING_BUFFER}",
            details={"warning_buffer_pct": "out_of_range"},
        )
    return buffer


def _flag(value, field: str, *, default: bool) -> bool:
    parsed = coerce_boolean(value, field=field)
    return default if parsed is None else parsed


def _build_config(data: dict, current: Kpi | None = None) -> dict:
    """Validated target configuration merged over ``current``'s values."""

    def pick(field, default=None):
        if field in data:
            return data[field]
        return getattr(current, field) if current is not None else default

    kpi_type = KpiType.parse(pick("kpi_type", KpiType.NUMBER.value), field="kpi_type")
    operator = Operator.parse(pick("target_operator", Operator.GTE.value), field="target_operator")
    target_value = coerce_numeric(pick("target_value"), field="target_value")
    target_boolean = coerce_boolean(pick("target_boolean"), field="target_boolean")
    buffer = _validate_buffer(pick("warning_buffer_pct"))

    if kpi_type is KpiType.BOOLEAN:
        if target_boolean is None and target_value in (0, 1):
            target_boolean = bool(target_value)
        if target_boolean is None:
            raise ValidationError(
                "A boolean KPI requires target_boolean", details={"target_boolean": "required"},
            )
    elif target_value is None or not math.isfinite(target_value):
        raise ValidationError(
            "A numeric or percent KPI requires target_value", details={"target_value": "required"},
        )

    return {
        "kpi_type": kpi_type.value,
        "target_operator": operator.value,
        "target_value": target_value,
        "target_boolean": target_boolean,
        "warning_buffer_pct": buffer,
        "evidence_required": _flag(pick("evidence_required"), "evidence_required", default=False),
        "is_active": _flag(pick("is_active"), "is_active", default=True),
    }


def create_control(ctx: TenantContext, data: dict) -> Control:
    code = _require(data, "control_code")
    name = _require(data, "name")
    duplicate = db.session.execute(
        select(Control.id).where(Control.tenant_id == ctx.tenant_id, Control.control_code == code)
    ).scalar_one_or_none()
    if duplicate is not None:
        raise ConflictError("Control", "control_code", code)

    control = Control(
        tenant_id=ctx.tenant_id,
        control_code=code,
        name=name,
        description=data.get("description", ""),
        frequency=data.get("frequency") or "monthly",
        framework=data.get("framework", ""),
        owner_name=data.get("owner_name", ""),
        owner_email=data.get("owner_email", ""),
    )
    db.session.add(control)
    db.session.flush()
    return control


def create_kpi(ctx: TenantContext, control_id: int, data: dict) -> Kpi:
    control = get_scoped(Control, control_id, tenant_id=ctx.tenant_id)
    code = _require(data, "kpi_code")
    name = _require(data, "name")
    duplicate = db.session.execute(
        select(Kpi.id).where(Kpi.tenant_id == ctx.tenant_id, Kpi.kpi_code == code)
    ).scalar_one_or_none()
    if duplicate is not None:
        raise ConflictError("Kpi", "kpi_code", code)

    kpi = Kpi(
        tenant_id=ctx.tenant_id,
        control_id=control.id,
        kpi_code=code,
        name=name,
        description=data.get("description", ""),
        **_build_config(data),
    )
    db.session.add(kpi)
    db.session.flush()
    logger.info("KPI %s (%s) created tenant=%s", kpi.id, kpi.kpi_code, ctx.tenant_id)
    return kpi


def update_kpi_config(ctx: TenantContext, kpi_id: int, data: dict) -> Kpi:
    """Validate and apply a new target configuration; audited as kpi.config_updated.

    Existing executions keep their stored auto_status until recomputed.
    """
    kpi = get_scoped(Kpi, kpi_id, tenant_id=ctx.tenant_id)
    config = _build_config(data, current=kpi)

    before = {field: getattr(kpi, field) for field in _CONFIG_FIELDS}
    for field, value in config.items():
        setattr(kpi, field, value)
    if "name" in data and data["name"]:
        kpi.name = str(data["name"]).strip()
    if "description" in data:
        kpi.description = data["description"] or ""
    db.session.flush()

    changed = {f: {"old": before[f], "new": config[f]} for f in _CONFIG_FIELDS if before[f] != config[f]}
    write_audit(
        tenant_id=ctx.tenant_id,
        entity_type="kpi",
        entity_id=kpi.id,
        action="kpi.config_updated",
        actor_user_id=ctx.user_id,
        diff=changed,
    )
    logger.info("KPI %s config updated tenant=%s fields=%s", kpi.id, ctx.tenant_id, sorted(changed))
    return kpi


def preview(data: dict) -> dict:
    """Status a draft configuration would assign to a sample result. Writes nothing."""
    config = _build_config(data)
    draft = KpiConfig(
        kpi_type=KpiType(config["kpi_type"]),
        target_operator=Operator(config["target_operator"]),
        target_value=config["target_value"],
        target_boolean=config["target_boolean"],
        warning_buffer_pct=config["warning_buffer_pct"],
        is_active=config["is_active"],
    )
    status = preview_status(
        draft,
        result_numeric=coerce_numeric(data.get("result_numeric")),
        result_boolean=coerce_boolean(data.get("result_boolean")),
    )
    return {"status": status.value, "band": warning_band(draft)}
