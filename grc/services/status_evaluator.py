"""
Auto-status evaluation: classifies a measured result against a KPI target.

Pure functions, no I/O. The same ``evaluate_status`` is used when a result
is persisted, when a tenant's executions are bulk-recomputed, for the live
preview while a KPI target is being edited, and for the automatic decision
suggested to a reviewer, so every call site agrees bit-for-bit.

Rules (in order):
  1. KPI inactive, or no target_value / target_boolean  → not_applicable
  2. Buffer: explicit arg → KPI warning_buffer_pct → 0.05, clamped to [0, 0.5]
  3. Boolean KPI: missing result → unknown; equal → in_target; else out_of_target
  4. Numeric/percent KPI: missing result → unknown, then by operator:
       gte  value ≥ target → in_target; ≥ target·(1-buffer) → warning
       lte  value ≤ target → in_target; ≤ target·(1+buffer) → warning
       eq   value = target → in_target
     anything else → out_of_target
  5. Unmapped combination → unknown

Usage:
    from grc.services.status_evaluator import evaluate_status

    status = evaluate_status(kpi, execution)          # model instances
    status = preview_status(KpiConfig(...), 96.0)     # unsaved draft config
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from grc.core.enums import KpiType, Operator, Status, SuggestedDecision
from grc.core.exceptions import ValidationError
from grc.models.compliance import DEFAULT_WARNING_BUFFER, MAX_WARNING_BUFFER


@dataclass(frozen=True)
class KpiConfig:
    """Target configuration of a KPI, detached from the ORM row."""
    kpi_type: KpiType = KpiType.NUMBER
    target_operator: Operator = Operator.GTE
    target_value: float | None = None
    target_boolean: bool | None = None
    warning_buffer_pct: float | None = None
    is_active: bool = True

    @classmethod
    def from_kpi(cls, kpi: Any) -> "KpiConfig":
        if isinstance(kpi, cls):
            return kpi
        try:
            kpi_type = KpiType.parse(getattr(kpi, "kpi_type", None))
        except ValidationError:
            kpi_type = KpiType.NUMBER
        is_active = getattr(kpi, "is_active", True)
        return cls(
            kpi_type=kpi_type,
            target_operator=Operator.normalize(getattr(kpi, "target_operator", None)),
            target_value=_finite_or_none(getattr(kpi, "target_value", None)),
            target_boolean=getattr(kpi, "target_boolean", None),
            warning_buffer_pct=_finite_or_none(getattr(kpi, "warning_buffer_pct", None)),
            is_active=True if is_active is None else bool(is_active),
        )


@dataclass(frozen=True)
class ExecResult:
    result_numeric: float | None = None
    result_boolean: bool | None = None

    @classmethod
    def from_execution(cls, execution: Any) -> "ExecResult":
        if isinstance(execution, cls):
            return execution
        return cls(
            result_numeric=_finite_or_none(getattr(execution, "result_numeric", None)),
            result_boolean=getattr(execution, "result_boolean", None),
        )


def _finite_or_none(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def resolve_buffer(kpi_buffer: float | None, buffer_pct: float | None = None) -> float:
    """Effective warning buffer: explicit → KPI → default, clamped to [0, 0.5]."""
    candidate = _finite_or_none(buffer_pct)
    if candidate is None:
        candidate = _finite_or_none(kpi_buffer)
    if candidate is None:
        candidate = DEFAULT_WARNING_BUFFER
    return max(0.0, min(MAX_WARNING_BUFFER, candidate))


def _expected_boolean(config: KpiConfig) -> bool | None:
    if config.target_boolean is not None:
        return bool(config.target_boolean)
    if config.target_value is not None:
        return config.target_value >= 1
    return None


def evaluate_status(kpi: Any, execution: Any, buffer_pct: float | None = None) -> Status:
    """Classify ``execution``'s result against ``kpi``'s target.

    Args:
        kpi: Kpi row or KpiConfig.
        execution: KpiExecution row or ExecResult.
        buffer_pct: Optional override of the KPI's warning buffer.

    Returns:
        One of the five Status members.
    """
    config = KpiConfig.from_kpi(kpi)
    result = ExecResult.from_execution(execution)

    if not config.is_active or (config.target_value is None and config.target_boolean is None):
        return Status.NOT_APPLICABLE

    buffer = resolve_buffer(config.warning_buffer_pct, buffer_pct)

    if config.kpi_type is KpiType.BOOLEAN:
        if result.result_boolean is None:
            return Status.UNKNOWN
        expected = _expected_boolean(config)
        return Status.IN_TARGET if bool(result.result_boolean) == expected else Status.OUT_OF_TARGET

    value = result.result_numeric
    target = config.target_value
    if value is None:
        return Status.UNKNOWN
    if target is None:
        return Status.UNKNOWN

    if config.target_operator is Operator.GTE:
        if value >= target:
            return Status.IN_TARGET
        if value >= target * (1 - buffer):
            return Status.WARNING
        return Status.OUT_OF_TARGET

    if config.target_operator is Operator.LTE:
        if value <= target:
            return Status.IN_TARGET
        if value <= target * (1 + buffer):
            return Status.WARNING
        return Status.OUT_OF_TARGET

    if config.target_operator is Operator.EQ:
        return Status.IN_TARGET if value == target else Status.OUT_OF_TARGET

    return Status.UNKNOWN


def preview_status(
    config: KpiConfig,
    result_numeric: float | None = None,
    result_boolean: bool | None = None,
) -> Status:
    """Status a draft KPI configuration would give a sample result."""
    return evaluate_status(config, ExecResult(_finite_or_none(result_numeric), result_boolean))


def warning_band(kpi: Any, buffer_pct: float | None = None) -> dict:
    """Boundaries of the in-target and warning zones, for display next to a preview."""
    config = KpiConfig.from_kpi(kpi)
    buffer = resolve_buffer(config.warning_buffer_pct, buffer_pct)
    target = config.target_value
    band = {
        "operator": config.target_operator.value,
        "target": target,
        "buffer_pct": buffer,
        "warning_floor": None,
        "warning_ceiling": None,
    }
    if target is None or config.kpi_type is KpiType.BOOLEAN:
        return band
    if config.target_operator is Operator.GTE:
        band["warning_floor"] = target * (1 - buffer)
    elif config.target_operator is Operator.LTE:
        band["warning_ceiling"] = target * (1 + buffer)
    return band


# ── Reviewer suggestion ─────────────────────────────────────────────────────

_DECISION_BY_STATUS = {
    Status.IN_TARGET: SuggestedDecision.APPROVED,
    Status.WARNING: SuggestedDecision.NEEDS_CHANGES,
    Status.OUT_OF_TARGET: SuggestedDecision.REJECTED,
}


def decision_from_status(status) -> SuggestedDecision:
    try:
        status = Status.parse(status)
    except ValidationError:
        return SuggestedDecision.UNDER_REVIEW
    return _DECISION_BY_STATUS.get(status, SuggestedDecision.UNDER_REVIEW)


def compute_automatic_decision(
    kpi: Any,
    value: float | None,
    auto_status=None,
    result_boolean: bool | None = None,
) -> SuggestedDecision:
    """Decision pre-selected for a reviewer.

    Re-evaluates ``value`` (possibly a reviewer-adjusted number) through
    ``evaluate_status``; when the value or target is missing it falls back to
    the stored ``auto_status``.
    """
    status = evaluate_status(kpi, ExecResult(_finite_or_none(value), result_boolean))
    if status in _DECISION_BY_STATUS:
        return _DECISION_BY_STATUS[status]
    return decision_from_status(auto_status)
