"""
Closed vocabularies of the compliance engine.

Every enum is a ``str`` Enum so values persist as plain strings and
serialize to JSON unchanged. Free-text input (legacy synonyms, symbols,
Portuguese labels from imported sheets) is mapped exactly once, in the
``parse()`` classmethods, at the input edge. Business logic only ever
compares enum members.
"""

from __future__ import annotations

from enum import Enum

from grc.core.exceptions import ValidationError


def _token(value) -> str:
    return str(value if value is not None else "").strip().lower()


class _ParseableEnum(str, Enum):
    """Base for enums parsed from user input with an optional synonym table."""

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value, *, field: str | None = None):
        """Return the member for ``value`` or raise ValidationError."""
        if isinstance(value, cls):
            return value
        token = _token(value)
        token = cls._synonyms().get(token, token)
        try:
            return cls(token)
        except ValueError:
            name = field or cls.__name__
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(
                f"Invalid {name}: {value!r}. Expected one of: {allowed}",
                details={name: "invalid"},
            ) from None

    @classmethod
    def values(cls) -> set[str]:
        return {m.value for m in cls}


# ── KPI evaluation ───────────────────────────────────────────────────────────


class Status(_ParseableEnum):
    """Auto-status of an execution result against its KPI target."""
    IN_TARGET = "in_target"
    WARNING = "warning"
    OUT_OF_TARGET = "out_of_target"
    UNKNOWN = "unknown"
    NOT_APPLICABLE = "not_applicable"


class KpiType(_ParseableEnum):
    NUMBER = "number"
    PERCENT = "percent"
    BOOLEAN = "boolean"

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {
            "numeric": "number",
            "integer": "number",
            "decimal": "number",
            "%": "percent",
            "percentage": "percent",
            "bool": "boolean",
            "yesno": "boolean",
            "yes_no": "boolean",
            "simnao": "boolean",
            "sim_nao": "boolean",
        }


_GTE_TOKENS = frozenset({
    "gte", ">=", "≥", "ge", "gt_or_eq", "higher_is_better", "higher_better",
    "greater_or_equal", "greater_than_or_equal", "maior_melhor", "maior_e_melhor",
    "quanto_maior_melhor",
})
_LTE_TOKENS = frozenset({
    "lte", "<=", "≤", "le", "lt_or_eq", "lower_is_better", "lower_better",
    "less_or_equal", "less_than_or_equal", "menor_melhor", "menor_e_melhor",
    "quanto_menor_melhor",
})
_EQ_TOKENS = frozenset({"eq", "=", "==", "equals", "equal", "igual"})


class Operator(_ParseableEnum):
    """Comparison direction of a numeric KPI target."""
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"

    @classmethod
    def normalize(cls, value) -> "Operator":
        """Lenient mapping used for stored rows; unrecognized tokens fall back to GTE."""
        if isinstance(value, cls):
            return value
        token = _token(value).replace(" ", "_").replace("-", "_")
        if token in _LTE_TOKENS or ("less" in token and "equal" in token):
            return cls.LTE
        if token in _EQ_TOKENS:
            return cls.EQ
        return cls.GTE

    @classmethod
    def parse(cls, value, *, field: str | None = None) -> "Operator":
        """Strict mapping for configuration input: synonyms accepted, junk rejected."""
        token = _token(value).replace(" ", "_").replace("-", "_")
        if token in _GTE_TOKENS or token in _LTE_TOKENS or token in _EQ_TOKENS:
            return cls.normalize(token)
        return super().parse(value, field=field or "target_operator")


# ── Execution workflow ──────────────────────────────────────────────────────


class WorkflowStatus(_ParseableEnum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    NEEDS_CHANGES = "needs_changes"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {"draft": "in_progress", "in_review": "under_review"}

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.APPROVED, WorkflowStatus.REJECTED)


class Decision(_ParseableEnum):
    """Explicit reviewer decision persisted on a GrcReview."""
    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    REJECTED = "rejected"


class SuggestedDecision(_ParseableEnum):
    """Automatic decision offered to the reviewer; UNDER_REVIEW means no suggestion."""
    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    REJECTED = "rejected"
    UNDER_REVIEW = "under_review"

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {"in_review": "under_review"}


class Trigger(_ParseableEnum):
    """What caused an execution-sourced remediation check."""
    AUTO_STATUS = "auto_status"
    GRC_REVIEW = "grc_review"


# ── Risk ────────────────────────────────────────────────────────────────────


class Classification(_ParseableEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {
            "med": "medium",
            "moderate": "medium",
            "médio": "medium",
            "medio": "medium",
            "alto": "high",
            "baixo": "low",
            "crítico": "critical",
            "critico": "critical",
        }


# ── Action plans ────────────────────────────────────────────────────────────


class ActionPlanStatus(_ParseableEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"

    @classmethod
    def _synonyms(cls) -> dict[str, str]:
        return {"completed": "done", "closed": "done", "open": "not_started"}


class Priority(_ParseableEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
