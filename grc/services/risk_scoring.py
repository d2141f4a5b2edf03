"""
Risk scoring matrix: impact (1-5) × likelihood (1-5).

    score  1-5   → low
           6-10  → medium
          11-15  → high
          16-25  → critical
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from grc.core.enums import Classification


@dataclass(frozen=True)
class RiskScore:
    impact: int
    likelihood: int
    score: int
    classification: Classification

    def to_dict(self) -> dict:
        return {
            "impact": self.impact,
            "likelihood": self.likelihood,
            "score": self.score,
            "classification": self.classification.value,
        }


def clamp_scale(value) -> int:
    """Truncate to an integer in [1, 5]; anything non-numeric or non-finite becomes 1."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 1.0
    if not math.isfinite(number):
        number = 1.0
    return max(1, min(5, math.trunc(number)))


def classify_score(score: int) -> Classification:
    if score <= 5:
        return Classification.LOW
    if score <= 10:
        return Classification.MEDIUM
    if score <= 15:
        return Classification.HIGH
    return Classification.CRITICAL


def score_risk(impact, likelihood) -> RiskScore:
    impact = clamp_scale(impact)
    likelihood = clamp_scale(likelihood)
    score = impact * likelihood
    return RiskScore(impact, likelihood, score, classify_score(score))
