"""
Two-proportion significance test used to compare campaign variants.

The completion proportions of two branches are compared with a pooled
z-test with a two-sided p-value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class SignificanceResult:
    significant: bool
    p_value: float
    confidence: float
    z_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "significant": self.significant,
            "p_value": self.p_value,
            "confidence": self.confidence,
            "z_score": self.z_score,
        }


NOT_SIGNIFICANT = SignificanceResult(significant=False, p_value=1.0, confidence=0.0, z_score=0.0)


def normal_cdf(x: float) -> float:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def two_proportion_test(
    completed_a: int,
    total_a: int,
    completed_b: int,
    total_b: int,
    alpha: float = 0.05,
) -> SignificanceResult:
    """
    Pooled two-proportion z-test (two-sided).

    An empty branch, or a pooled proportion of exactly 0 or 1 (zero
    variance), yields a non-significant result with p = 1.

    Raises:
        ValueError: If a count is negative or completions exceed the total
    """
    for completed, total in ((completed_a, total_a), (completed_b, total_b)):
        if completed < 0 or total < 0 or completed > total:
            raise ValueError(f"invalid proportion {completed}/{total}")

    if total_a == 0 or total_b == 0:
        return NOT_SIGNIFICANT

    pooled = (completed_a + completed_b) / (total_a + total_b)
    variance = pooled * (1.0 - pooled) * (1.0 / total_a + 1.0 / total_b)
    if variance <= 0:
        return NOT_SIGNIFICANT

    z = abs(completed_a / total_a - completed_b / total_b) / math.sqrt(variance)
    p_value = min(1.0, max(0.0, 2.0 * (1.0 - normal_cdf(z))))

    return SignificanceResult(
        significant=p_value < alpha,
        p_value=round(p_value, 4),
        confidence=round((1.0 - p_value) * 100.0, 2),
        z_score=round(z, 4),
    )
