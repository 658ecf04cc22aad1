"""A/B campaign variants: balanced assignment and branch comparison."""

from missionflow.modules.variants.balancer import choose_branch
from missionflow.modules.variants.service import VariantService
from missionflow.modules.variants.statistics import (
    SignificanceResult,
    normal_cdf,
    two_proportion_test,
)

__all__ = [
    "SignificanceResult",
    "VariantService",
    "choose_branch",
    "normal_cdf",
    "two_proportion_test",
]
