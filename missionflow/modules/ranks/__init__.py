"""Rank ladder eligibility rules and the promotion evaluator."""

from missionflow.modules.ranks.eligibility import Eligibility, RankSpec, Standing, check, next_rank
from missionflow.modules.ranks.service import PromotionResult, RankService

__all__ = [
    "Eligibility",
    "PromotionResult",
    "RankService",
    "RankSpec",
    "Standing",
    "check",
    "next_rank",
]
