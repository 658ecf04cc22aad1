"""Exactly-once reward ledger."""

from missionflow.modules.rewards.service import (
    RewardDelta,
    RewardLedgerService,
    mission_grant_key,
    rank_grant_key,
)

__all__ = ["RewardDelta", "RewardLedgerService", "mission_grant_key", "rank_grant_key"]
