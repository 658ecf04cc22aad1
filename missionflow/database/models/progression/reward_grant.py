"""
RewardGrant Model - Exactly-Once Guard for the Reward Ledger
=============================================================

Purpose
-------
One row per reward payout. The unique constraint on
(participant_id, grant_key) makes a second payout for the same completion
fail at the database level, independent of how often callers invoke the
ledger.

grant_key values:
- "mission:<mission_id>" for a mission completion
- "rank:<level>" for a promotion reward
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, JSONType, utcnow
from missionflow.database.models.enums import GrantSource, enum_column


class RewardGrant(Base, IdMixin):
    __tablename__ = "reward_grants"
    __table_args__ = (
        UniqueConstraint("participant_id", "grant_key"),
        Index("ix_reward_grants_participant_campaign", "participant_id", "campaign_id"),
    )

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    grant_key: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[GrantSource] = mapped_column(enum_column(GrantSource), nullable=False)

    campaign_id: Mapped[Optional[str]] = mapped_column(String(64))
    mission_id: Mapped[Optional[str]] = mapped_column(String(64))
    rank_level: Mapped[Optional[int]] = mapped_column(Integer)

    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    competency_points: Mapped[Dict[str, int]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<RewardGrant(participant_id='{self.participant_id}', "
            f"grant_key='{self.grant_key}', experience={self.experience}, "
            f"currency={self.currency})>"
        )
