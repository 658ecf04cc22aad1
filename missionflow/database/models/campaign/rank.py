"""
Rank - one step of a promotion ladder.
Schema only.

`campaign_id IS NULL` rows form the global ladder. A campaign that owns at
least one rank uses its own ladder exclusively.
"""

from __future__ import annotations

from typing import Dict, Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class Rank(Base, IdMixin, TimestampMixin):
    """
    Rank row.

    Schema-only:
    - level (1 is the starting rank)
    - min_experience / min_missions thresholds
    - required_competencies: {competency name: minimum points}
    - reward_experience / reward_currency paid on promotion
    """

    __tablename__ = "ranks"
    __table_args__ = (Index("ix_ranks_campaign_level", "campaign_id", "level"),)

    campaign_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    min_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_missions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_competencies: Mapped[Dict[str, int]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    reward_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
