"""
Mission - one node of a campaign's dependency graph.
Schema only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from missionflow.core.database.base import Base, JSONType, TimestampMixin, new_id
from missionflow.database.models.enums import ConfirmationType, MissionType, enum_column

if TYPE_CHECKING:
    from .campaign import Campaign
    from .mission_competency_grant import MissionCompetencyGrant


class Mission(Base, TimestampMixin):
    """
    Mission row.

    Schema-only:
    - mission_type / confirmation_type
    - experience_reward, currency_reward, competency grants
    - min_rank (lowest rank level allowed to submit)
    - settings: type-specific configuration (passing_score, fields, ...)
    """

    __tablename__ = "missions"
    __table_args__ = (Index("ix_missions_campaign_position", "campaign_id", "position"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    mission_type: Mapped[MissionType] = mapped_column(
        enum_column(MissionType), nullable=False, default=MissionType.CUSTOM
    )
    confirmation_type: Mapped[ConfirmationType] = mapped_column(
        enum_column(ConfirmationType), nullable=False, default=ConfirmationType.AUTO
    )

    experience_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    settings: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="missions")
    competency_grants: Mapped[List["MissionCompetencyGrant"]] = relationship(
        "MissionCompetencyGrant",
        back_populates="mission",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
