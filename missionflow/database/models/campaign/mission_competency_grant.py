"""
MissionCompetencyGrant - competency points paid out by a mission.
Schema only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from missionflow.core.database.base import Base, IdMixin

if TYPE_CHECKING:
    from .competency import Competency
    from .mission import Mission


class MissionCompetencyGrant(Base, IdMixin):
    __tablename__ = "mission_competency_grants"
    __table_args__ = (UniqueConstraint("mission_id", "competency_id"),)

    mission_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("missions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    mission: Mapped["Mission"] = relationship("Mission", back_populates="competency_grants")
    competency: Mapped["Competency"] = relationship("Competency", lazy="joined")
