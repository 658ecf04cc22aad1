"""
ParticipantCompetency - a participant's point total for one competency.
Schema only.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, TimestampMixin


class ParticipantCompetency(Base, IdMixin, TimestampMixin):
    __tablename__ = "participant_competencies"
    __table_args__ = (UniqueConstraint("participant_id", "competency_id"),)

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
