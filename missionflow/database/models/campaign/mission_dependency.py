"""
MissionDependency - directed edge "target requires source completed".
Schema only.

Endpoints are plain mission ids without foreign keys: the graph layer
treats an edge whose endpoint is missing as dangling and skips it.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, TimestampMixin


class MissionDependency(Base, IdMixin, TimestampMixin):
    __tablename__ = "mission_dependencies"
    __table_args__ = (
        UniqueConstraint("source_mission_id", "target_mission_id"),
        Index("ix_mission_dependencies_source", "source_mission_id"),
        Index("ix_mission_dependencies_target", "target_mission_id"),
    )

    campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_mission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_mission_id: Mapped[str] = mapped_column(String(64), nullable=False)
