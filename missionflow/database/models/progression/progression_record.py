"""
ProgressionRecord - the per-(participant, mission) state machine instance.
Schema only.

Status changes are compare-and-set UPDATEs guarded on the expected current
status; see `missionflow.modules.progression.transitions`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, JSONType, TimestampMixin
from missionflow.database.models.enums import ProgressionStatus, enum_column


class ProgressionRecord(Base, IdMixin, TimestampMixin):
    """
    Progression row.

    Schema-only:
    - status (LOCKED -> AVAILABLE -> IN_PROGRESS -> PENDING_REVIEW -> COMPLETED)
    - started_at / completed_at
    - submission payload and reviewer comment (kept across rejection)
    - campaign_id denormalized for campaign-wide bulk actions
    """

    __tablename__ = "progression_records"
    __table_args__ = (
        UniqueConstraint("participant_id", "mission_id"),
        Index("ix_progression_records_participant_campaign", "participant_id", "campaign_id"),
        Index("ix_progression_records_campaign_status", "campaign_id", "status"),
    )

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    mission_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("missions.id", ondelete="CASCADE"),
        nullable=False,
    )
    campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[ProgressionStatus] = mapped_column(
        enum_column(ProgressionStatus),
        nullable=False,
        default=ProgressionStatus.LOCKED,
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    submission: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    reviewer_comment: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(64))
