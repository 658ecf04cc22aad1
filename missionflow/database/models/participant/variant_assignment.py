"""
VariantAssignment - which branch of a campaign a participant was routed to.
Schema only.

One row per (participant, base campaign); `campaign_id` is the branch
actually assigned (the base itself or one of its variants).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, utcnow


class VariantAssignment(Base, IdMixin):
    __tablename__ = "variant_assignments"
    __table_args__ = (
        UniqueConstraint("participant_id", "base_campaign_id"),
        Index("ix_variant_assignments_branch", "campaign_id"),
    )

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    base_campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
